"""Job store, key-value store and media persistence backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from sqlalchemy import delete as sa_delete
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from ad_intake.pipeline.models import (
    TERMINAL_STATUSES,
    JobCreate,
    JobStatus,
    JobView,
    MediaView,
)
from ad_intake.pipeline.queue import QueueRepository
from ad_intake.storage.alembic_runner import upgrade_head
from ad_intake.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from ad_intake.storage.sqlmodel_models import KeyValueEntry, MediaRecord, MessageRecord


class IntakeRepository:
    """Persistence facade owning the engine and schema lifecycle."""

    def __init__(
        self,
        db_path: Path,
        *,
        max_deliveries: int = 3,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
        self.jobs = JobRepository(self.engine)
        self.kv = KeyValueRepository(self.engine)
        self.queue = QueueRepository(self.engine, max_deliveries=max_deliveries)
        self.media = MediaRepository(self.engine)

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()


class JobRepository:
    """One row per ``message_id``; last submission wins."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def replace_job(self, payload: JobCreate) -> JobView:
        """Delete any job with the same id and insert a fresh queued one."""

        now = utc_now()
        with Session(self.engine) as session:
            session.exec(
                sa_delete(MessageRecord).where(
                    col(MessageRecord.message_id) == payload.message_id,
                ),
            )
            row = MessageRecord(
                message_id=payload.message_id,
                request_text=payload.request_text,
                agent_used=payload.agent,
                status=JobStatus.QUEUED.value,
                output_data=_dump_output({}),
                source=payload.source,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def mark_processing(self, *, message_id: str) -> bool:
        """Move a job to ``processing`` leaving its output untouched.

        Redelivered messages re-enter ``processing`` from whatever state the
        previous delivery left behind.
        """

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(MessageRecord)
                .where(col(MessageRecord.message_id) == message_id)
                .values(
                    status=JobStatus.PROCESSING.value,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def record_outcome(
        self,
        *,
        message_id: str,
        status: JobStatus,
        output_data: dict[str, Any],
        source: str | None,
    ) -> bool:
        """Persist a terminal status with its output payload."""

        if status not in TERMINAL_STATUSES:
            raise ValueError(f"Unsupported outcome status: {status}")
        if not isinstance(output_data, dict):
            raise ValueError("output_data must be a JSON object.")

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(MessageRecord)
                .where(col(MessageRecord.message_id) == message_id)
                .values(
                    status=status.value,
                    output_data=_dump_output(output_data),
                    source=source,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def get_job(self, *, message_id: str) -> JobView | None:
        """Point lookup by ``message_id``."""

        with Session(self.engine) as session:
            row = session.exec(
                select(MessageRecord).where(MessageRecord.message_id == message_id),
            ).one_or_none()
            if row is None:
                return None
            return _to_job_view(row)


class KeyValueRepository:
    """Shared string key-value store used for advisory counters."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get(self, key: str) -> str | None:
        with Session(self.engine) as session:
            row = session.get(KeyValueEntry, key)
            return row.value if row is not None else None

    def set(self, key: str, value: str) -> None:
        now = utc_now()
        with Session(self.engine) as session:
            row = session.get(KeyValueEntry, key)
            if row is None:
                row = KeyValueEntry(key=key, value=value, updated_at=now)
            else:
                row.value = value
                row.updated_at = now
            session.add(row)
            session.commit()


class MediaRepository:
    """Registry of media files received alongside messages."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def register(self, *, file_name: str, url: str | None) -> MediaView:
        with Session(self.engine) as session:
            row = MediaRecord(file_name=file_name, url=url, uploaded_at=utc_now())
            session.add(row)
            session.commit()
            session.refresh(row)
            return MediaView(
                media_id=row.id or 0,
                file_name=row.file_name,
                url=row.url,
                uploaded_at=to_utc_aware_datetime(row.uploaded_at),
            )


def _dump_output(output_data: dict[str, Any]) -> str:
    return json.dumps(output_data, ensure_ascii=False)


def _load_output(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {"message": raw}
    if isinstance(parsed, dict):
        return parsed
    return {"data": parsed}


def _to_job_view(row: MessageRecord) -> JobView:
    return JobView(
        message_id=row.message_id,
        request_text=row.request_text,
        agent=row.agent_used,
        status=JobStatus(row.status),
        output_data=_load_output(row.output_data),
        source=row.source,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
