"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from ad_intake.pipeline.callback import CallbackResult, CallbackResultKind
from ad_intake.pipeline.models import ExtractionOutcome, QueueMessageStatus, Severity
from ad_intake.pipeline.repository import IntakeRepository
from ad_intake.storage.common import to_db_datetime, utc_now
from ad_intake.storage.sqlmodel_models import MessageRecord, QueueMessageRecord


class ScriptedAgent:
    """Extraction agent returning queued outcomes, raising queued exceptions."""

    def __init__(self, *steps: ExtractionOutcome | Exception | Callable[[str, str], Any]) -> None:
        self.steps = list(steps)
        self.calls: list[tuple[str, str]] = []

    def extract(self, agent: str, text: str) -> ExtractionOutcome:
        self.calls.append((agent, text))
        step = self.steps.pop(0) if len(self.steps) > 1 else self.steps[0]
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(agent, text)
        return step


class RecordingNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.messages: list[tuple[str, Severity]] = []
        self.fail = fail

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.messages.append((message, severity))
        if self.fail:
            raise RuntimeError("slack is down")


class RecordingCallback:
    def __init__(self, result: CallbackResult | None = None) -> None:
        self.payloads: list[dict[str, Any]] = []
        self.result = result or CallbackResult(kind=CallbackResultKind.DELIVERED, status_code=200)

    def send(self, payload: dict[str, Any]) -> CallbackResult:
        self.payloads.append(payload)
        return self.result


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[IntakeRepository]:
    repo = IntakeRepository(tmp_path / "intake.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def callback() -> RecordingCallback:
    return RecordingCallback()


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Drop every AD_INTAKE_* variable inherited from the outer environment."""

    for name in list(os.environ):
        if name.startswith("AD_INTAKE_"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture()
def make_agent() -> type[ScriptedAgent]:
    return ScriptedAgent


@pytest.fixture()
def make_callback() -> type[RecordingCallback]:
    return RecordingCallback


@pytest.fixture()
def failing_notifier() -> RecordingNotifier:
    return RecordingNotifier(fail=True)


def _queue_entries(
    repository: IntakeRepository,
    message_id: str,
) -> list[tuple[QueueMessageStatus, int]]:
    """Return ``(status, delivery_count)`` for every queue entry of one message id."""

    with Session(repository.engine) as session:
        rows = session.exec(
            select(QueueMessageRecord)
            .where(QueueMessageRecord.message_id == message_id)
            .order_by(col(QueueMessageRecord.id).asc()),
        ).all()
    return [(QueueMessageStatus(row.status), row.delivery_count) for row in rows]


def _expire_lease(repository: IntakeRepository, delivery_id: int) -> None:
    """Push an in-flight lease into the past, as if its consumer had crashed."""

    past = utc_now() - timedelta(seconds=1)
    with Session(repository.engine) as session:
        session.exec(
            sa_update(QueueMessageRecord)
            .where(
                col(QueueMessageRecord.id) == delivery_id,
                col(QueueMessageRecord.status) == QueueMessageStatus.IN_FLIGHT.value,
            )
            .values(lease_expires_at=to_db_datetime(past)),
        )
        session.commit()


def _count_jobs(repository: IntakeRepository, message_id: str) -> int:
    with Session(repository.engine) as session:
        rows = session.exec(
            select(MessageRecord.id).where(MessageRecord.message_id == message_id),
        ).all()
    return len(rows)


@pytest.fixture()
def queue_entries() -> Callable[[IntakeRepository, str], list[tuple[QueueMessageStatus, int]]]:
    return _queue_entries


@pytest.fixture()
def expire_lease() -> Callable[[IntakeRepository, int], None]:
    return _expire_lease


@pytest.fixture()
def count_jobs() -> Callable[[IntakeRepository, str], int]:
    return _count_jobs
