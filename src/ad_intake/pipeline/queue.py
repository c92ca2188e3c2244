"""SQLite-backed durable queue with at-least-once delivery.

Messages are claimed under a lease. A consumer either acknowledges a delivery
or asks for redelivery; a delivery whose lease expires without either becomes
visible again, so a crashed consumer never loses a message.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta

from sqlalchemy import ColumnElement, and_, or_
from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlmodel import Session, col, select

from ad_intake.pipeline.models import (
    QueueDelivery,
    QueueMessage,
    QueueMessageStatus,
    QueueStats,
)
from ad_intake.storage.common import to_db_datetime, utc_now
from ad_intake.storage.sqlmodel_models import QueueMessageRecord

logger = logging.getLogger(__name__)


class QueueRepository:
    """Durable extraction queue."""

    def __init__(self, engine: Engine, *, max_deliveries: int = 3) -> None:
        if max_deliveries <= 0:
            raise ValueError("max_deliveries must be positive.")
        self.engine = engine
        self.max_deliveries = max_deliveries

    def publish(self, message: QueueMessage, *, delay_seconds: int = 0) -> int:
        """Append one message; returns its queue entry id."""

        now = utc_now()
        with Session(self.engine) as session:
            row = QueueMessageRecord(
                message_id=message.message_id,
                body_json=json.dumps(message.to_body(), ensure_ascii=False, sort_keys=True),
                status=QueueMessageStatus.PENDING.value,
                delivery_count=0,
                run_after=now + timedelta(seconds=max(0, delay_seconds)),
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return row.id or 0

    def receive_batch(
        self,
        *,
        max_messages: int,
        visibility_timeout_seconds: int,
    ) -> list[QueueDelivery]:
        """Claim up to ``max_messages`` visible messages under a fresh lease."""

        self._dead_letter_exhausted_leases()
        deliveries: list[QueueDelivery] = []
        while len(deliveries) < max_messages:
            now = utc_now()
            with Session(self.engine) as session:
                candidates = session.exec(
                    select(QueueMessageRecord)
                    .where(_visible_clause(now))
                    .order_by(
                        col(QueueMessageRecord.run_after).asc(),
                        col(QueueMessageRecord.id).asc(),
                    )
                    .limit(max_messages - len(deliveries)),
                ).all()
                if not candidates:
                    return deliveries

                lease_expires_at = now + timedelta(seconds=visibility_timeout_seconds)
                snapshots = [
                    (row.id or 0, row.status, row.delivery_count, row.body_json)
                    for row in candidates
                ]
                for entry_id, status, delivery_count, body_json in snapshots:
                    result = session.exec(
                        sa_update(QueueMessageRecord)
                        .where(
                            col(QueueMessageRecord.id) == entry_id,
                            col(QueueMessageRecord.status) == status,
                            col(QueueMessageRecord.delivery_count) == delivery_count,
                        )
                        .values(
                            status=QueueMessageStatus.IN_FLIGHT.value,
                            delivery_count=delivery_count + 1,
                            lease_expires_at=to_db_datetime(lease_expires_at),
                            updated_at=to_db_datetime(now),
                        ),
                    )
                    if result.rowcount != 1:
                        # Claimed concurrently by another consumer.
                        continue
                    deliveries.append(
                        QueueDelivery(
                            delivery_id=entry_id,
                            message=QueueMessage.from_body(json.loads(body_json)),
                            delivery_count=delivery_count + 1,
                            lease_expires_at=lease_expires_at,
                        ),
                    )
                session.commit()
        return deliveries

    def ack(self, delivery: QueueDelivery) -> bool:
        """Mark a delivery as done. Stale deliveries are ignored."""

        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueMessageRecord)
                .where(*_owned_delivery_clause(delivery))
                .values(
                    status=QueueMessageStatus.ACKED.value,
                    lease_expires_at=None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                logger.warning(
                    "Ack ignored for stale delivery %s of message %s",
                    delivery.delivery_id,
                    delivery.message.message_id,
                )
                return False
            session.commit()
            return True

    def retry(
        self,
        delivery: QueueDelivery,
        *,
        delay_seconds: int = 0,
        error: str | None = None,
    ) -> QueueMessageStatus | None:
        """Ask for redelivery, or dead-letter once deliveries are exhausted.

        Returns the resulting entry status, or ``None`` for a stale delivery.
        """

        now = utc_now()
        exhausted = delivery.delivery_count >= self.max_deliveries
        next_status = QueueMessageStatus.DEAD_LETTER if exhausted else QueueMessageStatus.PENDING
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueMessageRecord)
                .where(*_owned_delivery_clause(delivery))
                .values(
                    status=next_status.value,
                    run_after=to_db_datetime(now + timedelta(seconds=max(0, delay_seconds))),
                    lease_expires_at=None,
                    last_error=error,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            session.commit()
        if exhausted:
            logger.warning(
                "Message %s dead-lettered after %d deliveries",
                delivery.message.message_id,
                delivery.delivery_count,
            )
        return next_status

    def stats(self) -> QueueStats:
        """Count entries per delivery state."""

        with Session(self.engine) as session:
            statuses = session.exec(select(QueueMessageRecord.status)).all()
        counts: dict[QueueMessageStatus, int] = {}
        for raw in statuses:
            status = QueueMessageStatus(raw)
            counts[status] = counts.get(status, 0) + 1
        return QueueStats(counts=counts)

    def _dead_letter_exhausted_leases(self) -> None:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(QueueMessageRecord)
                .where(
                    col(QueueMessageRecord.status) == QueueMessageStatus.IN_FLIGHT.value,
                    col(QueueMessageRecord.lease_expires_at) <= to_db_datetime(now),
                    col(QueueMessageRecord.delivery_count) >= self.max_deliveries,
                )
                .values(
                    status=QueueMessageStatus.DEAD_LETTER.value,
                    lease_expires_at=None,
                    last_error="Lease expired after final delivery.",
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount:
                logger.warning("Dead-lettered %d messages with expired leases", result.rowcount)
            session.commit()


def _visible_clause(now: datetime) -> ColumnElement[bool]:
    db_now = to_db_datetime(now)
    return or_(
        and_(
            col(QueueMessageRecord.status) == QueueMessageStatus.PENDING.value,
            col(QueueMessageRecord.run_after) <= db_now,
        ),
        and_(
            col(QueueMessageRecord.status) == QueueMessageStatus.IN_FLIGHT.value,
            col(QueueMessageRecord.lease_expires_at) <= db_now,
        ),
    )


def _owned_delivery_clause(delivery: QueueDelivery) -> tuple[object, ...]:
    return (
        col(QueueMessageRecord.id) == delivery.delivery_id,
        col(QueueMessageRecord.status) == QueueMessageStatus.IN_FLIGHT.value,
        col(QueueMessageRecord.delivery_count) == delivery.delivery_count,
    )
