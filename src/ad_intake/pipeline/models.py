"""Domain models for the intake job pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class JobStatus(str, Enum):
    """Job lifecycle states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"
    REJECT = "reject"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.SUCCESS, JobStatus.FAILED, JobStatus.REJECT})


class QueueMessageStatus(str, Enum):
    """Delivery states of one durable queue entry."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    ACKED = "acked"
    DEAD_LETTER = "dead_letter"


class Severity(str, Enum):
    """Notification severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"


@dataclass(slots=True)
class JobCreate:
    """Input payload for inserting a fresh queued job."""

    message_id: str
    request_text: str
    agent: str
    source: str | None = None


@dataclass(slots=True)
class JobView:
    """Readable job projection for status queries and the consumer."""

    message_id: str
    request_text: str
    agent: str
    status: JobStatus
    output_data: dict[str, Any]
    source: str | None
    created_at: datetime
    updated_at: datetime

    def to_status_payload(self) -> dict[str, Any]:
        """Serialize the public status projection."""

        return {
            "message_id": self.message_id,
            "status": self.status.value,
            "agent_used": self.agent,
            "output_data": self.output_data,
            "created_at": self.created_at.isoformat(),
            "source": self.source,
        }


@dataclass(slots=True)
class QueueMessage:
    """Payload carried by the durable queue from submission to the consumer."""

    message_id: str
    text: str
    agent: str
    source: str | None = None

    def to_body(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "text": self.text,
            "agent": self.agent,
            "source": self.source,
        }

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> QueueMessage:
        return cls(
            message_id=str(body["message_id"]),
            text=str(body["text"]),
            agent=str(body["agent"]),
            source=body.get("source"),
        )


@dataclass(slots=True)
class QueueDelivery:
    """One claimed delivery of a queue message."""

    delivery_id: int
    message: QueueMessage
    delivery_count: int
    lease_expires_at: datetime


@dataclass(slots=True)
class ExtractionOutcome:
    """Business outcome of one extraction attempt."""

    status: JobStatus
    data: list[dict[str, Any]] | None = None
    message: str | None = None
    parse_error: str | None = None

    def to_output_data(self) -> dict[str, Any]:
        """Serialize the outcome as stored in ``output_data``."""

        payload: dict[str, Any] = {"status": self.status.value}
        if self.data is not None:
            payload["data"] = self.data
        if self.message is not None:
            payload["message"] = self.message
        return payload


@dataclass(slots=True)
class QueueInfo:
    """Advisory queue/concurrency report."""

    queue_size: int
    max_concurrent_processing: int
    available_processing_slots: int

    def to_payload(self) -> dict[str, int]:
        return {
            "queue_size": self.queue_size,
            "max_concurrent_processing": self.max_concurrent_processing,
            "available_processing_slots": self.available_processing_slots,
        }


@dataclass(slots=True)
class MediaView:
    """Stored media registration."""

    media_id: int
    file_name: str
    url: str | None
    uploaded_at: datetime


@dataclass(slots=True)
class QueueStats:
    """Counts of queue entries per delivery state."""

    counts: dict[QueueMessageStatus, int] = field(default_factory=dict)

    def count(self, status: QueueMessageStatus) -> int:
        return self.counts.get(status, 0)
