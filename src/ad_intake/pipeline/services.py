"""Use-case services for job submission, status and queue reporting."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ad_intake.pipeline.agents.base import SUPPORTED_AGENTS
from ad_intake.pipeline.callback import CallbackResultKind, CallbackSender
from ad_intake.pipeline.counters import ConcurrencyCounters
from ad_intake.pipeline.models import JobCreate, JobView, MediaView, QueueInfo, QueueMessage
from ad_intake.pipeline.repository import IntakeRepository

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 15


class SubmissionValidationError(ValueError):
    """Raised when a submission is rejected before any job is created."""


@dataclass(slots=True)
class JobSubmission:
    """High-level command to submit one message for extraction."""

    message_id: str
    text: str
    agent: str
    source: str | None = None


class IntakeService:
    """Accepts submissions and answers status / queue-info queries.

    Submission only records the job and publishes a queue message; the
    extraction itself always happens in the queue consumer.
    """

    def __init__(
        self,
        *,
        repository: IntakeRepository,
        max_concurrent_jobs: int,
        callback: CallbackSender | None = None,
    ) -> None:
        self.repository = repository
        self.counters = ConcurrencyCounters(repository.kv)
        self.max_concurrent_jobs = max_concurrent_jobs
        self.callback = callback

    def submit(self, submission: JobSubmission) -> JobView:
        """Validate, replace any previous job with the same id, and enqueue."""

        _validate_submission(submission)
        job = self.repository.jobs.replace_job(
            JobCreate(
                message_id=submission.message_id,
                request_text=submission.text,
                agent=submission.agent,
                source=submission.source,
            ),
        )
        self.counters.record_enqueued()
        self.repository.queue.publish(
            QueueMessage(
                message_id=submission.message_id,
                text=submission.text,
                agent=submission.agent,
                source=submission.source,
            ),
        )
        logger.info("Queued message %s for agent %s", job.message_id, job.agent)
        return job

    def get_status(self, message_id: str) -> JobView | None:
        return self.repository.jobs.get_job(message_id=message_id)

    def queue_info(self) -> QueueInfo:
        return self.counters.queue_info(max_concurrent_jobs=self.max_concurrent_jobs)

    def register_media(self, file_name: str) -> MediaView:
        """Store a received media file and forward its name downstream."""

        if not file_name.strip():
            raise SubmissionValidationError("file is required")
        media = self.repository.media.register(file_name=file_name, url=file_name)
        if self.callback is not None:
            result = self.callback.send({"file": file_name})
            if result.kind == CallbackResultKind.NOT_CONFIGURED:
                logger.debug("Media callback skipped for %s: not configured", file_name)
            elif not result.ok:
                logger.warning("Media callback for %s not delivered: %s", file_name, result.error)
        return media


def _validate_submission(submission: JobSubmission) -> None:
    if not submission.message_id.strip():
        raise SubmissionValidationError("message_id is required")
    if len(submission.text.strip()) < MIN_TEXT_LENGTH:
        raise SubmissionValidationError(
            f"text must contain at least {MIN_TEXT_LENGTH} characters",
        )
    if submission.agent not in SUPPORTED_AGENTS:
        raise SubmissionValidationError(
            f"agent must be one of: {', '.join(SUPPORTED_AGENTS)}",
        )
