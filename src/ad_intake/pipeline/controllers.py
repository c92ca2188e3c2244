"""Controllers for intake CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from ad_intake.config import Settings
from ad_intake.pipeline.agents import ExtractionAgent
from ad_intake.pipeline.callback import CallbackDispatcher
from ad_intake.pipeline.consumer import QueueConsumer
from ad_intake.pipeline.models import QueueMessageStatus
from ad_intake.pipeline.notifier import SlackNotifier
from ad_intake.pipeline.repository import IntakeRepository
from ad_intake.pipeline.services import IntakeService, JobSubmission


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for message submission."""

    db_path: Path | None
    message_id: str
    text: str
    agent: str
    source: str | None


@dataclass(slots=True)
class StatusCommand:
    """CLI input for one job status lookup."""

    db_path: Path | None
    message_id: str


@dataclass(slots=True)
class QueueInfoCommand:
    """CLI input for the queue/concurrency report."""

    db_path: Path | None


@dataclass(slots=True)
class WorkerCommand:
    """CLI input for consumer execution."""

    db_path: Path | None
    once: bool
    max_batches: int | None
    max_idle_polls: int = 1


@dataclass(slots=True)
class MediaCommand:
    """CLI input for media registration."""

    db_path: Path | None
    file_name: str


@dataclass(slots=True)
class StatusResult:
    """Rendered status lookup plus whether the job exists."""

    lines: list[str]
    found: bool


class IntakeCliController:
    """Coordinates submission, inspection and worker CLI operations."""

    def submit(self, command: SubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = IntakeService(
                repository=repository,
                max_concurrent_jobs=settings.max_concurrent_jobs,
            )
            job = service.submit(
                JobSubmission(
                    message_id=command.message_id,
                    text=command.text,
                    agent=command.agent,
                    source=command.source,
                ),
            )
        return [f"Message queued: message_id={job.message_id} status={job.status.value}"]

    def status(self, command: StatusCommand) -> StatusResult:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = IntakeService(
                repository=repository,
                max_concurrent_jobs=settings.max_concurrent_jobs,
            )
            job = service.get_status(command.message_id)
        if job is None:
            return StatusResult(lines=[f"Message not found: {command.message_id}"], found=False)
        return StatusResult(
            lines=[
                f"message_id={job.message_id} status={job.status.value} "
                f"agent={job.agent} source={job.source or '-'}",
                f"created_at={job.created_at.isoformat()} updated_at={job.updated_at.isoformat()}",
                "output_data=" + json.dumps(job.output_data, ensure_ascii=False, sort_keys=True),
            ],
            found=True,
        )

    def queue_info(self, command: QueueInfoCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            service = IntakeService(
                repository=repository,
                max_concurrent_jobs=settings.max_concurrent_jobs,
            )
            info = service.queue_info()
            stats = repository.queue.stats()
        return [
            "Queue info: "
            f"queue_size={info.queue_size} "
            f"max_concurrent_processing={info.max_concurrent_processing} "
            f"available_processing_slots={info.available_processing_slots}",
            "Queue entries: "
            + " ".join(f"{status.value}={stats.count(status)}" for status in QueueMessageStatus),
        ]

    def run_worker(self, command: WorkerCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate_for_worker()
        agent = ExtractionAgent.from_settings(settings.agents)
        notifier = SlackNotifier(
            webhook_url=settings.dispatch.slack_webhook_url,
            timeout_seconds=settings.dispatch.timeout_seconds,
        )
        callback = CallbackDispatcher(
            url=settings.dispatch.callback_api_url,
            api_key=settings.dispatch.callback_api_key,
            timeout_seconds=settings.dispatch.timeout_seconds,
        )
        try:
            with _repository(settings) as repository:
                consumer = QueueConsumer(
                    repository=repository,
                    agent=agent,
                    notifier=notifier,
                    callback=callback,
                    batch_size=settings.queue.batch_size,
                    visibility_timeout_seconds=settings.queue.visibility_timeout_seconds,
                    retry_delay_seconds=settings.queue.retry_delay_seconds,
                    poll_interval_seconds=settings.queue.poll_interval_seconds,
                )
                summary = (
                    consumer.run_once()
                    if command.once
                    else consumer.run_loop(
                        max_batches=command.max_batches,
                        max_idle_polls=command.max_idle_polls,
                    )
                )
        finally:
            agent.close()
            notifier.close()
            callback.close()

        return [
            "Worker summary: "
            f"received={summary.received} succeeded={summary.succeeded} "
            f"rejected={summary.rejected} failed={summary.failed} "
            f"retried={summary.retried} dead_lettered={summary.dead_lettered} "
            f"idle_polls={summary.idle_polls}",
        ]

    def register_media(self, command: MediaCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        callback = CallbackDispatcher(
            url=settings.dispatch.callback_api_url,
            api_key=settings.dispatch.callback_api_key,
            timeout_seconds=settings.dispatch.timeout_seconds,
        )
        try:
            with _repository(settings) as repository:
                service = IntakeService(
                    repository=repository,
                    max_concurrent_jobs=settings.max_concurrent_jobs,
                    callback=callback,
                )
                media = service.register_media(command.file_name)
        finally:
            callback.close()
        return [f"Media registered: id={media.media_id} file={media.file_name}"]


@contextmanager
def _repository(settings: Settings) -> Iterator[IntakeRepository]:
    repository = IntakeRepository(
        settings.db_path,
        max_deliveries=settings.queue.max_deliveries,
        busy_timeout_ms=settings.queue.busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
