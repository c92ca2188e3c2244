"""Queue consumer that drives jobs through the extraction state machine."""

from __future__ import annotations

import logging
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

from ad_intake.pipeline.agents import UnknownAgentError
from ad_intake.pipeline.callback import CallbackResult, CallbackResultKind, CallbackSender
from ad_intake.pipeline.counters import ConcurrencyCounters
from ad_intake.pipeline.models import (
    ExtractionOutcome,
    JobStatus,
    QueueDelivery,
    QueueMessage,
    QueueMessageStatus,
    Severity,
)
from ad_intake.pipeline.repository import IntakeRepository

logger = logging.getLogger(__name__)


class Extractor(Protocol):
    def extract(self, agent: str, text: str) -> ExtractionOutcome: ...


class Notifier(Protocol):
    def notify(self, message: str, severity: Severity = Severity.INFO) -> None: ...


@dataclass(slots=True)
class ConsumerRunSummary:
    """Aggregate consumer counters for CLI reporting."""

    received: int = 0
    succeeded: int = 0
    rejected: int = 0
    failed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    idle_polls: int = 0

    def merge(self, other: ConsumerRunSummary) -> None:
        self.received += other.received
        self.succeeded += other.succeeded
        self.rejected += other.rejected
        self.failed += other.failed
        self.retried += other.retried
        self.dead_lettered += other.dead_lettered
        self.idle_polls += other.idle_polls


class QueueConsumer:
    """Consumes queued extraction messages in bounded batches.

    Business outcomes (success, reject, empty or unparseable answers, unknown
    agent) are terminal and acknowledged. Any other exception marks the job
    failed and hands the message back to the queue for redelivery.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: IntakeRepository,
        agent: Extractor,
        notifier: Notifier,
        callback: CallbackSender,
        batch_size: int = 10,
        visibility_timeout_seconds: int = 300,
        retry_delay_seconds: int = 0,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self.repository = repository
        self.counters = ConcurrencyCounters(repository.kv)
        self.agent = agent
        self.notifier = notifier
        self.callback = callback
        self.batch_size = batch_size
        self.visibility_timeout_seconds = visibility_timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._stop_requested = False

    def run_once(self) -> ConsumerRunSummary:
        """Receive and process at most one batch."""

        summary = ConsumerRunSummary()
        if self._stop_requested:
            summary.idle_polls = 1
            return summary

        deliveries = self.repository.queue.receive_batch(
            max_messages=self.batch_size,
            visibility_timeout_seconds=self.visibility_timeout_seconds,
        )
        if not deliveries:
            summary.idle_polls = 1
            return summary

        for delivery in deliveries:
            summary.received += 1
            self.process_delivery(delivery, summary=summary)
        return summary

    def run_loop(
        self,
        *,
        max_batches: int | None = None,
        max_idle_polls: int = 1,
    ) -> ConsumerRunSummary:
        """Run until the queue stays idle or ``max_batches`` batches were processed."""

        aggregate = ConsumerRunSummary()
        batches = 0
        consecutive_idle = 0
        with self._signal_handlers():
            while True:
                if self._stop_requested:
                    return aggregate
                if max_batches is not None and batches >= max_batches:
                    return aggregate

                summary = self.run_once()
                aggregate.merge(summary)

                if summary.received == 0:
                    consecutive_idle += 1
                    if consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue

                batches += 1
                consecutive_idle = 0

    def process_delivery(self, delivery: QueueDelivery, *, summary: ConsumerRunSummary) -> None:
        """Run one message through processing, outcome, side effects and ack."""

        message = delivery.message
        self.counters.record_started()
        try:
            try:
                outcome = self._attempt(message)
            except Exception as error:  # noqa: BLE001
                self._handle_unexpected_failure(delivery, error=error, summary=summary)
                return

            self.repository.queue.ack(delivery)
            if outcome.status == JobStatus.SUCCESS:
                summary.succeeded += 1
            elif outcome.status == JobStatus.REJECT:
                summary.rejected += 1
            else:
                summary.failed += 1
        finally:
            self.counters.record_finished()

    def _attempt(self, message: QueueMessage) -> ExtractionOutcome:
        if not self.repository.jobs.mark_processing(message_id=message.message_id):
            logger.warning("Job row missing for message %s", message.message_id)

        try:
            outcome = self.agent.extract(message.agent, message.text)
        except UnknownAgentError as error:
            outcome = ExtractionOutcome(status=JobStatus.FAILED, message=str(error))

        if outcome.parse_error is not None:
            self._notify(f"❌ {outcome.parse_error}", Severity.ERROR)

        self.repository.jobs.record_outcome(
            message_id=message.message_id,
            status=outcome.status,
            output_data=outcome.to_output_data(),
            source=message.source,
        )
        logger.info("Message %s finished with status %s", message.message_id, outcome.status.value)
        self._dispatch_side_effects(message, outcome)
        return outcome

    def _handle_unexpected_failure(
        self,
        delivery: QueueDelivery,
        *,
        error: Exception,
        summary: ConsumerRunSummary,
    ) -> None:
        message = delivery.message
        error_message = str(error) or type(error).__name__
        logger.error(
            "Processing failed for %s (delivery %d): %s",
            message.message_id,
            delivery.delivery_count,
            error_message,
        )
        try:
            self.repository.jobs.record_outcome(
                message_id=message.message_id,
                status=JobStatus.FAILED,
                output_data={"message": error_message},
                source=message.source,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Could not persist failure for %s", message.message_id)
        self._notify(
            f"❌ Processing failed for {message.message_id}: {error_message}",
            Severity.ERROR,
        )

        status = self.repository.queue.retry(
            delivery,
            delay_seconds=self.retry_delay_seconds,
            error=error_message,
        )
        if status == QueueMessageStatus.DEAD_LETTER:
            summary.dead_lettered += 1
            summary.failed += 1
        else:
            summary.retried += 1

    def _dispatch_side_effects(self, message: QueueMessage, outcome: ExtractionOutcome) -> None:
        self._notify(
            "✅ Completed processing\n"
            f"Message ID: {message.message_id}\n"
            f"Status: {outcome.status.value}",
            Severity.SUCCESS,
        )
        result = self._send_callback(
            {
                "message_id": message.message_id,
                "request_text": message.text,
                "agent_used": message.agent,
                "status": outcome.status.value,
                "output_data": outcome.to_output_data(),
                "source": message.source,
            },
        )
        if result.ok:
            self._notify(
                f"✅ Callback sent successfully for message ID: {message.message_id}",
                Severity.SUCCESS,
            )
            return
        logger.warning("Callback for %s not delivered: %s", message.message_id, result.error)
        self._notify(
            f"❌ Failed to send callback for message ID: {message.message_id}\n"
            f"Error: {result.error}",
            Severity.ERROR,
        )

    def _send_callback(self, payload: dict[str, Any]) -> CallbackResult:
        try:
            return self.callback.send(payload)
        except Exception as exc:  # noqa: BLE001
            return CallbackResult(kind=CallbackResultKind.TRANSPORT_ERROR, error=str(exc))

    def _notify(self, message: str, severity: Severity) -> None:
        try:
            self.notifier.notify(message, severity)
        except Exception:  # noqa: BLE001
            logger.warning("Notification dropped", exc_info=True)

    def _sleep_with_stop(self, seconds: float) -> None:
        deadline = time.monotonic() + seconds
        while not self._stop_requested and time.monotonic() < deadline:
            time.sleep(min(0.1, max(0.0, deadline - time.monotonic())))

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            logger.info("Stop requested by signal %s", signum)
            self._stop_requested = True

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            yield
        except ValueError:
            # Signal handlers can only be installed in main thread.
            yield
        finally:
            try:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)
            except ValueError:
                pass
