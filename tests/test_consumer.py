from __future__ import annotations

from pathlib import Path

import allure
import httpx

from ad_intake.pipeline.agents import (
    ExtractionAgent,
    GeminiProvider,
    OpenRouterProvider,
    ProviderKind,
    UnknownAgentError,
)
from ad_intake.pipeline.callback import CallbackResult, CallbackResultKind
from ad_intake.pipeline.consumer import QueueConsumer
from ad_intake.pipeline.counters import ConcurrencyCounters
from ad_intake.pipeline.models import (
    ExtractionOutcome,
    JobCreate,
    JobStatus,
    QueueMessage,
    QueueMessageStatus,
    Severity,
)
from ad_intake.pipeline.repository import IntakeRepository
from ad_intake.pipeline.services import IntakeService, JobSubmission

pytestmark = [
    allure.epic("Job Pipeline"),
    allure.feature("Queue Consumer"),
]

AD_TEXT = "Vendo departamento 2 ambientes en Palermo, USD 120000, 45 m2"
LISTING = {"description": AD_TEXT, "property_type": "apartment", "price": 120000}
SUCCESS = ExtractionOutcome(status=JobStatus.SUCCESS, data=[LISTING])


def _submit(
    repository: IntakeRepository,
    message_id: str = "m1",
    *,
    agent: str = "gemini",
    text: str = AD_TEXT,
    source: str | None = "whatsapp",
) -> None:
    IntakeService(repository=repository, max_concurrent_jobs=5).submit(
        JobSubmission(message_id=message_id, text=text, agent=agent, source=source),
    )


def _consumer(repository, agent, notifier, callback, **kwargs) -> QueueConsumer:
    kwargs.setdefault("poll_interval_seconds", 0)
    return QueueConsumer(
        repository=repository,
        agent=agent,
        notifier=notifier,
        callback=callback,
        **kwargs,
    )


def test_success_is_persisted_dispatched_and_acked(
    repository, make_agent, notifier, callback, queue_entries
) -> None:
    _submit(repository)

    summary = _consumer(repository, make_agent(SUCCESS), notifier, callback).run_once()

    assert (summary.received, summary.succeeded, summary.retried) == (1, 1, 0)
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.SUCCESS
    assert job.output_data == {"status": "success", "data": [LISTING]}
    assert job.source == "whatsapp"
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]

    assert notifier.messages == [
        ("✅ Completed processing\nMessage ID: m1\nStatus: success", Severity.SUCCESS),
        ("✅ Callback sent successfully for message ID: m1", Severity.SUCCESS),
    ]
    assert callback.payloads == [
        {
            "message_id": "m1",
            "request_text": AD_TEXT,
            "agent_used": "gemini",
            "status": "success",
            "output_data": {"status": "success", "data": [LISTING]},
            "source": "whatsapp",
        },
    ]

    counters = ConcurrencyCounters(repository.kv)
    assert counters.queue_size() == 0
    assert counters.active_processing() == 0


def test_job_is_processing_while_agent_runs(repository, make_agent, notifier, callback) -> None:
    _submit(repository)
    observed: list[tuple[JobStatus, int]] = []

    def _observe(agent: str, text: str) -> ExtractionOutcome:
        job = repository.jobs.get_job(message_id="m1")
        assert job is not None
        observed.append((job.status, ConcurrencyCounters(repository.kv).active_processing()))
        return SUCCESS

    _consumer(repository, make_agent(_observe), notifier, callback).run_once()

    assert observed == [(JobStatus.PROCESSING, 1)]


def test_end_to_end_reject_through_gemini(
    repository, notifier, callback, queue_entries
) -> None:
    def gemini(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "no"}]}}]})

    agent = ExtractionAgent(
        {
            ProviderKind.OPENROUTER: OpenRouterProvider(
                api_key=None,
                model="unused",
                timeout_seconds=5,
            ),
            ProviderKind.GEMINI: GeminiProvider(
                api_key="g-key",
                model="gemini-2.5-flash",
                timeout_seconds=5,
                client=httpx.Client(transport=httpx.MockTransport(gemini)),
            ),
        },
    )
    _submit(repository, "m1", agent="gemini", text="Hola, ¿cómo están todos por acá?")

    summary = _consumer(repository, agent, notifier, callback).run_once()
    agent.close()

    assert summary.rejected == 1
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.REJECT
    assert job.output_data == {
        "status": "reject",
        "message": "No real estate advertisement found",
    }
    assert callback.payloads[0]["status"] == "reject"
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]


def test_parse_failure_is_terminal_and_notified(
    repository, make_agent, notifier, callback, queue_entries
) -> None:
    _submit(repository)
    outcome = ExtractionOutcome(
        status=JobStatus.FAILED,
        message="Could not parse JSON response: Expecting value",
        parse_error="Gemini JSON parse error: Expecting value",
    )

    summary = _consumer(repository, make_agent(outcome), notifier, callback).run_once()

    assert (summary.failed, summary.retried) == (1, 0)
    assert notifier.messages[0] == ("❌ Gemini JSON parse error: Expecting value", Severity.ERROR)
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert job.output_data == {
        "status": "failed",
        "message": "Could not parse JSON response: Expecting value",
    }
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]


def test_unknown_agent_fails_without_retry(
    repository, make_agent, notifier, callback, queue_entries
) -> None:
    repository.jobs.replace_job(JobCreate(message_id="m1", request_text=AD_TEXT, agent="claude"))
    repository.queue.publish(QueueMessage(message_id="m1", text=AD_TEXT, agent="claude"))

    summary = _consumer(
        repository,
        make_agent(UnknownAgentError("claude")),
        notifier,
        callback,
    ).run_once()

    assert (summary.failed, summary.retried) == (1, 0)
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert job.output_data == {"status": "failed", "message": "Invalid agent: claude"}
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]


def test_unexpected_error_marks_failed_and_redelivers(
    repository, make_agent, notifier, callback, queue_entries
) -> None:
    _submit(repository)
    agent = make_agent(RuntimeError("provider exploded"), SUCCESS)
    consumer = _consumer(repository, agent, notifier, callback)

    first = consumer.run_once()

    assert (first.retried, first.failed) == (1, 0)
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.FAILED
    assert job.output_data == {"message": "provider exploded"}
    assert notifier.messages == [("❌ Processing failed for m1: provider exploded", Severity.ERROR)]
    assert callback.payloads == []
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.PENDING, 1)]
    assert ConcurrencyCounters(repository.kv).active_processing() == 0

    second = consumer.run_once()

    assert second.succeeded == 1
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.SUCCESS
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 2)]


def test_repeated_failures_end_in_dead_letter(
    tmp_path: Path, make_agent, notifier, callback, queue_entries
) -> None:
    repository = IntakeRepository(tmp_path / "dlq.db", max_deliveries=2)
    repository.init_schema()
    _submit(repository)
    consumer = _consumer(repository, make_agent(RuntimeError("timeout")), notifier, callback)

    assert consumer.run_once().retried == 1
    second = consumer.run_once()
    third = consumer.run_once()

    assert second.dead_lettered == 1
    assert third.idle_polls == 1
    entries = queue_entries(repository, "m1")
    assert entries == [(QueueMessageStatus.DEAD_LETTER, 2)]
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.FAILED
    repository.close()


def test_callback_failure_does_not_change_job(
    repository, make_agent, make_callback, notifier, queue_entries
) -> None:
    _submit(repository)
    failing = make_callback(
        CallbackResult(
            kind=CallbackResultKind.HTTP_ERROR,
            status_code=500,
            error="Callback endpoint returned status 500",
        ),
    )

    summary = _consumer(repository, make_agent(SUCCESS), notifier, failing).run_once()

    assert summary.succeeded == 1
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.SUCCESS
    assert notifier.messages[-1] == (
        "❌ Failed to send callback for message ID: m1\n"
        "Error: Callback endpoint returned status 500",
        Severity.ERROR,
    )
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]


def test_side_channel_exceptions_are_contained(
    repository, make_agent, failing_notifier, queue_entries
) -> None:
    class ExplodingCallback:
        def send(self, payload):
            raise RuntimeError("callback crashed")

    _submit(repository)

    summary = _consumer(
        repository,
        make_agent(SUCCESS),
        failing_notifier,
        ExplodingCallback(),
    ).run_once()

    assert (summary.succeeded, summary.retried) == (1, 0)
    assert len(failing_notifier.messages) == 2
    assert failing_notifier.messages[-1][0].endswith("Error: callback crashed")
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 1)]


def test_crashed_delivery_is_recovered_after_lease_expiry(
    repository, make_agent, notifier, callback, queue_entries, expire_lease
) -> None:
    _submit(repository)
    (crashed,) = repository.queue.receive_batch(max_messages=1, visibility_timeout_seconds=60)
    repository.jobs.mark_processing(message_id="m1")

    consumer = _consumer(repository, make_agent(SUCCESS), notifier, callback)
    assert consumer.run_once().received == 0

    expire_lease(repository, crashed.delivery_id)
    summary = consumer.run_once()

    assert summary.succeeded == 1
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.SUCCESS
    assert queue_entries(repository, "m1") == [(QueueMessageStatus.ACKED, 2)]


def test_resubmission_keeps_single_job_row(
    repository, make_agent, notifier, callback, count_jobs
) -> None:
    _submit(repository, text=AD_TEXT)
    _submit(repository, text=AD_TEXT + " (precio negociable)")
    agent = make_agent(SUCCESS)

    summary = _consumer(repository, agent, notifier, callback).run_once()

    assert summary.received == 2
    assert [text for _, text in agent.calls] == [AD_TEXT, AD_TEXT + " (precio negociable)"]
    assert count_jobs(repository, "m1") == 1
    job = repository.jobs.get_job(message_id="m1")
    assert job is not None
    assert job.status == JobStatus.SUCCESS
    assert ConcurrencyCounters(repository.kv).queue_size() == 0


def test_batch_size_bounds_one_invocation(repository, make_agent, notifier, callback) -> None:
    for index in range(12):
        _submit(repository, f"m{index}")
    consumer = _consumer(repository, make_agent(SUCCESS), notifier, callback, batch_size=10)

    assert consumer.run_once().received == 10
    assert consumer.run_once().received == 2


def test_run_loop_drains_queue_then_stops_when_idle(
    repository, make_agent, notifier, callback
) -> None:
    for index in range(3):
        _submit(repository, f"m{index}")
    consumer = _consumer(repository, make_agent(SUCCESS), notifier, callback, batch_size=2)

    summary = consumer.run_loop(max_idle_polls=1)

    assert (summary.received, summary.succeeded, summary.idle_polls) == (3, 3, 1)


def test_run_loop_honours_max_batches(repository, make_agent, notifier, callback) -> None:
    for index in range(3):
        _submit(repository, f"m{index}")
    consumer = _consumer(repository, make_agent(SUCCESS), notifier, callback, batch_size=1)

    summary = consumer.run_loop(max_batches=2)

    assert summary.received == 2
    assert repository.queue.stats().count(QueueMessageStatus.PENDING) == 1
