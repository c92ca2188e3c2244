"""CLI entrypoint for ad-intake."""

import logging
from pathlib import Path

import rich_click as click

from ad_intake import __version__
from ad_intake.pipeline.controllers import (
    IntakeCliController,
    MediaCommand,
    QueueInfoCommand,
    StatusCommand,
    SubmitCommand,
    WorkerCommand,
)
from ad_intake.pipeline.services import SubmissionValidationError

click.rich_click.USE_MARKDOWN = True
INTAKE_CONTROLLER = IntakeCliController()
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


@click.group()
@click.version_option(version=__version__, prog_name="ad-intake")
def ad_intake() -> None:
    """Real-estate ad intake CLI."""


@ad_intake.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--message-id", required=True, help="Caller-chosen message identifier.")
@click.option("--text", required=True, help="Raw advertisement text.")
@click.option(
    "--agent",
    type=click.Choice(["chatgpt", "openrouter", "gemini"]),
    default="gemini",
    show_default=True,
    help="Extraction provider.",
)
@click.option("--source", default=None, help="Optional origin label echoed to the callback.")
def submit(
    db_path: Path | None,
    message_id: str,
    text: str,
    agent: str,
    source: str | None,
) -> None:
    """Queue one message for extraction."""

    try:
        lines = INTAKE_CONTROLLER.submit(
            SubmitCommand(
                db_path=db_path,
                message_id=message_id,
                text=text,
                agent=agent,
                source=source,
            ),
        )
    except SubmissionValidationError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@ad_intake.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("message_id")
def status(db_path: Path | None, message_id: str) -> None:
    """Show the current status and output of one message."""

    result = INTAKE_CONTROLLER.status(StatusCommand(db_path=db_path, message_id=message_id))
    _emit_lines(result.lines)
    if not result.found:
        raise click.ClickException("Message not found.")


@ad_intake.command("queue-info")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def queue_info(db_path: Path | None) -> None:
    """Show advisory queue size and free processing slots."""

    _emit_lines(INTAKE_CONTROLLER.queue_info(QueueInfoCommand(db_path=db_path)))


@ad_intake.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--once/--loop",
    default=True,
    show_default=True,
    help="Process one batch or loop until idle.",
)
@click.option(
    "--max-batches",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed batches in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=1,
    show_default=True,
    help="Stop the loop after this many consecutive empty polls.",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
)
def worker(
    db_path: Path | None,
    once: bool,
    max_batches: int | None,
    max_idle_polls: int,
    log_level: str,
) -> None:
    """Run the queue consumer."""

    _configure_logging(log_level)
    try:
        lines = INTAKE_CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_batches=max_batches,
                max_idle_polls=max_idle_polls,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@ad_intake.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
)
def serve(db_path: Path | None, host: str, port: int, log_level: str) -> None:
    """Serve the HTTP API with uvicorn."""

    import uvicorn

    from ad_intake.config import Settings
    from ad_intake.web.app import create_app

    _configure_logging(log_level)
    settings = Settings.from_env(db_path=db_path)
    if not settings.api_secret_token:
        click.echo("Warning: AD_INTAKE_API_SECRET_TOKEN is not set; every request will get 401.")
    uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level.lower())


@ad_intake.command("media")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("file_name")
def media(db_path: Path | None, file_name: str) -> None:
    """Register a received media file and forward it to the callback."""

    try:
        lines = INTAKE_CONTROLLER.register_media(
            MediaCommand(db_path=db_path, file_name=file_name),
        )
    except SubmissionValidationError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ad_intake()
