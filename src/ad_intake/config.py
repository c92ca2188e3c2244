"""Runtime configuration for the intake API, queue and worker."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_MAX_CONCURRENT_JOBS = 5


@dataclass(slots=True)
class QueueSettings:
    """Durable queue and consumer settings."""

    batch_size: int = 10
    max_deliveries: int = 3
    visibility_timeout_seconds: int = 300
    retry_delay_seconds: int = 0
    poll_interval_seconds: float = 2.0
    busy_timeout_ms: int = 5000


@dataclass(slots=True)
class AgentSettings:
    """Extraction provider credentials and models."""

    openrouter_api_key: str | None = None
    openrouter_model: str = "deepseek/deepseek-chat-v3-0324:free"
    google_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    timeout_seconds: float = 60.0


@dataclass(slots=True)
class DispatchSettings:
    """Slack notification and downstream callback settings."""

    slack_webhook_url: str | None = None
    callback_api_url: str | None = None
    callback_api_key: str | None = None
    timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".ad_intake.db")
    api_secret_token: str | None = None
    max_concurrent_jobs: int = DEFAULT_MAX_CONCURRENT_JOBS
    queue: QueueSettings = field(default_factory=QueueSettings)
    agents: AgentSettings = field(default_factory=AgentSettings)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AD_INTAKE_DB_PATH", ".ad_intake.db")),
            api_secret_token=_env_optional("AD_INTAKE_API_SECRET_TOKEN"),
            max_concurrent_jobs=int(
                os.getenv("AD_INTAKE_MAX_CONCURRENT_JOBS", str(DEFAULT_MAX_CONCURRENT_JOBS)),
            ),
            queue=QueueSettings(
                batch_size=int(os.getenv("AD_INTAKE_QUEUE_BATCH_SIZE", "10")),
                max_deliveries=int(os.getenv("AD_INTAKE_QUEUE_MAX_DELIVERIES", "3")),
                visibility_timeout_seconds=int(
                    os.getenv("AD_INTAKE_QUEUE_VISIBILITY_TIMEOUT_SECONDS", "300"),
                ),
                retry_delay_seconds=int(os.getenv("AD_INTAKE_QUEUE_RETRY_DELAY_SECONDS", "0")),
                poll_interval_seconds=float(
                    os.getenv("AD_INTAKE_WORKER_POLL_INTERVAL_SECONDS", "2.0"),
                ),
                busy_timeout_ms=int(os.getenv("AD_INTAKE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            ),
            agents=AgentSettings(
                openrouter_api_key=_env_optional("AD_INTAKE_OPENROUTER_API_KEY"),
                openrouter_model=os.getenv(
                    "AD_INTAKE_OPENROUTER_MODEL",
                    "deepseek/deepseek-chat-v3-0324:free",
                ),
                google_api_key=_env_optional("AD_INTAKE_GOOGLE_API_KEY"),
                gemini_model=os.getenv("AD_INTAKE_GEMINI_MODEL", "gemini-2.5-flash"),
                timeout_seconds=float(os.getenv("AD_INTAKE_AGENT_TIMEOUT_SECONDS", "60.0")),
            ),
            dispatch=DispatchSettings(
                slack_webhook_url=_env_optional("AD_INTAKE_SLACK_WEBHOOK_URL"),
                callback_api_url=_env_optional("AD_INTAKE_CALLBACK_API_URL"),
                callback_api_key=_env_optional("AD_INTAKE_CALLBACK_API_KEY"),
                timeout_seconds=float(os.getenv("AD_INTAKE_HTTP_TIMEOUT_SECONDS", "10.0")),
            ),
        )

    def validate_for_worker(self) -> None:
        """Raise configuration error if queue or dispatch settings are unusable."""

        if self.max_concurrent_jobs <= 0:
            raise ValueError("AD_INTAKE_MAX_CONCURRENT_JOBS must be a positive integer.")
        if self.queue.batch_size <= 0:
            raise ValueError("AD_INTAKE_QUEUE_BATCH_SIZE must be a positive integer.")
        if self.queue.max_deliveries <= 0:
            raise ValueError("AD_INTAKE_QUEUE_MAX_DELIVERIES must be a positive integer.")
        if self.queue.visibility_timeout_seconds <= 0:
            raise ValueError("AD_INTAKE_QUEUE_VISIBILITY_TIMEOUT_SECONDS must be > 0.")
        if self.queue.retry_delay_seconds < 0:
            raise ValueError("AD_INTAKE_QUEUE_RETRY_DELAY_SECONDS must be >= 0.")
        for name, url in (
            ("AD_INTAKE_SLACK_WEBHOOK_URL", self.dispatch.slack_webhook_url),
            ("AD_INTAKE_CALLBACK_API_URL", self.dispatch.callback_api_url),
        ):
            if url is not None:
                _validate_http_url(name, url)


def _env_optional(name: str) -> str | None:
    value = os.getenv(name, "").strip()
    return value or None


def _validate_http_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
