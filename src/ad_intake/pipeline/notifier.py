"""Best-effort Slack webhook notifications.

Posts run on a single background worker owned by the notifier, so a slow
webhook never holds up the caller. ``close`` waits for queued posts.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any

import httpx

from ad_intake.pipeline.models import Severity

logger = logging.getLogger(__name__)

SEVERITY_COLORS: dict[Severity, str] = {
    Severity.INFO: "#36a64f",
    Severity.WARNING: "#ffcc00",
    Severity.ERROR: "#ff0000",
    Severity.SUCCESS: "#36a64f",
}


class SlackNotifier:
    """Posts short messages to one incoming webhook; never raises, never blocks."""

    def __init__(
        self,
        *,
        webhook_url: str | None,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=5.0))
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="slack-notifier")
        self._closed = False

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        if not self.webhook_url or self._closed:
            return
        payload = {
            "attachments": [
                {
                    "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS[Severity.INFO]),
                    "text": message,
                    "ts": str(time.time()),
                },
            ],
        }
        self._executor.submit(self._post, self.webhook_url, payload)

    def close(self) -> None:
        """Wait for pending posts, then release the HTTP client."""

        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=True)
        if self._owns_client:
            self._client.close()

    def _post(self, url: str, payload: dict[str, Any]) -> None:
        try:
            response = self._client.post(url, json=payload)
        except httpx.HTTPError as exc:
            logger.warning("Slack notification failed: %s", exc)
            return
        if not response.is_success:
            logger.warning("Slack webhook returned HTTP %d", response.status_code)
