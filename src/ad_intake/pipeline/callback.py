"""Delivery of final job outcomes to the downstream consumer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)


class CallbackResultKind(str, Enum):
    DELIVERED = "delivered"
    NOT_CONFIGURED = "not_configured"
    TRANSPORT_ERROR = "transport_error"
    HTTP_ERROR = "http_error"


@dataclass(slots=True)
class CallbackResult:
    """Outcome of one callback POST."""

    kind: CallbackResultKind
    status_code: int | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind == CallbackResultKind.DELIVERED


class CallbackSender(Protocol):
    def send(self, payload: dict[str, Any]) -> CallbackResult: ...


class CallbackDispatcher:
    """POSTs outcome payloads with an API key header; never retries."""

    def __init__(
        self,
        *,
        url: str | None,
        api_key: str | None,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=5.0))

    def send(self, payload: dict[str, Any]) -> CallbackResult:
        if not self.url or not self.api_key:
            return CallbackResult(
                kind=CallbackResultKind.NOT_CONFIGURED,
                error="Callback URL or Key not configured",
            )
        try:
            response = self._client.post(
                self.url,
                json=payload,
                headers={"X-API-Key": self.api_key},
            )
        except httpx.HTTPError as exc:
            logger.warning("Callback transport error for %s: %s", self.url, exc)
            return CallbackResult(kind=CallbackResultKind.TRANSPORT_ERROR, error=str(exc))

        if not response.is_success:
            return CallbackResult(
                kind=CallbackResultKind.HTTP_ERROR,
                status_code=response.status_code,
                error=f"Callback endpoint returned status {response.status_code}",
            )
        return CallbackResult(kind=CallbackResultKind.DELIVERED, status_code=response.status_code)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
