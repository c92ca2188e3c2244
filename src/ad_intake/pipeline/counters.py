"""Advisory concurrency counters kept in the shared key-value store.

The counters are plain read-modify-write values with no transactional
guarantee. Concurrent consumers lose updates, so both numbers are approximate
telemetry and are never used for admission control.
"""

from __future__ import annotations

import logging

from ad_intake.pipeline.models import QueueInfo
from ad_intake.pipeline.repository import KeyValueRepository

logger = logging.getLogger(__name__)

QUEUE_SIZE_KEY = "queue_size"
ACTIVE_PROCESSING_KEY = "active_processing"


class ConcurrencyCounters:
    """Best-effort ``queue_size`` / ``active_processing`` accounting."""

    def __init__(self, kv: KeyValueRepository) -> None:
        self.kv = kv

    def queue_size(self) -> int:
        return self._read(QUEUE_SIZE_KEY)

    def active_processing(self) -> int:
        return self._read(ACTIVE_PROCESSING_KEY)

    def record_enqueued(self) -> None:
        self._adjust(QUEUE_SIZE_KEY, 1)

    def record_started(self) -> None:
        self._adjust(ACTIVE_PROCESSING_KEY, 1)

    def record_finished(self) -> None:
        """Release one queued and one active slot, clamped at zero."""

        self._adjust(QUEUE_SIZE_KEY, -1)
        self._adjust(ACTIVE_PROCESSING_KEY, -1)

    def queue_info(self, *, max_concurrent_jobs: int) -> QueueInfo:
        active = self.active_processing()
        return QueueInfo(
            queue_size=self.queue_size(),
            max_concurrent_processing=max_concurrent_jobs,
            available_processing_slots=max(0, max_concurrent_jobs - active),
        )

    def _read(self, key: str) -> int:
        raw = self.kv.get(key)
        if raw is None:
            return 0
        try:
            return max(0, int(raw))
        except ValueError:
            return 0

    def _adjust(self, key: str, delta: int) -> None:
        try:
            self.kv.set(key, str(max(0, self._read(key) + delta)))
        except Exception:  # noqa: BLE001
            logger.warning("Counter update skipped for %s (%+d)", key, delta, exc_info=True)
