"""Batched analytics event queue with retry-on-failure flushing."""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Iterable
from typing import Any

from src.ports.collaborators import AnalyticsSinkPort, Clock, PersistencePort, utc_now

__all__ = [
    "AnalyticsQueue",
    "PRIORITY_EVENTS",
    "MIRROR_KEY",
    "CONSENT_KEY",
    "DEFAULT_RETENTION",
    "DEFAULT_MAX_BUFFER",
]

logger = logging.getLogger(__name__)

PRIORITY_EVENTS = frozenset({"error", "webhook_created", "schedule_failed"})
MIRROR_KEY = "analytics_events"
CONSENT_KEY = "analytics_consent"
DEFAULT_RETENTION = 1000
DEFAULT_MAX_BUFFER = 10_000


class AnalyticsQueue:
    """In-memory event buffer flushed to a sink in batches.

    Events are buffered by track() and delivered by flush(), which the
    engine calls on a timer. Priority events (errors, creations) schedule
    an immediate flush. A batch that fails to deliver goes back to the
    front of the buffer, ahead of anything tracked since, and is retried
    on the next flush.

    Delivered events are mirrored locally (most recent ``retention``
    entries) through the persistence port for debugging.

    Growth under a permanently failing sink is bounded by ``max_buffer``:
    once exceeded, the oldest buffered events are dropped with a warning.
    """

    def __init__(
        self,
        sink: AnalyticsSinkPort,
        store: PersistencePort | None = None,
        *,
        enabled: bool = True,
        retention: int = DEFAULT_RETENTION,
        max_buffer: int = DEFAULT_MAX_BUFFER,
        clock: Clock = utc_now,
        priority_events: Iterable[str] = PRIORITY_EVENTS,
    ) -> None:
        """Initialize queue.

        Args:
            sink: Destination for flushed batches.
            store: Optional persistence for the local mirror and consent flag.
            enabled: Consent default when the store holds no decision.
            retention: Number of delivered events kept in the local mirror.
            max_buffer: Upper bound on buffered (undelivered) events.
            clock: Wall-clock source for event timestamps.
            priority_events: Event names that trigger an immediate flush.
        """
        self._sink = sink
        self._store = store
        self._clock = clock
        self._max_buffer = max_buffer
        self._priority = frozenset(priority_events)

        self._buffer: list[dict[str, Any]] = []
        self._buffer_lock = threading.Lock()
        self._flush_lock = asyncio.Lock()
        self._background: set[asyncio.Task[int]] = set()

        stored_mirror = store.load(MIRROR_KEY) if store else None
        self._mirror: deque[dict[str, Any]] = deque(stored_mirror or [], maxlen=retention)

        stored_consent = store.load(CONSENT_KEY) if store else None
        self.enabled = stored_consent == "granted" if stored_consent else enabled

    def set_consent(self, granted: bool) -> None:
        """Enable or disable tracking and remember the decision."""
        self.enabled = granted
        if self._store and not self._store.save(CONSENT_KEY, "granted" if granted else "denied"):
            logger.warning("Failed to persist analytics consent")

    def track(self, event_name: str, properties: dict[str, Any] | None = None) -> None:
        """Buffer one event, unless tracking is disabled.

        Args:
            event_name: Event name; priority names flush immediately.
            properties: JSON-serializable property bag.
        """
        if not self.enabled:
            return

        event = {
            "event": event_name,
            "properties": dict(properties or {}),
            "timestamp": self._clock().isoformat(),
        }
        with self._buffer_lock:
            self._buffer.append(event)
            self._enforce_cap()

        if event_name in self._priority:
            self._flush_soon()

    async def flush(self) -> int:
        """Deliver everything buffered so far as one batch.

        Returns:
            Number of events delivered (0 if nothing was pending or delivery failed).
        """
        async with self._flush_lock:
            with self._buffer_lock:
                if not self._buffer:
                    return 0
                batch, self._buffer = self._buffer, []

            try:
                await self._sink.deliver(batch)
            except Exception as e:  # noqa: BLE001
                logger.warning(f"Analytics flush failed, requeueing {len(batch)} events: {e}")
                with self._buffer_lock:
                    self._buffer[:0] = batch
                    self._enforce_cap()
                return 0

            self._mirror.extend(batch)
            if self._store and not self._store.save(MIRROR_KEY, list(self._mirror)):
                logger.warning("Failed to persist analytics mirror")

            logger.debug(f"Flushed {len(batch)} analytics events")
            return len(batch)

    def pending(self) -> list[dict[str, Any]]:
        """Snapshot of buffered, undelivered events (oldest first)."""
        with self._buffer_lock:
            return list(self._buffer)

    def recent_events(self) -> list[dict[str, Any]]:
        """Snapshot of the local mirror of delivered events."""
        return list(self._mirror)

    async def aclose(self) -> None:
        """Wait for in-progress priority flushes, then flush what is left."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.flush()

    def _flush_soon(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the flush timer delivers it later.
            return
        task = loop.create_task(self.flush())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _enforce_cap(self) -> None:
        overflow = len(self._buffer) - self._max_buffer
        if overflow > 0:
            del self._buffer[:overflow]
            logger.warning(f"Analytics buffer full, dropped {overflow} oldest events")
