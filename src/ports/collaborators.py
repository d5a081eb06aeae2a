"""External collaborator ports (persistence, notification, analytics sink)."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, Protocol

__all__ = [
    "PersistencePort",
    "NotificationPort",
    "AnalyticsSinkPort",
    "Clock",
    "utc_now",
]

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current wall-clock time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class PersistencePort(Protocol):
    """Key/value store that owns endpoints, schedules and the analytics mirror."""

    def load(self, key: str, /) -> Any | None:
        """Return the stored value, or None when absent."""
        ...

    def save(self, key: str, value: Any, /) -> bool:
        """Store a JSON-serializable value. Returns False on failure."""
        ...


class NotificationPort(Protocol):
    """Fire-and-forget channel used to tell a UI that something happened."""

    def emit(self, event_name: str, payload: dict[str, Any], /) -> None:
        """Publish one event. No acknowledgment is expected."""
        ...


class AnalyticsSinkPort(Protocol):
    """Destination for batched analytics events."""

    def deliver(self, batch: list[dict[str, Any]], /) -> Awaitable[None]:
        """Deliver a batch. Raises on failure so the batch is requeued."""
        ...
