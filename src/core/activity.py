"""Capped feed of recent human-readable activity, persisted between runs."""

import logging
import threading
from collections import deque
from typing import Any

from src.core.models import new_id
from src.ports.collaborators import Clock, PersistencePort, utc_now

__all__ = ["ActivityLog", "ACTIVITY_KEY", "DEFAULT_ACTIVITY_LIMIT"]

logger = logging.getLogger(__name__)

ACTIVITY_KEY = "activities"
DEFAULT_ACTIVITY_LIMIT = 100


class ActivityLog:
    """Most recent activity entries, oldest dropped first.

    Each entry is ``{id, type, message, timestamp, metadata}``. The whole
    feed is written back to the store on every record; a failed write is
    logged and the entry stays in memory.
    """

    def __init__(
        self,
        store: PersistencePort | None = None,
        *,
        clock: Clock = utc_now,
        limit: int = DEFAULT_ACTIVITY_LIMIT,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self._store = store
        self._clock = clock
        self._lock = threading.Lock()

        stored = store.load(ACTIVITY_KEY) if store else None
        if stored is not None and not isinstance(stored, list):
            logger.error(f"Stored {ACTIVITY_KEY} is not a list, ignoring it")
            stored = None
        self._entries: deque[dict[str, Any]] = deque(stored or [], maxlen=limit)

    def record(self, type_: str, message: str, metadata: dict[str, Any] | None = None) -> dict[str, Any]:
        """Append one entry and persist the feed.

        Args:
            type_: Machine-readable kind, usually the event name.
            message: Short sentence shown to a user.
            metadata: Optional JSON-serializable details.

        Returns:
            The stored entry.
        """
        entry = {
            "id": new_id(),
            "type": type_,
            "message": message,
            "timestamp": self._clock().isoformat(),
            "metadata": dict(metadata or {}),
        }
        with self._lock:
            self._entries.append(entry)
            snapshot = list(self._entries)

        if self._store and not self._store.save(ACTIVITY_KEY, snapshot):
            logger.warning("Failed to persist activity feed")
        return entry

    def recent(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Return entries newest first, at most ``limit`` of them."""
        with self._lock:
            entries = list(reversed(self._entries))
        return entries if limit is None else entries[:limit]

    def __len__(self) -> int:
        return len(self._entries)
