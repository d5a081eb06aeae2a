"""Per-identifier sliding-window rate limiter."""

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

__all__ = ["RateLimiter", "DEFAULT_LIMIT", "DEFAULT_WINDOW_MS"]

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 60
DEFAULT_WINDOW_MS = 60_000


def _monotonic_ms() -> float:
    return time.monotonic() * 1_000.0


class RateLimiter:
    """Sliding-window limiter keyed by caller identifier.

    Keeps, per identifier, the timestamps of previously allowed calls in
    ascending order, so expired entries are always at the left end and
    pruning is O(1) amortized.

    State lives in memory only and resets on restart. Safe to share between
    scheduled ticks, interactive sends and health checks.
    """

    def __init__(self, *, time_fn: Callable[[], float] = _monotonic_ms) -> None:
        """Initialize limiter.

        Args:
            time_fn: Monotonic clock returning milliseconds.
        """
        self._time_fn = time_fn
        self._requests: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    def check_limit(
        self,
        identifier: str,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> bool:
        """Record a call for identifier if it fits in the window.

        Args:
            identifier: Caller key (endpoint id, client id, ...).
            limit: Calls allowed per window.
            window_ms: Window length in milliseconds.

        Returns:
            True if the call is allowed (and recorded), False otherwise.
        """
        with self._lock:
            now = self._time_fn()
            window_start = now - window_ms
            timestamps = self._requests.setdefault(identifier, deque())

            while timestamps and timestamps[0] <= window_start:
                timestamps.popleft()

            if len(timestamps) < limit:
                timestamps.append(now)
                return True

        logger.debug(f"Rate limit hit for {identifier} ({limit}/{window_ms}ms)")
        return False

    def get_remaining_requests(
        self,
        identifier: str,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> int:
        """Calls still allowed for identifier in the given window.

        Does not mutate state.
        """
        with self._lock:
            timestamps = self._requests.get(identifier)
            if not timestamps:
                return limit
            window_start = self._time_fn() - window_ms
            recent = sum(1 for ts in timestamps if ts > window_start)

        return max(0, limit - recent)
