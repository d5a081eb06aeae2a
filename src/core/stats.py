"""Rolling per-entity execution statistics."""

import threading
from datetime import datetime

from src.core.models import Stats
from src.ports.collaborators import Clock, utc_now
from src.ports.http import DispatchOutcome

__all__ = ["StatsAggregator"]


class StatsAggregator:
    """Fold dispatch outcomes into embedded Stats records.

    The average response time is an incremental mean, so no history is
    kept. Failed outcomes contribute a latency of 0 ms regardless of how
    long they took, so a burst of failures pulls the average toward 0 and
    it should be read together with ``failure_count``.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._lock = threading.Lock()

    def record(
        self,
        stats: Stats,
        outcome: DispatchOutcome,
        now: datetime | None = None,
    ) -> Stats:
        """Count one attempt.

        Args:
            stats: Endpoint or schedule stats, mutated in place.
            outcome: Classified dispatch result.
            now: Execution time; defaults to the injected clock.

        Returns:
            The same stats object, for chaining.
        """
        latency = outcome.latency_ms if outcome.success else 0.0
        with self._lock:
            stats.total_count += 1
            if outcome.success:
                stats.success_count += 1
            else:
                stats.failure_count += 1
            stats.last_executed_at = now or self._clock()
            stats.average_response_time_ms += (
                latency - stats.average_response_time_ms
            ) / stats.total_count
        return stats
