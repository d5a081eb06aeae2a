"""In-memory sliding-window metrics for dispatches."""

from __future__ import annotations

import statistics
from collections import deque
from dataclasses import dataclass

from src.ports.http import DispatchOutcome
from src.ports.metrics import MetricsPort

__all__ = ["Metrics"]


@dataclass(slots=True, frozen=True)
class _Sample:
    """Internal record for one dispatch."""

    latency_ms: float
    failed: bool
    timed_out: bool
    status_code: int


class Metrics(MetricsPort):
    """Fast, lock-free metrics for async context.

    Tracks:
    - Average latency.
    - Failure rate (non-2xx, timeouts, transport errors).
    - Timeouts within the window.
    - Last status code (0 when no response arrived).
    - Total dispatches seen.

    Not thread-safe; create one instance per event loop.
    """

    def __init__(self, *, window_size: int = 100) -> None:
        """Initialize metrics collector.

        Args:
            window_size: Number of recent dispatches to keep for statistics.
        """
        self._window: deque[_Sample] = deque(maxlen=window_size)
        self._total_seen: int = 0

    def update(self, outcome: DispatchOutcome) -> None:
        """Record a finished dispatch.

        Args:
            outcome: Classified dispatch result.
        """
        self._window.append(
            _Sample(
                latency_ms=outcome.latency_ms,
                failed=not outcome.success,
                timed_out=outcome.timed_out,
                status_code=outcome.status_code or 0,
            )
        )
        self._total_seen += 1

    def __str__(self) -> str:
        """Return human-readable one-line summary for logging.

        Returns:
            Formatted metrics string.
        """
        if not self._window:
            return "Metrics: waiting for data …"

        n_window = len(self._window)
        failures = sum(1 for s in self._window if s.failed)
        timeouts = sum(1 for s in self._window if s.timed_out)
        fail_pct = (failures / n_window) * 100
        avg_latency = statistics.fmean(s.latency_ms for s in self._window)
        last = self._window[-1]

        return (
            f"latency={avg_latency:6.1f} ms | "
            f"status={last.status_code:3d} | "
            f"fail={fail_pct:5.1f}% | "
            f"timeouts={timeouts} | "
            f"win={n_window}/{self._window.maxlen} | "
            f"total={self._total_seen}"
        )
