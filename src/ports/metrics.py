"""Metrics port definition (interface)."""

from __future__ import annotations

from typing import Protocol

from src.ports.http import DispatchOutcome

__all__ = ["MetricsPort"]


class MetricsPort(Protocol):
    """Interface for recording dispatch metrics.

    Implementations must be async-safe and non-blocking.
    The dispatcher calls update() after each send; presentation layers call
    __str__() to render summaries.
    """

    def update(self, outcome: DispatchOutcome, /) -> None:
        """Record a finished dispatch.

        Args:
            outcome: The classified outcome to record.
        """
        ...

    def __str__(self) -> str:
        """Return concise textual summary for humans.

        Returns:
            Formatted metrics string.
        """
        ...
