"""HTTP port definition (DTO and outcome)."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = ["HttpPort", "DispatchOutcome"]


@dataclass
class HttpPort:
    """HTTP request to be sent by the dispatcher.

    Decouples core dispatch logic from HTTP implementation details.

    Attributes:
        url: Target HTTP endpoint URL.
        payload: JSON-serializable dictionary to send as request body (None for GET).
        timeout_sec: Hard deadline for the whole request.
        method: HTTP method, POST for deliveries and GET for health checks.
    """

    url: str
    payload: dict[str, Any] | None = None
    timeout_sec: float = 10.0
    method: str = "POST"
    headers: dict[str, str] = field(default_factory=lambda: {"Content-Type": "application/json"})


@dataclass(slots=True, frozen=True)
class DispatchOutcome:
    """Immutable classification of a single dispatch.

    A failed outcome carries exactly one of ``status_code`` (non-2xx
    response), ``timed_out`` (deadline elapsed) or ``error`` (no response).

    Attributes:
        success: True for any 2xx response.
        latency_ms: Milliseconds from call start to completion (0 when skipped).
        status_code: HTTP status code when a response arrived.
        timed_out: True if the deadline elapsed before a response.
        error: Transport-level failure detail.
    """

    success: bool
    latency_ms: float = 0.0
    status_code: int | None = None
    timed_out: bool = False
    error: str | None = None

    @classmethod
    def skipped(cls, reason: str) -> DispatchOutcome:
        """Failure outcome for a dispatch that never reached the network."""
        return cls(success=False, latency_ms=0.0, error=reason)

    def describe(self) -> str:
        """Return a short human-readable label for logs and events."""
        if self.success:
            return f"HTTP {self.status_code}"
        if self.timed_out:
            return "timeout"
        if self.status_code is not None:
            return f"HTTP {self.status_code}"
        return self.error or "transport error"
