"""Error taxonomy for the dispatch engine."""

from src.ports.http import DispatchOutcome

__all__ = [
    "WebhookEngineError",
    "ValidationError",
    "RateLimitExceeded",
    "DispatchTimeoutError",
    "TransportError",
    "HttpError",
    "NotFoundError",
    "PersistenceError",
    "raise_for_outcome",
]


class WebhookEngineError(Exception):
    """Base class for every error surfaced by the engine."""


class ValidationError(WebhookEngineError):
    """Malformed input rejected before any network action."""


class RateLimitExceeded(WebhookEngineError):
    """Caller throttled before dispatch."""

    def __init__(self, identifier: str, limit: int, window_ms: int) -> None:
        super().__init__(
            f"Rate limit exceeded for '{identifier}': {limit} requests per {window_ms} ms"
        )
        self.identifier = identifier
        self.limit = limit
        self.window_ms = window_ms


class DispatchTimeoutError(WebhookEngineError):
    """Dispatch exceeded its deadline."""


class TransportError(WebhookEngineError):
    """No response was obtained from the target."""


class HttpError(WebhookEngineError):
    """Target answered with a non-2xx status."""

    def __init__(self, status: int) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status


class NotFoundError(WebhookEngineError):
    """Referenced endpoint, schedule or template does not exist."""

    def __init__(self, kind: str, entity_id: str) -> None:
        super().__init__(f"{kind} not found: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id


class PersistenceError(WebhookEngineError):
    """Persistence collaborator failed to store a value."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Failed to persist '{key}'")
        self.key = key


def raise_for_outcome(outcome: DispatchOutcome) -> None:
    """Convert a failed dispatch outcome into its typed exception.

    Args:
        outcome: Classified dispatch result.

    Raises:
        DispatchTimeoutError: If the deadline elapsed.
        HttpError: If the target answered with a non-2xx status.
        TransportError: If no response was obtained.
    """
    if outcome.success:
        return
    if outcome.timed_out:
        raise DispatchTimeoutError("Request timeout - webhook took too long to respond")
    if outcome.status_code is not None:
        raise HttpError(outcome.status_code)
    raise TransportError(outcome.error or "transport error")
