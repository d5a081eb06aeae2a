"""Single bounded-timeout outbound call with outcome classification."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiohttp

from src.core.periodic import get_now_time
from src.ports.http import DispatchOutcome, HttpPort
from src.ports.metrics import MetricsPort

__all__ = ["Dispatcher", "DEFAULT_TIMEOUT_MS"]

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 10_000

RequestFn = Callable[[HttpPort], Awaitable[int]]


class Dispatcher:
    """Perform one outbound call and classify how it ended.

    Used for scheduled sends, interactive test sends and health checks
    alike. Never retries: one call to send() is one request on the wire.

    Classification:
    - 2xx response: success.
    - other response: failure with ``status_code``.
    - deadline elapsed: failure with ``timed_out``.
    - no response (connection refused, DNS, reset): failure with ``error``.
    """

    def __init__(
        self,
        request_fn: RequestFn,
        metrics: MetricsPort | None = None,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
    ) -> None:
        """Initialize dispatcher.

        Args:
            request_fn: Async function that sends one request and returns its status.
            metrics: Optional metrics collector updated after each send.
            default_timeout_ms: Deadline used when send() is not given one.
        """
        self._request_fn = request_fn
        self.metrics = metrics
        self.default_timeout_ms = default_timeout_ms

    async def send(
        self,
        target: str,
        payload: dict[str, Any] | None = None,
        timeout_ms: int | None = None,
        method: str = "POST",
    ) -> DispatchOutcome:
        """Send payload to target as JSON under a hard deadline.

        Args:
            target: Destination URL.
            payload: JSON body (omitted for GET health checks).
            timeout_ms: Deadline in milliseconds.
            method: HTTP method.

        Returns:
            Classified outcome; never raises for network failures.
        """
        if timeout_ms is None:
            timeout_ms = self.default_timeout_ms
        req = HttpPort(
            url=target,
            payload=payload,
            timeout_sec=timeout_ms / 1_000.0,
            method=method,
        )
        started = get_now_time()

        def elapsed_ms() -> float:
            return (get_now_time() - started) * 1_000.0

        try:
            status = await asyncio.wait_for(self._request_fn(req), timeout=req.timeout_sec)
        except asyncio.TimeoutError:
            logger.warning(f"Dispatch to {target} timed out after {timeout_ms} ms")
            outcome = DispatchOutcome(success=False, latency_ms=elapsed_ms(), timed_out=True)
        except (aiohttp.ClientError, OSError) as e:
            logger.warning(f"Target unreachable: {target}: {e}")
            outcome = DispatchOutcome(
                success=False,
                latency_ms=elapsed_ms(),
                error=str(e) or type(e).__name__,
            )
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error dispatching to {target}: {e}", exc_info=True)
            outcome = DispatchOutcome(
                success=False,
                latency_ms=elapsed_ms(),
                error=str(e) or type(e).__name__,
            )
        else:
            outcome = DispatchOutcome(
                success=200 <= status < 300,
                latency_ms=elapsed_ms(),
                status_code=status,
            )

        if self.metrics:
            self.metrics.update(outcome)
            logger.info(f"Dispatch metrics: {self.metrics}")

        return outcome
