"""Analytics sink adapters."""

import logging
from typing import Any

import aiohttp
from aiohttp import ClientTimeout

from src.adapters.driven.http.retry import retry

__all__ = ["LogAnalyticsSink", "HttpAnalyticsSink"]

logger = logging.getLogger(__name__)

SINK_RETRIES = 3
SINK_TIMEOUT = 10


class LogAnalyticsSink:
    """Write batches to the log; used when no collector endpoint is configured."""

    async def deliver(self, batch: list[dict[str, Any]]) -> None:
        names = ", ".join(sorted({e["event"] for e in batch}))
        logger.info(f"Analytics events ({len(batch)}): {names}")


class HttpAnalyticsSink:
    """POST batches as ``{"events": [...]}`` to an HTTP collector.

    Transient transport errors are retried with backoff; a non-2xx answer
    raises so the queue requeues the batch.
    """

    def __init__(self, url: str, session: aiohttp.ClientSession | None = None) -> None:
        """Initialize sink.

        Args:
            url: Collector endpoint.
            session: Session to reuse; a short-lived one is opened per batch if omitted.
        """
        self.url = url
        self.session = session

    async def deliver(self, batch: list[dict[str, Any]]) -> None:
        status = await self._post(batch)
        if not 200 <= status < 300:
            raise RuntimeError(f"Analytics collector answered HTTP {status}")
        logger.debug(f"Delivered {len(batch)} analytics events to {self.url}")

    @retry(times=SINK_RETRIES)
    async def _post(self, batch: list[dict[str, Any]]) -> int:
        if self.session is not None:
            return await self._post_with(self.session, batch)
        async with aiohttp.ClientSession() as session:
            return await self._post_with(session, batch)

    async def _post_with(self, session: aiohttp.ClientSession, batch: list[dict[str, Any]]) -> int:
        async with session.post(
            self.url,
            json={"events": batch},
            timeout=ClientTimeout(total=SINK_TIMEOUT),
        ) as resp:
            return resp.status
