"""HTTP client adapter backed by an aiohttp session."""

import logging
from types import TracebackType

import aiohttp
from aiohttp import ClientTimeout

from src.ports.http import HttpPort

__all__ = ["HttpClient"]

logger = logging.getLogger(__name__)


class HttpClient:
    """Thin aiohttp wrapper used as the dispatcher's transport.

    Features:
    - One shared session for every dispatch (context manager lifecycle).
    - Per-request total timeout.
    - Response body is drained and released before returning.

    Retries are deliberately absent: a dispatch is exactly one request.
    """

    def __init__(self) -> None:
        """Initialize HTTP client (session is opened by ``async with``)."""
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "HttpClient":
        """Enter async context manager (start session).

        Returns:
            Self for use in async with statement.
        """
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Exit async context manager (close session).

        Args:
            exc_type: Exception type if raised in context.
            exc: Exception instance if raised in context.
            tb: Traceback if raised in context.
        """
        if self.session:
            await self.session.close()
            self.session = None

    async def request(self, req: HttpPort) -> int:
        """Send one HTTP request and return its status code.

        Args:
            req: Request description (method, URL, JSON payload, timeout).

        Returns:
            HTTP status code.

        Raises:
            RuntimeError: If session not initialized.
            asyncio.TimeoutError: If the timeout elapsed.
            aiohttp.ClientError: On connection/transport failures.
        """
        if self.session is None:
            raise RuntimeError("Session not initialized; use 'async with' context manager")

        async with self.session.request(
            req.method,
            req.url,
            json=req.payload,
            headers=req.headers,
            timeout=ClientTimeout(total=req.timeout_sec),
            allow_redirects=True,
        ) as resp:
            await resp.read()
            logger.debug(f"{req.method} {req.url} -> {resp.status}")
            return resp.status
