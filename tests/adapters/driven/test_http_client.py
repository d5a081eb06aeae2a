"""Tests for HTTP client adapter."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from src.adapters.driven.http.client import HttpClient
from src.ports.http import HttpPort

__all__ = []


def fake_session(status: int) -> tuple[MagicMock, AsyncMock]:
    """Build a session whose request() is an async context manager yielding a response.

    Returns:
        Tuple of (session, response).
    """
    response = AsyncMock()
    response.status = status

    ctx = MagicMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.request = MagicMock(return_value=ctx)
    session.close = AsyncMock()
    return session, response


@pytest.mark.asyncio
async def test_http_client_context_manager() -> None:
    """HTTP client should initialize and close session."""
    client = HttpClient()
    assert client.session is None

    async with client as c:
        assert c.session is not None
        assert c is client

    assert client.session is None


@pytest.mark.asyncio
async def test_http_client_returns_status_and_drains_body() -> None:
    """request() returns the status code after reading the body."""
    client = HttpClient()
    client.session, response = fake_session(204)

    req = HttpPort(url="https://hooks.example.com/a", payload={"content": "hi"}, timeout_sec=2.5)
    status = await client.request(req)

    assert status == 204
    response.read.assert_awaited_once()


@pytest.mark.asyncio
async def test_http_client_passes_method_payload_headers_and_timeout() -> None:
    client = HttpClient()
    client.session, _ = fake_session(200)

    req = HttpPort(url="https://hooks.example.com/a", payload={"content": "hi"}, timeout_sec=2.5)
    await client.request(req)

    args, kwargs = client.session.request.call_args
    assert args == ("POST", "https://hooks.example.com/a")
    assert kwargs["json"] == {"content": "hi"}
    assert kwargs["headers"] == {"Content-Type": "application/json"}
    assert kwargs["timeout"].total == pytest.approx(2.5)


@pytest.mark.asyncio
async def test_http_client_returns_error_status_without_raising() -> None:
    """Non-2xx answers are returned; classification is the dispatcher's job."""
    client = HttpClient()
    client.session, _ = fake_session(500)

    status = await client.request(HttpPort(url="https://hooks.example.com/a", method="GET"))

    assert status == 500
    assert client.session.request.call_args.args[0] == "GET"


@pytest.mark.asyncio
async def test_http_client_raises_if_session_not_initialized() -> None:
    client = HttpClient()

    with pytest.raises(RuntimeError, match="Session not initialized"):
        await client.request(HttpPort(url="https://hooks.example.com/a"))
