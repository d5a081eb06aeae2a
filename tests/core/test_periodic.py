"""Tests for the periodic runner that drives the engine timers."""

from collections.abc import Callable
from unittest.mock import AsyncMock, patch

import pytest

from src.core.periodic import run_periodic

__all__ = []


def make_n_shot_stop(n: int) -> Callable[[], bool]:
    """Create stop function that returns True after N calls.

    Args:
        n: Number of calls before returning True.

    Returns:
        Stop function.
    """
    counter = 0

    def stop() -> bool:
        nonlocal counter
        counter += 1
        return counter > n

    return stop


@pytest.mark.asyncio
async def test_run_periodic_calls_action_once() -> None:
    """Runner should call the action exactly once per tick."""
    action = AsyncMock()

    await run_periodic(0, action, make_n_shot_stop(1))

    action.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_periodic_calls_action_multiple_times() -> None:
    """Runner should call the action for each period."""
    action = AsyncMock()

    await run_periodic(0, action, make_n_shot_stop(3))

    assert action.await_count == 3


@pytest.mark.asyncio
async def test_run_periodic_survives_action_errors() -> None:
    """Errors raised by the action are logged and the loop continues."""
    action = AsyncMock(side_effect=[RuntimeError("boom"), None])

    await run_periodic(0, action, make_n_shot_stop(2))

    assert action.await_count == 2


@pytest.mark.asyncio
async def test_run_periodic_respects_period() -> None:
    """Runner should sleep between ticks."""
    action = AsyncMock()
    mock_sleep = AsyncMock()

    with patch("src.core.periodic.asyncio.sleep", mock_sleep):
        await run_periodic(5.0, action, make_n_shot_stop(2))

    assert mock_sleep.await_count == 2
    # Sleep is mocked, so the second tick is still anchored to start + 2 periods.
    first, second = (call.args[0] for call in mock_sleep.await_args_list)
    assert 0 < first <= 5.0
    assert second == pytest.approx(first + 5.0, abs=0.5)


@pytest.mark.asyncio
async def test_run_periodic_can_delay_first_tick() -> None:
    """With run_immediately=False the first sleep happens before any action."""
    calls: list[str] = []

    async def action() -> None:
        calls.append("action")

    async def fake_sleep(_delay: float) -> None:
        calls.append("sleep")

    with patch("src.core.periodic.asyncio.sleep", fake_sleep):
        await run_periodic(1.0, action, make_n_shot_stop(1), run_immediately=False)

    assert calls == ["sleep", "action", "sleep"]
