"""Drift-free periodic runner shared by the engine timers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

__all__ = ["run_periodic", "get_now_time"]

logger = logging.getLogger(__name__)


def get_now_time() -> float:
    """Get current monotonic time in seconds.

    Uses event loop's monotonic clock for accurate scheduling
    without wall-clock drift.

    Returns:
        Current time in seconds (monotonic).
    """
    return asyncio.get_running_loop().time()


async def run_periodic(
    period_sec: float,
    action: Callable[[], Awaitable[object]],
    stop_fn: Callable[[], bool],
    *,
    name: str = "periodic",
    run_immediately: bool = True,
) -> None:
    """Run action every period_sec until stop_fn() returns True.

    Ticks are anchored to a monotonic schedule (``next_tick += period``)
    rather than to the end of the previous action, so a slow action does
    not push later ticks back.

    Args:
        period_sec: Seconds between ticks.
        action: Coroutine function invoked once per tick.
        stop_fn: Callable that returns True when the loop should exit.
        name: Label used in logs.
        run_immediately: If False, wait one period before the first tick.

    Notes:
        - Exceptions raised by action are logged and never end the loop.
        - Cancellation (engine shutdown) propagates to the caller.
    """
    next_tick: float = get_now_time()
    if not run_immediately:
        next_tick += period_sec
        await asyncio.sleep(max(0, next_tick - get_now_time()))

    while not stop_fn():
        try:
            await action()
        except asyncio.CancelledError:
            logger.info(f"{name} timer cancelled.")
            raise
        except Exception as e:  # noqa: BLE001
            logger.error(f"Unexpected error in {name} tick: {e}", exc_info=True)

        next_tick += period_sec
        sleep_duration = max(0, next_tick - get_now_time())
        await asyncio.sleep(sleep_duration)
