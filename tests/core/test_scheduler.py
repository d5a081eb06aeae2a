"""Tests for the polling scheduler loop."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, Mock

import aiohttp
import pytest

from src.adapters.driven.storage.stores import MemoryStore
from src.core.activity import ActivityLog
from src.core.analytics import AnalyticsQueue
from src.core.dispatcher import Dispatcher
from src.core.events import EventPublisher
from src.core.models import Endpoint, Schedule
from src.core.registry import SCHEDULES_KEY, Registry
from src.core.scheduler import SchedulerLoop
from src.core.stats import StatsAggregator
from src.ports.http import HttpPort

__all__ = []

NOW = datetime(2026, 4, 10, 12, 0, tzinfo=timezone.utc)
URL = "https://hooks.example.com/endpoint-e"


class Harness:
    """Scheduler wired to in-memory collaborators and a stubbed transport."""

    def __init__(self, request_fn: Any = None, store: Any = None) -> None:
        self.now = NOW
        self.store = store or MemoryStore()
        self.registry = Registry(self.store)
        self.request_fn = request_fn or AsyncMock(return_value=200)
        self.analytics = AnalyticsQueue(AsyncMock(), enabled=True)
        self.notifier = Mock()
        self.activity = ActivityLog(clock=lambda: self.now)
        self.scheduler = SchedulerLoop(
            self.registry,
            Dispatcher(self.request_fn),
            StatsAggregator(clock=lambda: self.now),
            EventPublisher(self.analytics, self.notifier, self.activity),
            clock=lambda: self.now,
        )

    def add_endpoint(self, **fields: Any) -> Endpoint:
        endpoint = Endpoint(**{"name": "E", "url": URL, **fields})
        self.registry.endpoints[endpoint.id] = endpoint
        return endpoint

    def add_schedule(self, endpoint_id: str, **fields: Any) -> Schedule:
        defaults: dict[str, Any] = {
            "payload": {"content": "hello"},
            "due_at": self.now - timedelta(seconds=1),
        }
        schedule = Schedule(endpoint_id=endpoint_id, **{**defaults, **fields})
        self.registry.schedules[schedule.id] = schedule
        return schedule

    async def run_tick(self) -> list[Any]:
        tasks = await self.scheduler.tick()
        return await asyncio.gather(*tasks)


@pytest.mark.asyncio
async def test_once_schedule_end_to_end() -> None:
    """A due once-schedule dispatches exactly once, records success and terminates."""
    h = Harness()
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id, recurrence="once")

    outcomes = await h.run_tick()

    assert len(outcomes) == 1 and outcomes[0].success
    h.request_fn.assert_awaited_once()
    req: HttpPort = h.request_fn.call_args[0][0]
    assert req.url == URL
    assert req.payload == {"content": "hello"}
    assert schedule.stats.total_count == 1
    assert schedule.stats.success_count == 1
    assert schedule.active is False
    assert schedule.in_flight is False

    # Terminal: later ticks never dispatch it again.
    h.now += timedelta(days=2)
    assert await h.run_tick() == []
    h.request_fn.assert_awaited_once()


@pytest.mark.asyncio
async def test_daily_advances_from_previous_due_time_not_now() -> None:
    """A late tick still advances due_at to T + 24h."""
    h = Harness()
    endpoint = h.add_endpoint()
    due = NOW - timedelta(hours=5, minutes=17)
    schedule = h.add_schedule(endpoint.id, recurrence="daily", due_at=due)

    await h.run_tick()

    assert schedule.due_at == due + timedelta(hours=24)
    assert schedule.active is True


@pytest.mark.asyncio
async def test_schedule_in_flight_is_not_dispatched_twice() -> None:
    """A tick during a slow dispatch skips that schedule until it completes."""
    release = asyncio.Event()

    async def slow_request(_req: HttpPort) -> int:
        await release.wait()
        return 200

    request_fn = AsyncMock(side_effect=slow_request)
    h = Harness(request_fn=request_fn)
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id, recurrence="daily")

    first = await h.scheduler.tick()
    await asyncio.sleep(0)
    assert schedule.in_flight is True

    second = await h.scheduler.tick()
    assert second == []

    release.set()
    await asyncio.gather(*first)

    request_fn.assert_awaited_once()
    assert schedule.in_flight is False
    assert schedule.stats.total_count == 1


@pytest.mark.asyncio
async def test_orphaned_schedule_fails_without_network_and_advances() -> None:
    """A schedule whose endpoint was deleted records a failure and still advances."""
    h = Harness()
    due = NOW - timedelta(minutes=1)
    schedule = h.add_schedule("deleted-endpoint", recurrence="weekly", due_at=due)

    outcomes = await h.run_tick()

    h.request_fn.assert_not_called()
    assert outcomes[0].success is False
    assert outcomes[0].error == "Webhook not found"
    assert schedule.stats.failure_count == 1
    assert schedule.stats.total_count == 1
    assert schedule.due_at == due + timedelta(weeks=1)
    assert schedule.active is True


@pytest.mark.asyncio
async def test_inactive_endpoint_is_skipped_without_network() -> None:
    """An inactive endpoint yields a failure outcome and no request."""
    h = Harness()
    endpoint = h.add_endpoint(active=False)
    schedule = h.add_schedule(endpoint.id, recurrence="once")

    outcomes = await h.run_tick()

    h.request_fn.assert_not_called()
    assert outcomes[0].error == "Webhook is not active"
    assert schedule.stats.failure_count == 1
    assert endpoint.stats.total_count == 0
    assert schedule.active is False


@pytest.mark.asyncio
async def test_failed_dispatch_keeps_recurring_schedule_active() -> None:
    """HTTP errors count as failures but recurring schedules keep advancing."""
    h = Harness(request_fn=AsyncMock(return_value=500))
    endpoint = h.add_endpoint()
    due = NOW - timedelta(seconds=30)
    schedule = h.add_schedule(endpoint.id, recurrence="monthly", due_at=due)

    await h.run_tick()

    assert schedule.active is True
    assert schedule.due_at == datetime(2026, 5, 10, 11, 59, 30, tzinfo=timezone.utc)
    assert schedule.stats.failure_count == 1
    assert endpoint.stats.failure_count == 1


@pytest.mark.asyncio
async def test_one_failing_schedule_does_not_block_others() -> None:
    """A transport error in one schedule leaves the others unaffected."""

    async def request(req: HttpPort) -> int:
        if req.url.endswith("/broken"):
            raise aiohttp.ClientConnectionError("refused")
        return 204

    h = Harness(request_fn=AsyncMock(side_effect=request))
    good = h.add_endpoint(url="https://hooks.example.com/good")
    bad = h.add_endpoint(url="https://hooks.example.com/broken")
    good_schedule = h.add_schedule(good.id, recurrence="daily")
    bad_schedule = h.add_schedule(bad.id, recurrence="daily")

    outcomes = await h.run_tick()

    assert sorted(o.success for o in outcomes) == [False, True]
    assert good_schedule.stats.success_count == 1
    assert bad_schedule.stats.failure_count == 1


@pytest.mark.asyncio
async def test_unknown_recurrence_is_deactivated_after_running() -> None:
    """Unrecognized recurrence values behave like once."""
    h = Harness()
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id, recurrence="fortnightly")

    await h.run_tick()

    h.request_fn.assert_awaited_once()
    assert schedule.active is False


@pytest.mark.asyncio
async def test_future_and_inactive_schedules_are_not_due() -> None:
    """Only active schedules whose due time has passed are dispatched."""
    h = Harness()
    endpoint = h.add_endpoint()
    h.add_schedule(endpoint.id, due_at=NOW + timedelta(minutes=5))
    h.add_schedule(endpoint.id, active=False)

    assert await h.run_tick() == []
    h.request_fn.assert_not_called()


@pytest.mark.asyncio
async def test_identity_fields_are_merged_into_scheduled_payload() -> None:
    """Endpoint username and avatar travel with scheduled payloads."""
    h = Harness()
    endpoint = h.add_endpoint(username="Reminder Bot")
    h.add_schedule(endpoint.id)

    await h.run_tick()

    req: HttpPort = h.request_fn.call_args[0][0]
    assert req.payload == {"content": "hello", "username": "Reminder Bot"}


@pytest.mark.asyncio
async def test_outcome_published_to_analytics_and_notifier() -> None:
    """Each execution emits schedule_executed / schedule_failed."""
    h = Harness()
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id)
    h.add_schedule("missing")

    await h.run_tick()

    emitted = sorted(call.args[0] for call in h.notifier.emit.call_args_list)
    assert emitted == ["schedule_executed", "schedule_failed"]
    executed = next(
        call.args[1]
        for call in h.notifier.emit.call_args_list
        if call.args[0] == "schedule_executed"
    )
    assert executed["schedule_id"] == schedule.id
    assert executed["next_due_at"] is None
    assert "schedule_executed" in {e["event"] for e in h.analytics.pending()}


@pytest.mark.asyncio
async def test_notifier_failure_does_not_break_tick() -> None:
    """A failing notifier is logged and ignored."""
    h = Harness()
    h.notifier.emit.side_effect = RuntimeError("socket closed")
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id)

    await h.run_tick()

    assert schedule.stats.success_count == 1


@pytest.mark.asyncio
async def test_updates_are_persisted() -> None:
    """Stats and recurrence changes are written back through the store."""
    h = Harness()
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id, recurrence="daily")

    await h.run_tick()

    stored = h.store.load(SCHEDULES_KEY)
    assert stored[0]["id"] == schedule.id
    assert stored[0]["stats"]["total_count"] == 1
    assert "in_flight" not in stored[0]


@pytest.mark.asyncio
async def test_background_persistence_failure_is_retried_next_tick() -> None:
    """A failed bookkeeping write never raises and is retried on the next tick."""
    store = Mock()
    store.save.return_value = False
    h = Harness(store=store)
    endpoint = h.add_endpoint()
    h.add_schedule(endpoint.id, recurrence="daily")

    await h.run_tick()
    assert h.registry.has_pending_writes is True

    store.save.return_value = True
    await h.scheduler.tick()
    assert h.registry.has_pending_writes is False


@pytest.mark.asyncio
async def test_cancel_pending_releases_guard() -> None:
    """Shutdown cancels in-flight dispatches and clears their guard."""
    never = asyncio.Event()

    async def hang(_req: HttpPort) -> int:
        await never.wait()
        return 200

    h = Harness(request_fn=AsyncMock(side_effect=hang))
    endpoint = h.add_endpoint()
    schedule = h.add_schedule(endpoint.id)

    await h.scheduler.tick()
    await asyncio.sleep(0)
    assert h.scheduler.in_flight_count == 1

    await h.scheduler.cancel_pending()

    assert schedule.in_flight is False
    assert schedule.stats.total_count == 0
    assert schedule.active is True


@pytest.mark.asyncio
async def test_executions_are_recorded_in_activity_feed() -> None:
    """Successful and failed runs each add one readable activity entry."""
    h = Harness()
    endpoint = h.add_endpoint(name="Standup")
    h.add_schedule(endpoint.id)
    h.add_schedule("missing")

    await h.run_tick()

    messages = sorted(entry["message"] for entry in h.activity.recent())
    assert messages == [
        "Failed to send scheduled message via missing webhook missing",
        'Scheduled message sent via "Standup"',
    ]
    assert {entry["type"] for entry in h.activity.recent()} == {"schedule_executed", "schedule_failed"}
