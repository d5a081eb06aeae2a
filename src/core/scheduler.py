"""Polling scheduler that fires due schedules and advances their recurrence."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from src.core.dispatcher import Dispatcher
from src.core.events import EventPublisher
from src.core.models import Schedule
from src.core.recurrence import next_due_at
from src.core.registry import ENDPOINTS_KEY, SCHEDULES_KEY, Registry
from src.core.stats import StatsAggregator
from src.ports.collaborators import Clock, utc_now
from src.ports.http import DispatchOutcome

__all__ = ["SchedulerLoop"]

logger = logging.getLogger(__name__)


class SchedulerLoop:
    """Decide which schedules are due and run each one at most once at a time.

    Per schedule: Pending -> Due -> InFlight -> Pending (next due_at) or
    Terminal. ``in_flight`` is set synchronously inside tick(), before any
    await, so a tick that fires while an earlier dispatch is still running
    skips that schedule.

    Dispatches started by one tick run concurrently as independent tasks;
    tick() never waits for them.
    """

    def __init__(
        self,
        registry: Registry,
        dispatcher: Dispatcher,
        stats: StatsAggregator,
        events: EventPublisher,
        *,
        clock: Clock = utc_now,
        timeout_ms: int | None = None,
    ) -> None:
        self._registry = registry
        self._dispatcher = dispatcher
        self._stats = stats
        self._events = events
        self._clock = clock
        self._timeout_ms = timeout_ms
        self._pending: set[asyncio.Task[DispatchOutcome]] = set()

    def due_schedules(self, now: datetime) -> list[Schedule]:
        """Active, idle schedules whose due time has passed."""
        return [s for s in self._registry.schedules.values() if s.is_due(now)]

    async def tick(self) -> list[asyncio.Task[DispatchOutcome]]:
        """Start a dispatch task for every due schedule.

        Returns:
            The tasks started by this tick (already tracked for shutdown).
        """
        self._registry.retry_pending()

        due = self.due_schedules(self._clock())
        loop = asyncio.get_running_loop()
        tasks: list[asyncio.Task[DispatchOutcome]] = []

        for schedule in due:
            schedule.in_flight = True
            task = loop.create_task(self.execute(schedule), name=f"schedule-{schedule.id}")
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            tasks.append(task)

        if tasks:
            logger.info(f"Dispatching {len(tasks)} due schedule(s)")
        return tasks

    async def execute(self, schedule: Schedule) -> DispatchOutcome:
        """Run one schedule to completion and record the result.

        Never raises for dispatch failures: they are folded into stats and
        published as ``schedule_failed``.
        """
        schedule.in_flight = True
        try:
            try:
                outcome = await self._dispatch(schedule)
            except asyncio.CancelledError:
                logger.info(f"Schedule {schedule.id} cancelled during dispatch.")
                raise
            except Exception as e:  # noqa: BLE001
                logger.error(f"Unexpected error running schedule {schedule.id}: {e}", exc_info=True)
                outcome = DispatchOutcome.skipped(f"Unexpected error: {e}")

            self._complete(schedule, outcome)
            return outcome
        finally:
            schedule.in_flight = False

    async def cancel_pending(self) -> None:
        """Cancel running dispatches (shutdown); their guards are released."""
        if not self._pending:
            return
        for task in self._pending:
            task.cancel()
        await asyncio.gather(*self._pending, return_exceptions=True)

    @property
    def in_flight_count(self) -> int:
        return len(self._pending)

    async def _dispatch(self, schedule: Schedule) -> DispatchOutcome:
        endpoint = self._registry.endpoints.get(schedule.endpoint_id)
        if endpoint is None:
            logger.warning(f"Schedule {schedule.id} references missing webhook {schedule.endpoint_id}")
            return DispatchOutcome.skipped("Webhook not found")
        if not endpoint.active:
            logger.info(f"Schedule {schedule.id} skipped: webhook {endpoint.id} is not active")
            return DispatchOutcome.skipped("Webhook is not active")

        outcome = await self._dispatcher.send(
            endpoint.url,
            endpoint.build_payload(schedule.payload),
            timeout_ms=self._timeout_ms,
        )
        self._stats.record(endpoint.stats, outcome, self._clock())
        self._registry.save_in_background(ENDPOINTS_KEY)
        return outcome

    def _complete(self, schedule: Schedule, outcome: DispatchOutcome) -> None:
        self._stats.record(schedule.stats, outcome, self._clock())

        next_due = next_due_at(schedule.due_at, schedule.recurrence)
        if next_due is None:
            schedule.active = False
        else:
            schedule.due_at = next_due

        self._registry.save_in_background(SCHEDULES_KEY)

        event_name = "schedule_executed" if outcome.success else "schedule_failed"
        log: Callable[..., None] = logger.info if outcome.success else logger.warning
        log(
            f'Schedule "{schedule.name or schedule.id}" {outcome.describe()} '
            f"in {outcome.latency_ms:.0f} ms, "
            f"next={next_due.isoformat() if next_due else '<done>'}"
        )
        self._events.publish(
            event_name,
            {
                "schedule_id": schedule.id,
                "endpoint_id": schedule.endpoint_id,
                "success": outcome.success,
                "result": outcome.describe(),
                "latency_ms": round(outcome.latency_ms, 1),
                "next_due_at": next_due.isoformat() if next_due else None,
            },
            activity=self._activity_message(schedule, outcome),
        )

    def _activity_message(self, schedule: Schedule, outcome: DispatchOutcome) -> str:
        endpoint = self._registry.endpoints.get(schedule.endpoint_id)
        target = f'"{endpoint.name}"' if endpoint else f"missing webhook {schedule.endpoint_id}"
        if outcome.success:
            return f"Scheduled message sent via {target}"
        return f"Failed to send scheduled message via {target}"
