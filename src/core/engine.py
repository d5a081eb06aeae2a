"""Dispatch engine: wires the core components and exposes interactive operations."""

import asyncio
import logging
from datetime import datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from src.core.activity import ActivityLog
from src.core.analytics import AnalyticsQueue
from src.core.dispatcher import Dispatcher, RequestFn
from src.core.errors import (
    NotFoundError,
    PersistenceError,
    RateLimitExceeded,
    ValidationError,
    raise_for_outcome,
)
from src.core.events import EventPublisher
from src.core.models import Endpoint, Recurrence, Schedule, Template
from src.core.periodic import run_periodic
from src.core.rate_limiter import RateLimiter
from src.core.registry import ENDPOINTS_KEY, SCHEDULES_KEY, TEMPLATES_KEY, Registry
from src.core.scheduler import SchedulerLoop
from src.core.stats import StatsAggregator
from src.ports.collaborators import (
    AnalyticsSinkPort,
    Clock,
    NotificationPort,
    PersistencePort,
    utc_now,
)
from src.ports.http import DispatchOutcome
from src.ports.metrics import MetricsPort
from src.ports.settings import SettingsPort

__all__ = ["WebhookEngine", "EDITABLE_ENDPOINT_FIELDS"]

logger = logging.getLogger(__name__)

EDITABLE_ENDPOINT_FIELDS = frozenset(
    {"name", "url", "active", "username", "avatar_url", "rate_limit", "description", "tags"}
)


def _default_test_message(clock: Clock) -> dict[str, Any]:
    return {
        "content": "This is a test message from Webhook Manager!",
        "embeds": [
            {
                "title": "Test Embed",
                "description": "If you can see this, your webhook is working correctly!",
                "color": 5814783,
                "timestamp": clock().isoformat(),
                "footer": {"text": "Webhook Manager"},
            }
        ],
    }


class WebhookEngine:
    """Scheduled dispatch engine with explicit start()/stop() lifecycle.

    Owns the rate limiter, dispatcher, stats aggregator, scheduler loop and
    analytics queue, and drives three independent timers:
    - scheduler tick (fires due schedules),
    - analytics flush,
    - endpoint health checks.

    Collaborators (persistence, notification, analytics sink, HTTP
    transport and clock) are injected, so the engine carries no global state.

    Interactive operations raise the typed errors from ``src.core.errors``;
    scheduled work never raises, it records failures and moves on.
    """

    def __init__(
        self,
        settings: SettingsPort,
        store: PersistencePort,
        request_fn: RequestFn,
        sink: AnalyticsSinkPort,
        notifier: NotificationPort | None = None,
        *,
        metrics: MetricsPort | None = None,
        clock: Clock = utc_now,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        """Build the engine and its components.

        Args:
            settings: Runtime settings (intervals, timeouts, limits).
            store: Persistence collaborator.
            request_fn: Async function that sends one HTTP request and returns its status.
            sink: Analytics batch destination.
            notifier: Optional notification collaborator.
            metrics: Optional dispatch metrics collector.
            clock: Wall-clock source.
            rate_limiter: Limiter to share; a fresh one is created if omitted.
        """
        self.settings = settings
        self._clock = clock

        self.registry = Registry(store)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.dispatcher = Dispatcher(
            request_fn,
            metrics=metrics,
            default_timeout_ms=settings.dispatch_timeout_ms,
        )
        self.stats = StatsAggregator(clock)
        self.analytics = AnalyticsQueue(
            sink,
            store,
            enabled=settings.analytics_consent,
            retention=settings.analytics_retention,
            max_buffer=settings.analytics_max_buffer,
            clock=clock,
        )
        self.activity = ActivityLog(store, clock=clock)
        self.events = EventPublisher(self.analytics, notifier, self.activity)
        self.scheduler = SchedulerLoop(
            self.registry,
            self.dispatcher,
            self.stats,
            self.events,
            clock=clock,
            timeout_ms=settings.dispatch_timeout_ms,
        )

        self._timers: list[asyncio.Task[None]] = []
        self._stopping = False

    # ===== LIFECYCLE =====

    @property
    def running(self) -> bool:
        return bool(self._timers)

    async def start(self) -> None:
        """Load state from the store and start the timers."""
        if self._timers:
            raise RuntimeError("Engine already started")

        self.registry.load()
        self._stopping = False
        loop = asyncio.get_running_loop()
        settings = self.settings

        self._timers.append(
            loop.create_task(
                run_periodic(
                    settings.tick_interval_sec,
                    self.scheduler.tick,
                    self._is_stopping,
                    name="scheduler",
                )
            )
        )
        self._timers.append(
            loop.create_task(
                run_periodic(
                    settings.flush_interval_sec,
                    self.analytics.flush,
                    self._is_stopping,
                    name="analytics-flush",
                    run_immediately=False,
                )
            )
        )
        if settings.health_check_interval_sec > 0:
            self._timers.append(
                loop.create_task(
                    run_periodic(
                        settings.health_check_interval_sec,
                        self.check_health,
                        self._is_stopping,
                        name="health-check",
                        run_immediately=False,
                    )
                )
            )

        logger.info(
            f"Engine started: tick={settings.tick_interval_sec}s, "
            f"flush={settings.flush_interval_sec}s, "
            f"health_check={settings.health_check_interval_sec or '<disabled>'}"
        )

    async def stop(self) -> None:
        """Cancel timers and in-flight dispatches, then flush analytics.

        Schedules that were in flight lose their guard; on the next start
        they are due again (at-least-once delivery).
        """
        self._stopping = True
        for task in self._timers:
            task.cancel()
        if self._timers:
            await asyncio.gather(*self._timers, return_exceptions=True)
        self._timers = []

        await self.scheduler.cancel_pending()
        self.registry.retry_pending()
        await self.analytics.aclose()
        logger.info("Engine stopped.")

    async def __aenter__(self) -> "WebhookEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def _is_stopping(self) -> bool:
        return self._stopping

    # ===== ENDPOINTS =====

    def list_endpoints(self) -> list[Endpoint]:
        return list(self.registry.endpoints.values())

    def get_endpoint(self, endpoint_id: str) -> Endpoint:
        """Return an endpoint by id.

        Raises:
            NotFoundError: If no endpoint has that id.
        """
        try:
            return self.registry.endpoints[endpoint_id]
        except KeyError:
            raise NotFoundError("Webhook", endpoint_id) from None

    def create_endpoint(self, **fields: Any) -> Endpoint:
        """Validate, store and announce a new endpoint.

        Raises:
            ValidationError: If fields are malformed.
            PersistenceError: If the store rejected the write (nothing is kept).
        """
        unknown = set(fields) - EDITABLE_ENDPOINT_FIELDS
        if unknown:
            raise ValidationError(f"Unknown webhook fields: {', '.join(sorted(unknown))}")
        try:
            endpoint = Endpoint(**fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Validation failed: {e}") from e

        self.registry.endpoints[endpoint.id] = endpoint
        try:
            self.registry.save(ENDPOINTS_KEY)
        except PersistenceError:
            del self.registry.endpoints[endpoint.id]
            raise

        logger.info(f'Created webhook "{endpoint.name}" ({endpoint.id})')
        self.events.publish(
            "webhook_created",
            {"endpoint_id": endpoint.id, "name": endpoint.name},
            activity=f'Created webhook "{endpoint.name}"',
        )
        return endpoint

    def update_endpoint(self, endpoint_id: str, **changes: Any) -> Endpoint:
        """Apply validated changes to an existing endpoint in place.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If changes are malformed.
            PersistenceError: If the store rejected the write (changes are rolled back).
        """
        endpoint = self.get_endpoint(endpoint_id)
        unknown = set(changes) - EDITABLE_ENDPOINT_FIELDS
        if unknown:
            raise ValidationError(f"Unknown webhook fields: {', '.join(sorted(unknown))}")

        data = endpoint.model_dump()
        data.update(changes)
        try:
            validated = Endpoint.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Validation failed: {e}") from e

        previous = {name: getattr(endpoint, name) for name in [*changes, "updated_at"]}
        for name in changes:
            setattr(endpoint, name, getattr(validated, name))
        endpoint.updated_at = self._clock()

        try:
            self.registry.save(ENDPOINTS_KEY)
        except PersistenceError:
            for name, value in previous.items():
                setattr(endpoint, name, value)
            raise

        self.events.publish(
            "webhook_updated",
            {"endpoint_id": endpoint.id, "fields": sorted(changes)},
            activity=f'Updated webhook "{endpoint.name}"',
        )
        return endpoint

    def delete_endpoint(self, endpoint_id: str) -> None:
        """Remove an endpoint.

        Schedules referencing it are kept; they become orphaned and fail
        without network I/O when they come due.
        """
        endpoint = self.get_endpoint(endpoint_id)
        del self.registry.endpoints[endpoint_id]
        try:
            self.registry.save(ENDPOINTS_KEY)
        except PersistenceError:
            self.registry.endpoints[endpoint_id] = endpoint
            raise

        logger.info(f'Deleted webhook "{endpoint.name}" ({endpoint.id})')
        self.events.publish(
            "webhook_deleted",
            {"endpoint_id": endpoint_id},
            activity=f'Deleted webhook "{endpoint.name}"',
        )

    # ===== SCHEDULES =====

    def list_schedules(self) -> list[Schedule]:
        return list(self.registry.schedules.values())

    def get_schedule(self, schedule_id: str) -> Schedule:
        try:
            return self.registry.schedules[schedule_id]
        except KeyError:
            raise NotFoundError("Schedule", schedule_id) from None

    def create_schedule(
        self,
        endpoint_id: str,
        payload: dict[str, Any],
        due_at: datetime,
        recurrence: str = Recurrence.ONCE.value,
        name: str = "",
    ) -> Schedule:
        """Create a schedule bound to an existing endpoint.

        Raises:
            NotFoundError: If the endpoint does not exist.
            ValidationError: If payload, due time or recurrence are malformed.
            PersistenceError: If the store rejected the write.
        """
        self.get_endpoint(endpoint_id)

        valid_rules = {r.value for r in Recurrence}
        rule = recurrence.value if isinstance(recurrence, Recurrence) else recurrence
        if rule not in valid_rules:
            raise ValidationError(
                f"Invalid recurrence '{recurrence}', expected one of {sorted(valid_rules)}"
            )
        if not isinstance(payload, dict) or not payload:
            raise ValidationError("Schedule payload must be a non-empty JSON object")

        try:
            schedule = Schedule(
                name=name,
                endpoint_id=endpoint_id,
                payload=payload,
                due_at=due_at,
                recurrence=rule,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Validation failed: {e}") from e

        self.registry.schedules[schedule.id] = schedule
        try:
            self.registry.save(SCHEDULES_KEY)
        except PersistenceError:
            del self.registry.schedules[schedule.id]
            raise

        logger.info(f"Created {rule} schedule {schedule.id} due {schedule.due_at.isoformat()}")
        self.events.publish(
            "schedule_created",
            {"schedule_id": schedule.id, "endpoint_id": endpoint_id, "recurrence": rule},
            activity=f'Created schedule "{schedule.name or schedule.id}"',
        )
        return schedule

    def delete_schedule(self, schedule_id: str) -> None:
        schedule = self.get_schedule(schedule_id)
        del self.registry.schedules[schedule_id]
        try:
            self.registry.save(SCHEDULES_KEY)
        except PersistenceError:
            self.registry.schedules[schedule_id] = schedule
            raise
        self.events.publish(
            "schedule_deleted",
            {"schedule_id": schedule_id},
            activity=f'Deleted schedule "{schedule.name or schedule.id}"',
        )

    def set_schedule_active(self, schedule_id: str, active: bool) -> Schedule:
        """Pause or resume a schedule."""
        schedule = self.get_schedule(schedule_id)
        previous = schedule.active
        schedule.active = active
        try:
            self.registry.save(SCHEDULES_KEY)
        except PersistenceError:
            schedule.active = previous
            raise
        return schedule

    # ===== TEMPLATES =====

    def list_templates(self) -> list[Template]:
        return list(self.registry.templates.values())

    def get_template(self, template_id: str) -> Template:
        try:
            return self.registry.templates[template_id]
        except KeyError:
            raise NotFoundError("Template", template_id) from None

    def create_template(self, name: str, content: str) -> Template:
        """Store a reusable message text.

        Raises:
            ValidationError: If name or content is blank or too long.
            PersistenceError: If the store rejected the write (nothing is kept).
        """
        try:
            template = Template(name=name, content=content)
        except PydanticValidationError as e:
            raise ValidationError(f"Validation failed: {e}") from e

        self.registry.templates[template.id] = template
        try:
            self.registry.save(TEMPLATES_KEY)
        except PersistenceError:
            del self.registry.templates[template.id]
            raise

        self.events.publish(
            "template_created",
            {"template_id": template.id, "name": template.name},
            activity=f'Created template "{template.name}"',
        )
        return template

    def delete_template(self, template_id: str) -> None:
        template = self.get_template(template_id)
        del self.registry.templates[template_id]
        try:
            self.registry.save(TEMPLATES_KEY)
        except PersistenceError:
            self.registry.templates[template_id] = template
            raise
        self.events.publish(
            "template_deleted",
            {"template_id": template_id},
            activity=f'Deleted template "{template.name}"',
        )

    def use_template(self, template_id: str) -> dict[str, Any]:
        """Count one use of a template and return a message payload built from it.

        The usage counter is bookkeeping: a failed write is retried later
        instead of raised.
        """
        template = self.get_template(template_id)
        template.usage_count += 1
        template.updated_at = self._clock()
        self.registry.save_in_background(TEMPLATES_KEY)
        self.analytics.track("template_used", {"template_id": template.id})
        return {"content": template.content}

    # ===== SENDING =====

    async def test_endpoint(
        self,
        endpoint_id: str,
        payload: dict[str, Any] | None = None,
        caller_id: str | None = None,
    ) -> DispatchOutcome:
        """Send a test message (a default one when payload is omitted).

        Raises:
            NotFoundError, ValidationError, RateLimitExceeded,
            DispatchTimeoutError, HttpError, TransportError.
        """
        return await self._send_interactive(
            endpoint_id,
            payload or _default_test_message(self._clock),
            caller_id,
            success_event="webhook_tested",
            failure_event="webhook_test_failed",
            activity_label="Test message",
        )

    async def send_message(
        self,
        endpoint_id: str,
        payload: dict[str, Any],
        caller_id: str | None = None,
    ) -> DispatchOutcome:
        """Send a user-composed message right away (same errors as test_endpoint)."""
        return await self._send_interactive(
            endpoint_id,
            payload,
            caller_id,
            success_event="message_sent",
            failure_event="message_failed",
            activity_label="Message",
        )

    async def _send_interactive(
        self,
        endpoint_id: str,
        payload: dict[str, Any],
        caller_id: str | None,
        *,
        success_event: str,
        failure_event: str,
        activity_label: str,
    ) -> DispatchOutcome:
        endpoint = self.get_endpoint(endpoint_id)
        if not endpoint.active:
            raise ValidationError("Webhook is not active")
        if not isinstance(payload, dict) or not payload:
            raise ValidationError("Message payload must be a non-empty JSON object")

        identifier = caller_id or endpoint.id
        limit = self._limit_for(endpoint)
        window_ms = self.settings.rate_limit_window_ms
        if not self.rate_limiter.check_limit(identifier, limit, window_ms):
            self.analytics.track("rate_limited", {"identifier": identifier, "endpoint_id": endpoint.id})
            raise RateLimitExceeded(identifier, limit, window_ms)

        outcome = await self.dispatcher.send(endpoint.url, endpoint.build_payload(payload))
        self.stats.record(endpoint.stats, outcome)
        self.registry.save_in_background(ENDPOINTS_KEY)

        properties = {
            "endpoint_id": endpoint.id,
            "success": outcome.success,
            "result": outcome.describe(),
            "latency_ms": round(outcome.latency_ms, 1),
        }
        if outcome.success:
            logger.info(f'{success_event} via "{endpoint.name}" ({outcome.latency_ms:.0f} ms)')
            self.events.publish(
                success_event,
                properties,
                activity=f'{activity_label} sent via "{endpoint.name}"',
            )
        else:
            logger.warning(f'{failure_event} via "{endpoint.name}": {outcome.describe()}')
            self.events.publish(
                failure_event,
                properties,
                activity=f'Failed to send {activity_label.lower()} via "{endpoint.name}"',
            )
            self.analytics.track("error", {"context": failure_event, "message": outcome.describe()})

        raise_for_outcome(outcome)
        return outcome

    # ===== HEALTH & ANALYTICS =====

    async def check_health(self) -> dict[str, DispatchOutcome]:
        """Send a GET to every active endpoint, independently of scheduling.

        Checks share the rate limiter under ``health:<endpoint id>``;
        throttled endpoints are skipped for this round.

        Returns:
            Outcome per checked endpoint id.
        """
        endpoints = [e for e in self.registry.endpoints.values() if e.active]

        async def ping(endpoint: Endpoint) -> DispatchOutcome | None:
            identifier = f"health:{endpoint.id}"
            limit = self._limit_for(endpoint)
            if not self.rate_limiter.check_limit(identifier, limit, self.settings.rate_limit_window_ms):
                logger.debug(f"Health check for {endpoint.id} skipped (rate limited)")
                return None
            return await self.dispatcher.send(endpoint.url, method="GET")

        results = await asyncio.gather(*(ping(e) for e in endpoints))

        report: dict[str, DispatchOutcome] = {}
        for endpoint, outcome in zip(endpoints, results):
            if outcome is None:
                continue
            report[endpoint.id] = outcome
            if not outcome.success:
                logger.warning(f'Health check failed for webhook "{endpoint.name}": {outcome.describe()}')
                self.analytics.track(
                    "health_check_failed",
                    {"endpoint_id": endpoint.id, "result": outcome.describe()},
                )
        return report

    def remaining_requests(self, identifier: str, endpoint_id: str | None = None) -> int:
        """Interactive sends still allowed for identifier in the current window.

        Uses the same limit and window as test_endpoint()/send_message():
        the endpoint's own rate_limit when set, else the configured default.

        Args:
            identifier: Caller key; an endpoint id when no caller id is used.
            endpoint_id: Endpoint whose override applies (defaults to identifier).
        """
        endpoint = self.registry.endpoints.get(endpoint_id or identifier)
        return self.rate_limiter.get_remaining_requests(
            identifier,
            self._limit_for(endpoint),
            self.settings.rate_limit_window_ms,
        )

    def _limit_for(self, endpoint: Endpoint | None) -> int:
        if endpoint is not None and endpoint.rate_limit:
            return endpoint.rate_limit
        return self.settings.rate_limit

    def set_consent(self, granted: bool) -> None:
        self.analytics.set_consent(granted)

    def recent_activity(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Newest-first activity feed entries ({id, type, message, timestamp, metadata})."""
        return self.activity.recent(limit)

    def summary(self) -> dict[str, Any]:
        """Dashboard totals aggregated over every endpoint's stats."""
        endpoints = self.list_endpoints()
        total = sum(e.stats.total_count for e in endpoints)
        success = sum(e.stats.success_count for e in endpoints)
        weighted_latency = sum(
            e.stats.average_response_time_ms * e.stats.total_count for e in endpoints
        )
        return {
            "endpoints": len(endpoints),
            "active_endpoints": sum(1 for e in endpoints if e.active),
            "active_schedules": sum(1 for s in self.registry.schedules.values() if s.active),
            "total_requests": total,
            "successful_requests": success,
            "failed_requests": total - success,
            "success_rate": (success / total * 100) if total else 0.0,
            "average_response_time_ms": (weighted_latency / total) if total else 0.0,
        }
