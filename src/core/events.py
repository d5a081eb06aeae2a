"""Fan-out of engine events to analytics, the activity feed and the notifier."""

import logging
from typing import Any

from src.core.activity import ActivityLog
from src.core.analytics import AnalyticsQueue
from src.ports.collaborators import NotificationPort

__all__ = ["EventPublisher"]

logger = logging.getLogger(__name__)


class EventPublisher:
    """Send one named event to the analytics queue and the notifier.

    When an activity message is given and an activity log is attached, the
    event is also recorded in the recent-activity feed. Notification is
    fire-and-forget; a failing notifier is logged and never interrupts the
    caller.
    """

    def __init__(
        self,
        analytics: AnalyticsQueue,
        notifier: NotificationPort | None = None,
        activity: ActivityLog | None = None,
    ) -> None:
        self.analytics = analytics
        self.notifier = notifier
        self.activity = activity

    def publish(
        self,
        event_name: str,
        properties: dict[str, Any],
        *,
        notify: bool = True,
        activity: str | None = None,
    ) -> None:
        self.analytics.track(event_name, properties)
        if activity is not None and self.activity is not None:
            self.activity.record(event_name, activity, properties)
        if not notify or self.notifier is None:
            return
        try:
            self.notifier.emit(event_name, properties)
        except Exception as e:  # noqa: BLE001
            logger.warning(f"Notifier failed for {event_name}: {e}")
