"""Notification adapter that writes engine events to the log."""

import json
import logging
from typing import Any

__all__ = ["LogNotifier"]

logger = logging.getLogger(__name__)


class LogNotifier:
    """Stand-in for a real-time channel (websocket, push): logs each event."""

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        logger.info(f"[notify] {event_name} {json.dumps(payload, default=str)}")
