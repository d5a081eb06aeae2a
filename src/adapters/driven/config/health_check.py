"""Healthcheck validator for container orchestration."""

import logging

from src.adapters.driven.config.settings import load_settings
from src.adapters.driven.logging.logging_config import configure_logs
from src.adapters.driven.storage.stores import JsonFileStore

__all__ = ["main"]

logger = logging.getLogger(__name__)


def main() -> int:
    """Run health check for container orchestration.

    Validates:
    - Environment variables parse and pass validation.
    - The state file (when configured) is readable JSON.

    Returns:
        0 if healthy, 1 if unhealthy.
    """
    configure_logs()

    try:
        settings = load_settings()
        if settings.state_file_path:
            JsonFileStore(settings.state_file_path).load("endpoints")
    except Exception as exc:
        logger.error(f"Engine healthcheck FAILED: {exc}")
        return 1

    logger.info("Engine healthcheck OK")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
