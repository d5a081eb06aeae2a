"""Application entrypoint."""

import asyncio
import logging

from src.adapters.driven.analytics.sinks import HttpAnalyticsSink, LogAnalyticsSink
from src.adapters.driven.config.settings import Settings, load_settings
from src.adapters.driven.http.client import HttpClient
from src.adapters.driven.logging.logging_config import configure_logs
from src.adapters.driven.metrics.http_metrics import Metrics
from src.adapters.driven.notification.log_notifier import LogNotifier
from src.adapters.driven.storage.stores import JsonFileStore, MemoryStore
from src.adapters.driving.signals import make_stop_on_sigterm
from src.core.engine import WebhookEngine
from src.ports.collaborators import AnalyticsSinkPort, PersistencePort
from src.ports.settings import SettingsPort

__all__ = ["main", "build_engine"]

logger = logging.getLogger(__name__)


def build_engine(config: Settings, http: HttpClient) -> WebhookEngine:
    """Wire adapters into a WebhookEngine.

    Args:
        config: Validated configuration.
        http: Open HTTP client used as dispatch transport.

    Returns:
        Engine ready to start().
    """
    # Wrap config into port so core depends on interface (hexagonal)
    settings_port = SettingsPort(
        tick_interval_sec=config.tick_interval_sec,
        flush_interval_sec=config.flush_interval_sec,
        health_check_interval_sec=config.health_check_interval_sec,
        dispatch_timeout_ms=config.dispatch_timeout_ms,
        rate_limit=config.rate_limit,
        rate_limit_window_ms=config.rate_limit_window_ms,
        analytics_retention=config.analytics_retention,
        analytics_max_buffer=config.analytics_max_buffer,
        analytics_consent=config.analytics_consent,
    )

    store: PersistencePort
    if config.state_file_path:
        store = JsonFileStore(config.state_file_path)
    else:
        logger.warning("STATE_FILE_PATH not set, endpoints and schedules live in memory only")
        store = MemoryStore()

    sink: AnalyticsSinkPort
    if config.analytics_endpoint:
        sink = HttpAnalyticsSink(config.analytics_endpoint, session=http.session)
    else:
        sink = LogAnalyticsSink()

    return WebhookEngine(
        settings=settings_port,
        store=store,
        request_fn=http.request,
        sink=sink,
        notifier=LogNotifier(),
        metrics=Metrics(),
    )


async def main() -> None:
    """Start the webhook dispatch engine.

    Startup sequence:
    1. Configure logging.
    2. Load and validate configuration.
    3. Open the HTTP session and build the engine.
    4. Run scheduler, analytics and health-check timers.
    5. Gracefully shutdown on SIGTERM.
    """
    configure_logs()
    logger.info("Starting webhook dispatch engine...")

    try:
        config = load_settings()
    except (RuntimeError, ValueError) as exc:
        logger.error(
            "Configuration error: %s\n"
            "Hint: check TICK_INTERVAL_SECONDS, DISPATCH_TIMEOUT_MS, RATE_LIMIT, "
            "ANALYTICS_ENDPOINT and that STATE_FILE_PATH holds valid JSON.",
            exc,
        )
        return

    async with HttpClient() as http:
        try:
            engine = build_engine(config, http)
        except ValueError as exc:
            logger.error(f"Cannot load engine state: {exc}")
            return

        stop = make_stop_on_sigterm()

        try:
            await engine.start()
            await stop.wait()
        except Exception as e:
            logger.error(f"Unhandled exception in engine: {e}", exc_info=True)
        finally:
            await engine.stop()

        logger.info("Webhook dispatch engine stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.getLogger(__name__).info("Shutdown requested by user (Ctrl+C).")
