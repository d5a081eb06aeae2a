"""Configuration loading from environment variables."""

import logging
import os
from collections.abc import Callable
from typing import TypeVar

from dotenv import load_dotenv
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

__all__ = ["Settings", "load_settings"]

load_dotenv()

logger = logging.getLogger(__name__)
_http_url_adapter = TypeAdapter(HttpUrl)

N = TypeVar("N", int, float)

_CONSENT_VALUES = {
    "granted": True,
    "true": True,
    "1": True,
    "yes": True,
    "denied": False,
    "false": False,
    "0": False,
    "no": False,
}


class Settings(BaseModel):
    """Runtime configuration for the dispatch engine.

    Attributes:
        tick_interval_sec: Seconds between scheduler ticks.
        flush_interval_sec: Seconds between analytics flushes.
        health_check_interval_sec: Seconds between endpoint health checks (0 disables).
        dispatch_timeout_ms: Deadline for each outbound call.
        rate_limit: Default calls allowed per window and identifier.
        rate_limit_window_ms: Rate-limit window length.
        analytics_retention: Local mirror cap for delivered analytics events.
        analytics_max_buffer: Cap on undelivered analytics events.
        analytics_consent: Whether analytics events are recorded.
        analytics_endpoint: Optional collector URL; events are logged when unset.
        state_file_path: Optional JSON state file; state is in-memory when unset.
    """

    tick_interval_sec: float = Field(default=60, gt=0, description="Scheduler tick interval.")
    flush_interval_sec: float = Field(default=30, gt=0, description="Analytics flush interval.")
    health_check_interval_sec: float = Field(
        default=300, ge=0, description="Endpoint health check interval (0 disables)."
    )
    dispatch_timeout_ms: int = Field(default=10_000, gt=0, description="Outbound call deadline.")
    rate_limit: int = Field(default=60, gt=0, description="Calls allowed per window.")
    rate_limit_window_ms: int = Field(default=60_000, gt=0, description="Rate-limit window.")
    analytics_retention: int = Field(default=1000, gt=0, description="Local analytics mirror cap.")
    analytics_max_buffer: int = Field(default=10_000, gt=0, description="Undelivered event cap.")
    analytics_consent: bool = Field(default=True, description="Record analytics events.")
    analytics_endpoint: str | None = Field(
        default=None,
        description=(
            "Optional HTTP collector for analytics batches. "
            "If not set, batches are written to the log."
        ),
    )
    state_file_path: str | None = Field(
        default=None,
        description="JSON file holding endpoints and schedules. In-memory when unset.",
    )

    @field_validator("analytics_endpoint")
    @classmethod
    def validate_analytics_endpoint(cls, v: str | None) -> str | None:
        """Validate that the collector endpoint (if provided) is an http(s) URL.

        Args:
            v: Collector URL to validate (can be None).

        Returns:
            The validated URL or None.

        Raises:
            ValueError: If URL is invalid or not http(s).
        """
        if v is None:
            return v
        try:
            url = _http_url_adapter.validate_python(v)
            if url.scheme not in ("http", "https"):
                raise ValueError("Only http:// and https:// endpoints allowed")
        except Exception as e:
            raise ValueError(f"Invalid analytics endpoint: {e}") from e
        return v


def _env_number(name: str, cast: Callable[[str], N], default: N) -> N:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be a number (got: {raw})") from e


def _env_consent(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return _CONSENT_VALUES[raw.strip().lower()]
    except KeyError as e:
        raise RuntimeError(f"{name} must be 'granted' or 'denied' (got: {raw})") from e


def load_settings() -> Settings:
    """Load and validate settings from the environment.

    Every variable is optional:
    - TICK_INTERVAL_SECONDS, FLUSH_INTERVAL_SECONDS, HEALTH_CHECK_INTERVAL_SECONDS.
    - DISPATCH_TIMEOUT_MS.
    - RATE_LIMIT, RATE_LIMIT_WINDOW_MS.
    - ANALYTICS_RETENTION, ANALYTICS_MAX_BUFFER, ANALYTICS_CONSENT, ANALYTICS_ENDPOINT.
    - STATE_FILE_PATH.

    Returns:
        Validated Settings object.

    Raises:
        RuntimeError: If a variable cannot be parsed.
        ValueError: If configuration is invalid.
    """
    settings = Settings(
        tick_interval_sec=_env_number("TICK_INTERVAL_SECONDS", float, 60.0),
        flush_interval_sec=_env_number("FLUSH_INTERVAL_SECONDS", float, 30.0),
        health_check_interval_sec=_env_number("HEALTH_CHECK_INTERVAL_SECONDS", float, 300.0),
        dispatch_timeout_ms=_env_number("DISPATCH_TIMEOUT_MS", int, 10_000),
        rate_limit=_env_number("RATE_LIMIT", int, 60),
        rate_limit_window_ms=_env_number("RATE_LIMIT_WINDOW_MS", int, 60_000),
        analytics_retention=_env_number("ANALYTICS_RETENTION", int, 1000),
        analytics_max_buffer=_env_number("ANALYTICS_MAX_BUFFER", int, 10_000),
        analytics_consent=_env_consent("ANALYTICS_CONSENT", True),
        analytics_endpoint=os.getenv("ANALYTICS_ENDPOINT") or None,
        state_file_path=os.getenv("STATE_FILE_PATH") or None,
    )

    logger.info(
        f"Engine configured: tick={settings.tick_interval_sec}s, "
        f"flush={settings.flush_interval_sec}s, "
        f"timeout={settings.dispatch_timeout_ms}ms, "
        f"rate_limit={settings.rate_limit}/{settings.rate_limit_window_ms}ms, "
        f"analytics={settings.analytics_endpoint or '<log>'}, "
        f"state={settings.state_file_path or '<memory>'}"
    )

    return settings
