"""Settings port definition (DTO)."""

from dataclasses import dataclass

__all__ = ["SettingsPort"]


@dataclass
class SettingsPort:
    """Runtime settings for the dispatch engine.

    Decouples core from concrete configuration sources, enabling
    easy testing and implementation swapping.

    Attributes:
        tick_interval_sec: Seconds between scheduler ticks.
        flush_interval_sec: Seconds between analytics flushes.
        health_check_interval_sec: Seconds between endpoint health checks (0 disables).
        dispatch_timeout_ms: Hard deadline for each outbound call.
        rate_limit: Default number of calls allowed per window and identifier.
        rate_limit_window_ms: Sliding window length.
        analytics_retention: Cap on the local mirror of delivered events.
        analytics_max_buffer: Cap on the live buffer when failed batches pile up.
        analytics_consent: Whether analytics events are recorded at all.
    """

    tick_interval_sec: float = 60
    flush_interval_sec: float = 30
    health_check_interval_sec: float = 300
    dispatch_timeout_ms: int = 10_000
    rate_limit: int = 60
    rate_limit_window_ms: int = 60_000
    analytics_retention: int = 1000
    analytics_max_buffer: int = 10_000
    analytics_consent: bool = True
