"""Tests for the rolling stats aggregator."""

from datetime import datetime, timezone

import pytest

from src.core.models import Stats
from src.core.stats import StatsAggregator
from src.ports.http import DispatchOutcome

__all__ = []

FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def ok(latency_ms: float) -> DispatchOutcome:
    return DispatchOutcome(success=True, latency_ms=latency_ms, status_code=204)


def test_rolling_average_is_arithmetic_mean() -> None:
    """Latencies [100, 200, 300] average to 150 then 200, checked after each record."""
    aggregator = StatsAggregator(clock=lambda: FIXED_NOW)
    stats = Stats()

    aggregator.record(stats, ok(100))
    assert stats.average_response_time_ms == pytest.approx(100)

    aggregator.record(stats, ok(200))
    assert stats.average_response_time_ms == pytest.approx(150)

    aggregator.record(stats, ok(300))
    assert stats.average_response_time_ms == pytest.approx(200)
    assert stats.total_count == 3
    assert stats.success_count == 3


def test_failures_count_and_pull_average_toward_zero() -> None:
    """A failure increments failure_count and contributes 0 ms to the average."""
    aggregator = StatsAggregator(clock=lambda: FIXED_NOW)
    stats = Stats()

    aggregator.record(stats, ok(300))
    aggregator.record(stats, DispatchOutcome(success=False, latency_ms=9_999, timed_out=True))

    assert stats.total_count == 2
    assert stats.success_count == 1
    assert stats.failure_count == 1
    assert stats.average_response_time_ms == pytest.approx(150)


def test_every_attempt_counted_exactly_once() -> None:
    """success_count + failure_count always equals total_count."""
    aggregator = StatsAggregator(clock=lambda: FIXED_NOW)
    stats = Stats()
    outcomes = [
        ok(10),
        DispatchOutcome(success=False, status_code=500, latency_ms=5),
        DispatchOutcome.skipped("Webhook not found"),
        ok(20),
    ]

    for outcome in outcomes:
        aggregator.record(stats, outcome)
        assert stats.success_count + stats.failure_count == stats.total_count


def test_last_executed_at_uses_clock_or_explicit_time() -> None:
    """record() stamps last_executed_at from the clock unless given a time."""
    aggregator = StatsAggregator(clock=lambda: FIXED_NOW)
    stats = Stats()

    aggregator.record(stats, ok(1))
    assert stats.last_executed_at == FIXED_NOW

    later = datetime(2026, 3, 2, tzinfo=timezone.utc)
    aggregator.record(stats, ok(1), now=later)
    assert stats.last_executed_at == later


def test_success_rate() -> None:
    """success_rate is a percentage and 0 for empty stats."""
    aggregator = StatsAggregator()
    stats = Stats()
    assert stats.success_rate == 0.0

    aggregator.record(stats, ok(1))
    aggregator.record(stats, DispatchOutcome(success=False, status_code=404))
    assert stats.success_rate == pytest.approx(50.0)
