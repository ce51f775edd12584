from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from relay.core.exceptions import ConfigError
from relay.core.models import Side
from relay.guards import AgeGuard, GuardContext, NotionalGuard, PriceGuard
from tests._factories import make_signal


def test_price_guard_fails_beyond_tolerance(now: datetime) -> None:
    guard = PriceGuard(tolerance_pct=1.0)
    res = guard.check(make_signal(entry_price=100.0, current_price=102.0), GuardContext(now=now))

    assert res.guard == "PriceGuard"
    assert res.passed is False
    assert res.details["diff"] == pytest.approx(2.0)
    assert res.details["diff_pct"] == pytest.approx(2.0)
    assert "exceeds" in (res.reason or "")


def test_price_guard_passes_within_tolerance(now: datetime) -> None:
    res = PriceGuard(tolerance_pct=1.0).check(
        make_signal(entry_price=100.0, current_price=99.2), GuardContext(now=now)
    )
    assert res.passed is True


def test_price_guard_rejects_non_positive_entry(now: datetime) -> None:
    res = PriceGuard(tolerance_pct=1.0).check(make_signal(entry_price=0.0), GuardContext(now=now))

    assert res.passed is False
    assert res.reason == "Invalid entry price detected"


def test_price_guard_requires_positive_tolerance() -> None:
    with pytest.raises(ConfigError):
        PriceGuard(tolerance_pct=0)


def test_age_guard_passes_fresh_and_fails_stale(now: datetime) -> None:
    guard = AgeGuard(max_age_seconds=60)
    ctx = GuardContext(now=now)

    fresh = guard.check(make_signal(signal_timestamp="2025-01-15T11:59:30.000Z"), ctx)
    assert fresh.passed is True
    assert fresh.details["age_ms"] == 30_000

    stale_ts = (now - timedelta(minutes=5)).isoformat()
    stale = guard.check(make_signal(signal_timestamp=stale_ts), ctx)
    assert stale.passed is False
    assert stale.details["age_ms"] == 300_000


def test_age_guard_prefers_signal_timestamp_over_received_at(now: datetime) -> None:
    sig = make_signal(signal_timestamp="2025-01-15T11:00:00Z", received_at="2025-01-15T11:59:59Z")
    res = AgeGuard(max_age_seconds=60).check(sig, GuardContext(now=now))
    assert res.passed is False


def test_age_guard_passes_when_timestamp_missing(now: datetime) -> None:
    sig = make_signal(signal_timestamp=None, received_at=None)
    res = AgeGuard(max_age_seconds=1).check(sig, GuardContext(now=now))

    assert res.passed is True
    assert "unavailable" in (res.reason or "")


def test_age_guard_passes_when_timestamp_unparseable(now: datetime) -> None:
    sig = make_signal(signal_timestamp="not-a-time")
    res = AgeGuard(max_age_seconds=1).check(sig, GuardContext(now=now))
    assert res.passed is True


def test_notional_guard_threshold(now: datetime) -> None:
    sig = make_signal(quantity=5.0, entry_price=100.0)
    ctx = GuardContext(now=now)

    over = NotionalGuard(max_notional=400).check(sig, ctx)
    assert over.passed is False
    assert over.details["notional"] == pytest.approx(500.0)

    at_limit = NotionalGuard(max_notional=500).check(sig, ctx)
    assert at_limit.passed is True


def test_notional_uses_magnitude_for_shorts(now: datetime) -> None:
    sig = make_signal(side=Side.SHORT, quantity=5.0, entry_price=100.0)
    res = NotionalGuard(max_notional=400).check(sig, GuardContext(now=now))
    assert res.details["notional"] == pytest.approx(500.0)


def test_threshold_guards_reject_non_positive_limits() -> None:
    with pytest.raises(ConfigError):
        AgeGuard(max_age_seconds=0)
    with pytest.raises(ConfigError):
        NotionalGuard(max_notional=-1)


def test_age_guard_does_not_truncate_sub_millisecond_overrun(now: datetime) -> None:
    ts = (now - timedelta(milliseconds=1000, microseconds=900)).isoformat()
    res = AgeGuard(max_age_seconds=1).check(make_signal(signal_timestamp=ts), GuardContext(now=now))

    assert res.passed is False
    assert res.details["age_ms"] == pytest.approx(1000.9)
    assert res.reason == "Signal age 1000.9ms exceeds limit 1000ms"


def test_age_guard_honours_sub_millisecond_limit(now: datetime) -> None:
    ts = (now - timedelta(microseconds=300)).isoformat()
    res = AgeGuard(max_age_seconds=0.0005).check(make_signal(signal_timestamp=ts), GuardContext(now=now))

    assert res.passed is True
    assert res.details["max_age_ms"] == pytest.approx(0.5)
