from __future__ import annotations

from datetime import datetime

import pytest

from relay.core.config import GuardsConfig
from relay.core.exceptions import ConfigError
from relay.guards import AgeGuard, GuardContext, NotionalGuard, PriceGuard, build_guards, evaluate
from tests._factories import make_signal


def test_zero_guards_means_allow(now: datetime) -> None:
    ev = evaluate(make_signal(), GuardContext(now=now), [])

    assert ev.passed is True
    assert ev.results == ()
    assert ev.first_failure is None


def test_every_guard_runs_in_order(now: datetime) -> None:
    sig = make_signal(quantity=10.0, entry_price=100.0, current_price=150.0)
    guards = [NotionalGuard(max_notional=100), PriceGuard(tolerance_pct=1.0), AgeGuard(max_age_seconds=60)]

    ev = evaluate(sig, GuardContext(now=now), guards)

    assert [r.guard for r in ev.results] == ["NotionalGuard", "PriceGuard", "AgeGuard"]
    assert ev.passed is False
    assert ev.first_failure is not None
    assert ev.first_failure.guard == "NotionalGuard"
    assert ev.results[2].passed is True


def test_build_guards_default_selection() -> None:
    guards = build_guards(GuardsConfig(max_age_seconds=30))
    assert [g.name for g in guards] == ["PriceGuard", "AgeGuard"]

    guards = build_guards(GuardsConfig(max_age_seconds=30, max_notional=1000))
    assert [g.name for g in guards] == ["PriceGuard", "AgeGuard", "NotionalGuard"]


def test_build_guards_explicit_order_and_noop() -> None:
    guards = build_guards(GuardsConfig(enabled=["notional", "noop", "price"], max_notional=10))
    assert [g.name for g in guards] == ["NotionalGuard", "PriceGuard"]


def test_noop_only_yields_empty_pipeline() -> None:
    assert build_guards(GuardsConfig(enabled=["noop"])) == []


def test_build_guards_missing_threshold() -> None:
    with pytest.raises(ConfigError, match="max_age_seconds"):
        build_guards(GuardsConfig(enabled=["age"]))
    with pytest.raises(ConfigError, match="max_notional"):
        build_guards(GuardsConfig(enabled=["notional"]))


def test_unknown_guard_name_is_rejected() -> None:
    with pytest.raises(ValueError):
        GuardsConfig(enabled=["volume"])
