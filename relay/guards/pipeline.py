"""relay.guards.pipeline

Runs an ordered list of guards over a signal.

- Zero guards means allow. That is the documented default, not an accident.
- Every guard runs; nothing short-circuits. The audit trail shows all of them.
- Result order is configuration order: the first failure names the decision.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from relay.core.config import GuardsConfig
from relay.core.exceptions import ConfigError
from relay.core.models import GuardResult, NormalizedSignal
from relay.guards.age import AgeGuard
from relay.guards.base import Guard, GuardContext
from relay.guards.notional import NotionalGuard
from relay.guards.price import PriceGuard


@dataclass(frozen=True, slots=True)
class GuardEvaluation:
    signal: NormalizedSignal
    results: tuple[GuardResult, ...]
    passed: bool

    @property
    def first_failure(self) -> GuardResult | None:
        return next((r for r in self.results if not r.passed), None)


def evaluate(signal: NormalizedSignal, context: GuardContext, guards: Sequence[Guard]) -> GuardEvaluation:
    if not guards:
        return GuardEvaluation(signal=signal, results=(), passed=True)

    results = tuple(g.check(signal, context) for g in guards)
    return GuardEvaluation(signal=signal, results=results, passed=all(r.passed for r in results))


def build_guards(cfg: GuardsConfig) -> list[Guard]:
    """Instantiate the configured guards, in order.

    Raises:
        ConfigError: unknown guard name, missing threshold, or invalid threshold.
    """

    guards: list[Guard] = []
    for name in cfg.resolved_names():
        if name == "price":
            guards.append(PriceGuard(tolerance_pct=float(cfg.price_tolerance_pct)))
        elif name == "age":
            if cfg.max_age_seconds is None:
                raise ConfigError("age guard requires max_age_seconds (--max-age)")
            guards.append(AgeGuard(max_age_seconds=float(cfg.max_age_seconds)))
        elif name == "notional":
            if cfg.max_notional is None:
                raise ConfigError("notional guard requires max_notional (--max-notional)")
            guards.append(NotionalGuard(max_notional=float(cfg.max_notional)))
        elif name == "noop":
            continue
        else:
            raise ConfigError(f"Unknown guard '{name}'")
    return guards
