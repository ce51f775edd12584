"""relay.guards.price

Bounds slippage between when the agent entered and when we would act.
"""

from __future__ import annotations

from dataclasses import dataclass

from relay.core.exceptions import ConfigError
from relay.core.models import GuardResult, NormalizedSignal
from relay.guards.base import GuardContext


@dataclass(frozen=True, slots=True)
class PriceGuard:
    tolerance_pct: float
    name: str = "PriceGuard"

    def __post_init__(self) -> None:
        if self.tolerance_pct <= 0:
            raise ConfigError("Price tolerance percentage must be greater than 0")

    def check(self, signal: NormalizedSignal, context: GuardContext) -> GuardResult:
        entry = float(signal.entry_price)
        current = float(signal.current_price)

        if entry <= 0:
            return GuardResult(
                guard=self.name,
                passed=False,
                reason="Invalid entry price detected",
                details={"entry_price": entry},
            )

        diff = abs(current - entry)
        diff_pct = diff / entry * 100.0
        passed = diff_pct <= self.tolerance_pct
        verb = "within" if passed else "exceeds"

        return GuardResult(
            guard=self.name,
            passed=passed,
            reason=f"Price difference {diff_pct:.4f}% {verb} tolerance {self.tolerance_pct}%",
            details={
                "entry_price": entry,
                "current_price": current,
                "diff": diff,
                "diff_pct": diff_pct,
                "tolerance_pct": self.tolerance_pct,
            },
        )
