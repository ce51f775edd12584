"""relay.guards.notional

Caps single-signal exposure, independent of account size.
"""

from __future__ import annotations

from dataclasses import dataclass

from relay.core.exceptions import ConfigError
from relay.core.models import GuardResult, NormalizedSignal
from relay.guards.base import GuardContext


@dataclass(frozen=True, slots=True)
class NotionalGuard:
    max_notional: float
    name: str = "NotionalGuard"

    def __post_init__(self) -> None:
        if self.max_notional <= 0:
            raise ConfigError("max_notional must be greater than 0")

    def check(self, signal: NormalizedSignal, context: GuardContext) -> GuardResult:
        notional = signal.notional
        passed = notional <= self.max_notional
        verb = "within" if passed else "exceeds"
        return GuardResult(
            guard=self.name,
            passed=passed,
            reason=f"Notional {notional:.4f} {verb} limit {self.max_notional}",
            details={"notional": notional, "max_notional": self.max_notional},
        )
