"""relay.guards.age

Stale signals are not acted on.

No timestamp is not the same as an old timestamp: when none can be parsed the guard
passes and says so.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from relay.core.exceptions import ConfigError
from relay.core.models import GuardResult, NormalizedSignal
from relay.core.time import age, parse_dt
from relay.guards.base import GuardContext


def signal_time(signal: NormalizedSignal) -> datetime | None:
    candidate = signal.signal_timestamp if signal.signal_timestamp is not None else signal.received_at
    if not candidate:
        return None
    try:
        return parse_dt(candidate)
    except ValueError:
        return None


def _ms(value: float) -> str:
    return f"{value:.3f}".rstrip("0").rstrip(".")


@dataclass(frozen=True, slots=True)
class AgeGuard:
    max_age_seconds: float
    name: str = "AgeGuard"

    def __post_init__(self) -> None:
        if self.max_age_seconds <= 0:
            raise ConfigError("max_age_seconds must be greater than 0")

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.max_age_seconds)

    @property
    def max_age_ms(self) -> float:
        return self.max_age / timedelta(milliseconds=1)

    def check(self, signal: NormalizedSignal, context: GuardContext) -> GuardResult:
        ts = signal_time(signal)
        if ts is None:
            return GuardResult(
                guard=self.name,
                passed=True,
                reason="Signal timestamp unavailable; skipping age check",
                details={"max_age_ms": self.max_age_ms},
            )

        elapsed = age(ts, now=context.now)
        passed = elapsed <= self.max_age
        elapsed_ms = elapsed / timedelta(milliseconds=1)
        verb = "within" if passed else "exceeds"
        return GuardResult(
            guard=self.name,
            passed=passed,
            reason=f"Signal age {_ms(elapsed_ms)}ms {verb} limit {_ms(self.max_age_ms)}ms",
            details={"max_age_ms": self.max_age_ms, "age_ms": elapsed_ms},
        )
