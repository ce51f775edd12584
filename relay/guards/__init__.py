"""relay.guards

Stateless validation rules and the pipeline that runs them.
"""

from __future__ import annotations

from relay.guards.age import AgeGuard
from relay.guards.base import Guard, GuardContext
from relay.guards.notional import NotionalGuard
from relay.guards.pipeline import GuardEvaluation, build_guards, evaluate
from relay.guards.price import PriceGuard

__all__ = [
    "AgeGuard",
    "Guard",
    "GuardContext",
    "GuardEvaluation",
    "NotionalGuard",
    "PriceGuard",
    "build_guards",
    "evaluate",
]
