"""relay.core

Core primitives.

Nothing in here imports from guards, pipeline, execution or source.
"""

from .config import Config
from .exceptions import RelayError
from .journal import DecisionLog, SignalLog
from .models import Action, Decision, ExecutionLog, GuardResult, NormalizedSignal, Side, SignalRecord
from .time import parse_dt, utc_now

__all__ = [
    "Action",
    "Config",
    "Decision",
    "DecisionLog",
    "ExecutionLog",
    "GuardResult",
    "NormalizedSignal",
    "RelayError",
    "Side",
    "SignalLog",
    "SignalRecord",
    "parse_dt",
    "utc_now",
]
