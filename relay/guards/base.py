"""relay.guards.base

A guard is one validation rule over one signal.

Guards hold configuration, never state: ``check`` is a pure function of (signal, context),
so guards may be reordered, re-run and replayed freely.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from relay.core.models import GuardResult, NormalizedSignal


@dataclass(frozen=True, slots=True)
class GuardContext:
    now: datetime
    raw_position: dict[str, Any] | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Guard(Protocol):
    name: str

    def check(self, signal: NormalizedSignal, context: GuardContext) -> GuardResult: ...
