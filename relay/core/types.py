"""relay.core.types

Lightweight dataclasses for hot-path objects.

Records that get written to disk are pydantic models; these stay in memory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from relay.core.models import NormalizedSignal, SignalMeta


@dataclass(frozen=True, slots=True)
class SignalBundle:
    """A normalized signal travelling with its raw source payload and provenance."""

    normalized: NormalizedSignal
    raw: dict[str, Any]
    meta: SignalMeta


@dataclass(frozen=True, slots=True)
class BatchSummary:
    received: int = 0
    skipped_duplicates: int = 0
    recorded: int = 0
    decisions: int = 0
    executed: int = 0
    execution_failures: int = 0
    action_counts: dict[str, int] = field(default_factory=dict)
