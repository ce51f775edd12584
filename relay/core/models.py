"""relay.core.models

Core domain records.

Every persisted line is one of these. Signals, guard results and decisions are frozen;
the only sanctioned change to a decision is a single execution attachment, and it
produces a new object.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

from relay.core.exceptions import DecisionError


class Side(StrEnum):
    LONG = "LONG"
    SHORT = "SHORT"


class Action(StrEnum):
    EXECUTE = "EXECUTE"
    SKIP = "SKIP"
    SIMULATE = "SIMULATE"


class NormalizedSignal(BaseModel):
    """One agent's position in one symbol, in canonical form.

    ``quantity`` is always a magnitude; the direction lives in ``side`` only.
    Timestamps are kept as the ISO strings we observed so a record with a broken
    timestamp still round-trips through the log.
    """

    agent_id: str
    symbol: str
    side: Side
    quantity: float = Field(ge=0)
    leverage: float = 1.0
    entry_price: float
    entry_oid: int
    signal_marker: int = 0
    current_price: float
    received_at: str | None = None
    signal_timestamp: str | None = None

    model_config = {"frozen": True}

    @property
    def notional(self) -> float:
        return float(self.quantity) * float(self.entry_price)

    @property
    def signed_quantity(self) -> float:
        return float(self.quantity) if self.side == Side.LONG else -float(self.quantity)


class GuardResult(BaseModel):
    guard: str
    passed: bool
    reason: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class ExecutionLog(BaseModel):
    """What happened when an executor ran a decision."""

    venue: str
    executed_at: str
    decision_id: str
    success: bool
    message: str | None = None
    order_ids: list[str] = Field(default_factory=list)
    protective_order_ids: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class Decision(BaseModel):
    id: str
    created_at: str
    action: Action
    reason_code: str
    reason: str | None = None
    signal: NormalizedSignal
    guards: list[GuardResult] = Field(default_factory=list)
    raw: dict[str, Any] | None = None
    meta: dict[str, Any] | None = None
    execution: ExecutionLog | None = None

    model_config = {"frozen": True}

    def with_execution(self, log: ExecutionLog) -> Decision:
        """Attach an execution log. Allowed exactly once."""

        if self.execution is not None:
            raise DecisionError(f"decision {self.id} already carries an execution log")
        if log.decision_id != self.id:
            raise DecisionError(f"execution log for {log.decision_id} attached to decision {self.id}")
        return self.model_copy(update={"execution": log})

    @property
    def guards_passed(self) -> bool:
        return all(g.passed for g in self.guards)


class SignalMeta(BaseModel):
    source: str
    input_file: str | None = None

    model_config = {"frozen": True}


class SignalRecord(BaseModel):
    """One line of the signal log: the normalized signal plus its ingest-time guard view."""

    version: Literal[1] = 1
    normalized: NormalizedSignal
    raw: dict[str, Any] = Field(default_factory=dict)
    meta: SignalMeta
    received_at: str
    guards: list[GuardResult] | None = None
    guard_passed: bool | None = None

    model_config = {"frozen": True}
