"""relay.pipeline.decision

Decision builder: (signal, guard evaluation, simulate flag) → Decision.

Deterministic and side-effect free. Persistence belongs to the caller.

Rules:
- simulate set → SIMULATE, whatever the guards said
- otherwise EXECUTE iff every guard passed, else SKIP
- reason code: ``<FirstFailingGuard>_FAIL`` | ``SIMULATED`` | ``GUARDS_PASS``
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from relay.core.models import Action, Decision, NormalizedSignal
from relay.core.time import epoch_ms, isoformat_z, utc_now
from relay.guards.pipeline import GuardEvaluation

REASON_SIMULATED = "SIMULATED"
REASON_GUARDS_PASS = "GUARDS_PASS"


def decision_id(signal: NormalizedSignal, created_at: datetime) -> str:
    return f"{signal.agent_id}-{signal.symbol}-{signal.entry_oid}-{epoch_ms(created_at)}"


def build_decision(
    signal: NormalizedSignal,
    evaluation: GuardEvaluation,
    *,
    simulate: bool = False,
    raw: dict[str, Any] | None = None,
    meta: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> Decision:
    created = now or utc_now()
    failing = evaluation.first_failure

    if simulate:
        action = Action.SIMULATE
    else:
        action = Action.EXECUTE if evaluation.passed else Action.SKIP

    if failing is not None:
        reason_code = f"{failing.guard}_FAIL"
    else:
        reason_code = REASON_SIMULATED if simulate else REASON_GUARDS_PASS

    return Decision(
        id=decision_id(signal, created),
        created_at=isoformat_z(created),
        action=action,
        reason_code=reason_code,
        reason=failing.reason if failing is not None else None,
        signal=signal,
        guards=list(evaluation.results),
        raw=raw,
        meta=meta,
    )
