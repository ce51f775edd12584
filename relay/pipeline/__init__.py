"""relay.pipeline

Decisions, the runner that drives them, and read-only reports over the logs.
"""

from __future__ import annotations

from relay.pipeline.audit import AuditFilter, audit_decisions, render_audit
from relay.pipeline.decision import build_decision, decision_id
from relay.pipeline.report import format_positions, latest_positions
from relay.pipeline.runner import BatchResult, SignalRunner

__all__ = [
    "AuditFilter",
    "BatchResult",
    "SignalRunner",
    "audit_decisions",
    "build_decision",
    "decision_id",
    "format_positions",
    "latest_positions",
    "render_audit",
]
