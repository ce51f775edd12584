"""relay.pipeline.audit

Read-only summaries over the decision log.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from relay.core.models import Action, Decision


@dataclass(frozen=True, slots=True)
class AuditFilter:
    guard: str | None = None
    action: Action | None = None
    reason_code: str | None = None

    def matches(self, decision: Decision) -> bool:
        if self.action is not None and decision.action != self.action:
            return False
        if self.reason_code is not None and decision.reason_code != self.reason_code:
            return False
        if self.guard is not None:
            wanted = self.guard.lower()
            result = next((g for g in decision.guards if g.guard.lower() == wanted), None)
            if result is None or result.passed:
                return False
        return True


@dataclass(frozen=True, slots=True)
class AuditReport:
    total: int
    action_counts: dict[str, int]
    executed: int
    execution_successes: int
    failed_executions: list[Decision]
    guard_failures: dict[str, int]
    filtered: list[Decision] = field(default_factory=list)


def audit_decisions(decisions: Sequence[Decision], flt: AuditFilter | None = None) -> AuditReport:
    flt = flt or AuditFilter()
    executed = [d for d in decisions if d.execution is not None]
    failed = [d for d in executed if d.execution is not None and not d.execution.success]

    guard_failures: Counter[str] = Counter()
    for d in decisions:
        for g in d.guards:
            if not g.passed:
                guard_failures[g.guard] += 1

    return AuditReport(
        total=len(decisions),
        action_counts=dict(Counter(str(d.action) for d in decisions)),
        executed=len(executed),
        execution_successes=len(executed) - len(failed),
        failed_executions=failed,
        guard_failures=dict(guard_failures),
        filtered=[d for d in decisions if flt.matches(d)],
    )


def render_audit(report: AuditReport) -> str:
    lines = [f"Decisions recorded: {report.total}", "Action breakdown:"]
    for action, count in report.action_counts.items():
        lines.append(f"  {action}: {count}")

    if report.executed:
        lines.append(
            f"Execution breakdown: total {report.executed}, success {report.execution_successes}, "
            f"failed {len(report.failed_executions)}"
        )
        if report.failed_executions:
            lines.append("  Failed executions:")
            for d in report.failed_executions:
                msg = d.execution.message if d.execution is not None else None
                lines.append(f"    {d.signal.agent_id} {d.signal.symbol} ({d.id}) -> {msg or 'No message'}")

    if report.guard_failures:
        lines.append("Guard failure breakdown:")
        for guard, count in report.guard_failures.items():
            lines.append(f"  {guard}: {count}")

    lines.append("")
    lines.append(f"Filtered decisions ({len(report.filtered)}):")
    for d in report.filtered:
        lines.append(f"- {d.action} {d.signal.agent_id} {d.signal.symbol} ({d.reason_code})")
        for g in d.guards:
            if not g.passed:
                lines.append(f"    Guard {g.guard} failed: {g.reason or 'No reason provided'}")
        if d.execution is not None:
            status = "SUCCESS" if d.execution.success else "FAILED"
            lines.append(f"    Execution {status} on {d.execution.venue}: {d.execution.message or ''}".rstrip())
    return "\n".join(lines)
