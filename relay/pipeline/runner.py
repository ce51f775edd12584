"""relay.pipeline.runner

Orchestration: bundles → guards → decisions → logs → execution.

A batch is processed strictly in order, one decision and one execution at a time;
venue margin is shared and untransactional, so the next order must see the last one.

Entry points:
- ``intake``: accounts from the source or a file (optionally watch-state deduplicated)
- ``fetch_once`` / ``watch``: live intake through a :class:`SignalSource`
- ``replay``: the full signal log through the *current* guards; never touches the source
  or the watch state
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import httpx

from relay.core.config import Config
from relay.core.exceptions import RelayError
from relay.core.journal import DecisionLog, SignalLog
from relay.core.models import Action, Decision, ExecutionLog, SignalRecord
from relay.core.time import isoformat_z, utc_now
from relay.core.types import BatchSummary, SignalBundle
from relay.core.watch_state import filter_bundles, load_watch_state, save_watch_state
from relay.execution.base import ExecutionReport, Executor
from relay.guards.base import Guard, GuardContext
from relay.guards.pipeline import GuardEvaluation, build_guards, evaluate
from relay.pipeline.decision import build_decision
from relay.source.nof1 import AgentAccount, SignalSource
from relay.source.normalizer import build_bundles

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BatchResult:
    bundles: list[SignalBundle] = field(default_factory=list)
    evaluations: list[GuardEvaluation] = field(default_factory=list)
    decisions: list[Decision] = field(default_factory=list)
    records: list[SignalRecord] = field(default_factory=list)
    skipped_duplicates: int = 0
    persisted: bool = False

    def summary(self) -> BatchSummary:
        executed = [d for d in self.decisions if d.execution is not None]
        return BatchSummary(
            received=len(self.bundles) + self.skipped_duplicates,
            skipped_duplicates=self.skipped_duplicates,
            recorded=len(self.records) if self.persisted else 0,
            decisions=len(self.decisions),
            executed=len(executed),
            execution_failures=sum(1 for d in executed if d.execution is not None and not d.execution.success),
            action_counts=dict(Counter(str(d.action) for d in self.decisions)),
        )


def _unique_ids(decisions: list[Decision], taken: Iterable[str] = ()) -> list[Decision]:
    """Suffix ``-n`` onto ids that collide within the batch or with ``taken``."""

    seen: set[str] = set(taken)
    out: list[Decision] = []
    for d in decisions:
        new_id = d.id
        n = 1
        while new_id in seen:
            new_id = f"{d.id}-{n}"
            n += 1
        seen.add(new_id)
        out.append(d if new_id == d.id else d.model_copy(update={"id": new_id}))
    return out


class SignalRunner:
    def __init__(
        self,
        config: Config,
        *,
        guards: Sequence[Guard] | None = None,
        executor: Executor | None = None,
        signal_log: SignalLog | None = None,
        decision_log: DecisionLog | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.guards = list(guards) if guards is not None else build_guards(config.guards)
        self.executor = executor
        self.signal_log = signal_log or SignalLog.from_paths(config.paths)
        self.decision_log = decision_log or DecisionLog.from_paths(config.paths)
        self._clock = clock

    @property
    def watch_state_path(self) -> Path:
        return self.config.paths.watch_state_path()

    @property
    def execution_active(self) -> bool:
        ex = self.config.execution
        return ex.enabled and not ex.simulate and self.executor is not None

    # --- pure-ish stages ---------------------------------------------------

    def process(
        self,
        bundles: Sequence[SignalBundle],
        *,
        now: datetime | None = None,
        taken_ids: Iterable[str] = (),
    ) -> BatchResult:
        simulate = self.config.execution.simulate
        result = BatchResult(bundles=list(bundles))
        decisions: list[Decision] = []

        for bundle in bundles:
            at = now or self._clock()
            sig = bundle.normalized
            meta = bundle.meta.model_dump(mode="json")
            position = bundle.raw.get("position") if isinstance(bundle.raw, dict) else None
            context = GuardContext(
                now=at,
                raw_position=position if isinstance(position, dict) else None,
                meta=meta,
            )

            evaluation = evaluate(sig, context, self.guards)
            decision = build_decision(sig, evaluation, simulate=simulate, raw=bundle.raw, meta=meta, now=at)

            result.evaluations.append(evaluation)
            decisions.append(decision)
            result.records.append(
                SignalRecord(
                    normalized=sig,
                    raw=bundle.raw,
                    meta=bundle.meta,
                    received_at=sig.received_at or isoformat_z(at),
                    guards=list(evaluation.results),
                    guard_passed=evaluation.passed,
                )
            )

        result.decisions = _unique_ids(decisions, taken_ids)
        for d in result.decisions:
            logger.info(
                "decision_built",
                extra={
                    "decision_id": d.id,
                    "action": str(d.action),
                    "reason_code": d.reason_code,
                    "agent": d.signal.agent_id,
                    "symbol": d.signal.symbol,
                },
            )
        return result

    async def execute(self, decisions: Sequence[Decision]) -> list[Decision]:
        """Run every EXECUTE decision through the executor, in order.

        No-op unless execution is enabled and not simulating. An exception escaping
        the executor is recorded as a failed execution; the batch continues.
        """

        executor = self.executor
        if executor is None or not self.execution_active:
            return list(decisions)

        out: list[Decision] = []
        for d in decisions:
            if d.action != Action.EXECUTE:
                out.append(d)
                continue

            executed_at = isoformat_z(self._clock())
            try:
                report = await executor.execute(d)
            except Exception as e:
                logger.exception("executor_raised", extra={"decision_id": d.id})
                report = ExecutionReport(decision_id=d.id, success=False, message=f"Execution raised: {e}")

            log = ExecutionLog(
                venue=executor.name,
                executed_at=executed_at,
                decision_id=d.id,
                success=report.success,
                message=report.message,
                order_ids=list(report.order_ids),
                protective_order_ids=list(report.protective_order_ids),
            )
            logger.info(
                "decision_executed",
                extra={"decision_id": d.id, "success": report.success, "message": report.message},
            )
            out.append(d.with_execution(log))
        return out

    # --- entry points --------------------------------------------------------

    async def ingest(
        self,
        bundles: Sequence[SignalBundle],
        *,
        dry_run: bool = False,
        now: datetime | None = None,
    ) -> BatchResult:
        taken: Iterable[str] = () if dry_run else self.decision_log.ids()
        result = self.process(bundles, now=now, taken_ids=taken)
        if dry_run:
            return result

        self.signal_log.append_many(result.records)
        result.decisions = await self.execute(result.decisions)
        self.decision_log.append_many(result.decisions)
        result.persisted = True
        return result

    async def intake(
        self,
        accounts: list[AgentAccount],
        *,
        source: str,
        input_file: str | None = None,
        dedup: bool = False,
        dry_run: bool = False,
    ) -> BatchResult:
        bundles = build_bundles(accounts, source=source, input_file=input_file, received_at=self._clock())

        if not dedup:
            return await self.ingest(bundles, dry_run=dry_run)

        state = load_watch_state(self.watch_state_path)
        filtered = filter_bundles(bundles, state)
        if filtered.skipped:
            logger.info("watch_state_skipped", extra={"skipped": filtered.skipped})

        result = await self.ingest(filtered.bundles, dry_run=dry_run)
        result.skipped_duplicates = filtered.skipped
        if not dry_run:
            save_watch_state(filtered.next_state, self.watch_state_path)
        return result

    async def fetch_once(
        self,
        source: SignalSource,
        *,
        agents: list[str] | None = None,
        marker: int | None = None,
        dry_run: bool = False,
    ) -> BatchResult:
        accounts = await source.fetch(agents=agents, marker=marker)
        return await self.intake(accounts, source=source.name, dedup=True, dry_run=dry_run)

    async def replay(self, *, save_decisions: bool = False, now: datetime | None = None) -> BatchResult:
        records = self.signal_log.read_all()
        at = now or self._clock()
        bundles = [SignalBundle(normalized=r.normalized, raw=r.raw, meta=r.meta) for r in records]

        taken: Iterable[str] = self.decision_log.ids() if save_decisions else ()
        result = self.process(bundles, now=at, taken_ids=taken)
        result.records = []
        result.decisions = await self.execute(result.decisions)
        if save_decisions:
            self.decision_log.append_many(result.decisions)
            result.persisted = True
        logger.info("replay_complete", extra={"signals": len(records), "saved": save_decisions})
        return result

    async def watch(
        self,
        source: SignalSource,
        *,
        interval_seconds: float | None = None,
        iterations: int | None = None,
        agents: list[str] | None = None,
        marker: int | None = None,
        dry_run: bool = False,
        on_batch: Callable[[int, BatchResult], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> int:
        """Fetch, process, sleep, repeat. Returns the number of completed iterations.

        A failed iteration is logged and the loop continues; ``iterations=None`` runs
        until the process is stopped.
        """

        interval = interval_seconds if interval_seconds is not None else self.config.watch.interval_seconds
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")

        done = 0
        while iterations is None or done < iterations:
            done += 1
            logger.info("watch_iteration", extra={"iteration": done})
            try:
                result = await self.fetch_once(source, agents=agents, marker=marker, dry_run=dry_run)
            except (RelayError, httpx.HTTPError) as e:
                logger.error("watch_iteration_failed", extra={"iteration": done, "error": str(e)})
            else:
                if on_batch is not None:
                    on_batch(done, result)
            if iterations is not None and done >= iterations:
                break
            await sleep(interval)
        return done
