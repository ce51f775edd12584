"""End-to-end intake: payload file → guards → decisions → simulator fills → logs."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from relay.core.config import Config
from relay.core.journal import DecisionLog, SignalLog
from relay.core.models import Action
from relay.execution.factory import create_executor
from relay.execution.paper import SimulatorExecutor
from relay.pipeline.audit import audit_decisions
from relay.pipeline.runner import SignalRunner
from relay.source.nof1 import accounts_from_payload, load_accounts_file
from tests._factories import account_payload


@pytest.mark.anyio
async def test_payload_to_simulated_fills(test_config: Config, payload_file: Path, now: datetime) -> None:
    cfg = test_config.with_overrides("execution", enabled=True, venue="simulator")
    executor = create_executor(cfg)
    assert isinstance(executor, SimulatorExecutor)
    runner = SignalRunner(cfg, executor=executor, clock=lambda: now)

    result = await runner.intake(load_accounts_file(payload_file), source="file", input_file=str(payload_file))

    assert [d.action for d in result.decisions] == [Action.EXECUTE, Action.EXECUTE]
    assert all(d.execution is not None and d.execution.success for d in result.decisions)

    book: dict[str, float] = {}
    for symbol in ("BTC", "ETH"):
        inst = await executor.paper.get_instrument(symbol)
        [pos] = await executor.paper.get_positions(inst)
        book[symbol] = pos.size
    assert book == {"BTC": pytest.approx(0.5), "ETH": pytest.approx(-2.0)}
    assert [t.kind for t in executor.paper.triggers] == ["take_profit", "stop_loss"]

    signals = SignalLog.from_paths(cfg.paths).read_all()
    decisions = DecisionLog.from_paths(cfg.paths).read_all()
    assert len(signals) == 2
    assert decisions == result.decisions

    report = audit_decisions(decisions)
    assert (report.executed, report.execution_successes) == (2, 2)
    await executor.aclose()


@pytest.mark.anyio
async def test_reversal_across_batches_flips_the_position(test_config: Config, now: datetime) -> None:
    cfg = test_config.with_overrides("execution", enabled=True)
    executor = create_executor(cfg)
    assert isinstance(executor, SimulatorExecutor)
    runner = SignalRunner(cfg, executor=executor, clock=lambda: now)

    position = {"symbol": "BTC", "entry_price": 100.0, "leverage": 5, "current_price": 100.0}
    long_btc = {"BTC": {**position, "quantity": 1.0, "entry_oid": 1}}
    short_btc = {"BTC": {**position, "quantity": -0.4, "entry_oid": 2}}

    await runner.intake(accounts_from_payload(account_payload(long_btc)), source="test", dedup=True)
    second = await runner.intake(accounts_from_payload(account_payload(short_btc)), source="test", dedup=True)

    execution = second.decisions[0].execution
    assert execution is not None and execution.success
    assert len(execution.order_ids) == 1
    inst = await executor.paper.get_instrument("BTC")
    [pos] = await executor.paper.get_positions(inst)
    assert pos.size == pytest.approx(-0.4)
