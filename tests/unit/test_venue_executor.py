from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from relay.core.config import ExecutionConfig, PaperConfig
from relay.core.exceptions import VenueError
from relay.core.models import Decision, Side
from relay.execution.base import Instrument, OrderAck, OrderRequest, ProtectiveOrderRequest
from relay.execution.paper import PaperVenueApi, SimulatorExecutor
from relay.execution.venue import VenueExecutor
from relay.guards import GuardContext, evaluate
from relay.pipeline.decision import build_decision
from tests._factories import make_bundle, make_signal

NO_COSTS = PaperConfig(slippage_bps=0.0, fee_rate=0.0)


def _decision(now: datetime, exit_plan: dict[str, Any] | None = None, **overrides: Any) -> Decision:
    bundle = make_bundle(make_signal(**overrides), exit_plan=exit_plan)
    sig = bundle.normalized
    return build_decision(sig, evaluate(sig, GuardContext(now=now), []), raw=bundle.raw, now=now)


@pytest.mark.anyio
async def test_simulator_opens_position_and_places_protective_orders(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True), NO_COSTS)
    d = _decision(now, exit_plan={"profit_target": 120.0, "stop_loss": 90.0})

    report = await ex.execute(d)

    assert report.success is True
    assert report.decision_id == d.id
    assert len(report.order_ids) == 1
    assert len(report.protective_order_ids) == 2
    assert (report.message or "").startswith("Order placed (orders=")

    inst = await ex.paper.get_instrument("BTC")
    [pos] = await ex.paper.get_positions(inst)
    assert pos.size == pytest.approx(0.5)
    assert pos.leverage == 10.0
    assert {t.side for t in ex.paper.triggers} == {"sell"}


@pytest.mark.anyio
async def test_second_identical_target_is_aligned(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True), NO_COSTS)
    await ex.execute(_decision(now))

    report = await ex.execute(_decision(now))
    assert report.success is True
    assert report.order_ids == ()
    assert report.message == "Position already aligned"


@pytest.mark.anyio
async def test_flip_sends_one_crossing_order(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True, protective_orders=False), NO_COSTS)
    await ex.execute(_decision(now))

    report = await ex.execute(_decision(now, side=Side.SHORT, quantity=0.2))
    assert report.success is True
    assert len(report.order_ids) == 1
    fill = ex.paper.fills[-1]
    assert (fill.side, fill.fill_size, fill.reduce_only) == ("sell", pytest.approx(0.7), False)


@pytest.mark.anyio
async def test_insufficient_margin_is_a_failed_report(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True), PaperConfig(start_balance=1.0))

    report = await ex.execute(_decision(now))
    assert report.success is False
    assert (report.message or "").startswith("Insufficient margin")
    assert ex.paper.fills == []


@pytest.mark.anyio
async def test_force_reduce_only_blocks_opening(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True, force_reduce_only=True), NO_COSTS)

    report = await ex.execute(_decision(now))
    assert report.success is False
    assert "Force reduce-only" in (report.message or "")


@pytest.mark.anyio
async def test_venue_errors_become_failed_reports(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True), NO_COSTS)

    report = await ex.execute(_decision(now, current_price=0.0))
    assert report.success is False
    assert report.message == "Execution failed: no paper quote for BTC"


@pytest.mark.anyio
async def test_default_leverage_wins(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True, default_leverage=2.0), NO_COSTS)
    await ex.execute(_decision(now))

    inst = await ex.paper.get_instrument("BTC")
    [pos] = await ex.paper.get_positions(inst)
    assert pos.leverage == 2.0


class _RejectOpenings(PaperVenueApi):
    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck:
        if not order.reduce_only:
            return OrderAck(None, "-2019", "Margin is insufficient.")
        return await super().place_order(instrument, order)


@pytest.mark.anyio
async def test_partial_dispatch_reports_orders_already_placed(now: datetime) -> None:
    api = _RejectOpenings(NO_COSTS)
    api.quote("BTC", 100.5)
    await api.prepare("BTC", position_mode="dual")
    inst = await api.get_instrument("BTC")
    short = api._book(inst.venue_symbol).short
    short.size, short.avg_price = 0.2, 100.0

    ex = VenueExecutor(api, ExecutionConfig(enabled=True, position_mode="dual"))
    report = await ex.execute(_decision(now))

    assert report.success is False
    assert len(report.order_ids) == 1
    assert "Order rejected by paper: -2019 Margin is insufficient." in (report.message or "")
    assert f"(already placed: {report.order_ids[0]})" in (report.message or "")


class _BrokenTriggers(PaperVenueApi):
    async def place_protective_order(self, instrument: Instrument, order: ProtectiveOrderRequest) -> list[OrderAck]:
        raise VenueError("trigger service down")


@pytest.mark.anyio
async def test_protective_failure_does_not_fail_execution(now: datetime) -> None:
    api = _BrokenTriggers(NO_COSTS)
    api.quote("BTC", 100.5)
    ex = VenueExecutor(api, ExecutionConfig(enabled=True))

    report = await ex.execute(_decision(now, exit_plan={"stop_loss": 90.0}))
    assert report.success is True
    assert len(report.order_ids) == 1
    assert report.protective_order_ids == ()


@pytest.mark.anyio
async def test_no_protective_orders_without_exit_plan(now: datetime) -> None:
    ex = SimulatorExecutor(ExecutionConfig(enabled=True), NO_COSTS)

    report = await ex.execute(_decision(now))
    assert report.success is True
    assert report.protective_order_ids == ()
    assert ex.paper.triggers == []


class _AnonymousAcks(PaperVenueApi):
    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck:
        return OrderAck(None)


@pytest.mark.anyio
async def test_ack_without_order_id_is_a_rejection(now: datetime) -> None:
    api = _AnonymousAcks(NO_COSTS)
    api.quote("BTC", 100.5)

    report = await VenueExecutor(api, ExecutionConfig(enabled=True)).execute(_decision(now))

    assert report.success is False
    assert report.order_ids == ()
    assert (report.message or "").startswith("Order rejected by paper:")
