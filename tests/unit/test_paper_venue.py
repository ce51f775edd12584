from __future__ import annotations

import pytest

from relay.core.config import PaperConfig
from relay.core.exceptions import VenueError
from relay.execution.base import OrderRequest, ProtectiveOrderRequest
from relay.execution.paper import PaperVenueApi


def _order(side: str, qty: float, *, reduce_only: bool = False, leg: str | None = None) -> OrderRequest:
    return OrderRequest(
        symbol="BTC", side=side, contracts=qty, quantity=qty, reduce_only=reduce_only, leg=leg  # type: ignore[arg-type]
    )


@pytest.mark.anyio
async def test_open_and_close_net_position_realizes_pnl() -> None:
    api = PaperVenueApi(PaperConfig(start_balance=1000.0, slippage_bps=0.0, fee_rate=0.0))
    inst = await api.get_instrument("btc")
    assert inst.venue_symbol == "BTC"

    api.quote("BTC", 100.0)
    await api.set_leverage(inst, 5.0)
    ack = await api.place_order(inst, _order("buy", 2.0))
    assert ack.ok

    bal = await api.get_balance(inst)
    assert bal.available == pytest.approx(960.0)
    assert bal.equity == pytest.approx(1000.0)
    [pos] = await api.get_positions(inst)
    assert (pos.leg, pos.size, pos.avg_price, pos.leverage) == ("net", 2.0, 100.0, 5.0)

    api.quote("BTC", 110.0)
    closed = await api.place_order(inst, _order("sell", 2.0, reduce_only=True))
    assert closed.ok
    assert api.fills[-1].realized_pnl == pytest.approx(20.0)
    assert await api.get_positions(inst) == []
    assert (await api.get_balance(inst)).available == pytest.approx(1020.0)


@pytest.mark.anyio
async def test_net_flip_closes_then_opens() -> None:
    api = PaperVenueApi(PaperConfig(slippage_bps=0.0, fee_rate=0.0))
    inst = await api.get_instrument("BTC")
    api.quote("BTC", 100.0)

    await api.place_order(inst, _order("buy", 1.0))
    await api.place_order(inst, _order("sell", 3.0))

    [pos] = await api.get_positions(inst)
    assert pos.size == pytest.approx(-2.0)
    assert api.reserved_margin == pytest.approx(200.0)


@pytest.mark.anyio
async def test_slippage_and_fees_apply() -> None:
    api = PaperVenueApi(PaperConfig(start_balance=1000.0, slippage_bps=10.0, fee_rate=0.001))
    inst = await api.get_instrument("BTC")
    api.quote("BTC", 100.0)

    await api.place_order(inst, _order("buy", 1.0))
    fill = api.fills[-1]
    assert fill.fill_price == pytest.approx(100.1)
    assert fill.fee == pytest.approx(0.1001)


@pytest.mark.anyio
async def test_reduce_only_cannot_grow_position() -> None:
    api = PaperVenueApi()
    inst = await api.get_instrument("BTC")
    api.quote("BTC", 100.0)

    ack = await api.place_order(inst, _order("buy", 1.0, reduce_only=True))
    assert not ack.ok
    assert ack.error_code == "REDUCE_ONLY_REJECTED"


@pytest.mark.anyio
async def test_insufficient_cash_is_rejected() -> None:
    api = PaperVenueApi(PaperConfig(start_balance=10.0))
    inst = await api.get_instrument("BTC")
    api.quote("BTC", 100.0)

    ack = await api.place_order(inst, _order("buy", 1.0))
    assert ack.error_code == "INSUFFICIENT_MARGIN"
    assert api.fills == []


@pytest.mark.anyio
async def test_missing_quote() -> None:
    api = PaperVenueApi()
    inst = await api.get_instrument("ETH")

    ack = await api.place_order(inst, _order("buy", 1.0))
    assert ack.error_code == "NO_QUOTE"
    with pytest.raises(VenueError):
        await api.get_mark_price(inst)
    with pytest.raises(VenueError):
        api.quote("ETH", 0.0)


@pytest.mark.anyio
async def test_hedge_legs_are_independent() -> None:
    api = PaperVenueApi(PaperConfig(slippage_bps=0.0, fee_rate=0.0))
    inst = await api.get_instrument("BTC")
    await api.prepare("BTC", position_mode="dual")
    api.quote("BTC", 100.0)

    assert (await api.place_order(inst, _order("buy", 1.0, leg="long"))).ok
    assert (await api.place_order(inst, _order("sell", 2.0, leg="short"))).ok

    rows = {p.leg: p.size for p in await api.get_positions(inst)}
    assert rows == {"long": 1.0, "short": 2.0}

    too_much = await api.place_order(inst, _order("sell", 5.0, reduce_only=True, leg="long"))
    assert too_much.error_code == "REDUCE_EXCEEDS_POSITION"

    grow = await api.place_order(inst, _order("sell", 1.0, reduce_only=True, leg="short"))
    assert grow.error_code == "REDUCE_ONLY_REJECTED"

    assert (await api.place_order(inst, _order("buy", 2.0, reduce_only=True, leg="short"))).ok
    rows = {p.leg: p.size for p in await api.get_positions(inst)}
    assert rows == {"long": 1.0}


@pytest.mark.anyio
async def test_protective_orders_record_triggers() -> None:
    api = PaperVenueApi()
    inst = await api.get_instrument("BTC")
    req = ProtectiveOrderRequest(symbol="BTC", side="sell", contracts=1.0, quantity=1.0, take_profit=120.0)

    acks = await api.place_protective_order(inst, req)
    assert [a.kind for a in acks] == ["take_profit"]
    assert api.triggers[0].trigger_price == 120.0
