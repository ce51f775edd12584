"""relay.execution.reconcile

Position reconciliation and order sizing.

Given what the venue holds and what the signal wants, compute the smallest set of
orders that moves one to the other. Pure: no IO, no clock, no exceptions for sizing
problems. A plan is ``ready`` (send these orders), ``aligned`` (nothing to send) or
``rejected`` (with a reason).

Net mode (one signed position per symbol):
1) target = +qty (LONG) / -qty (SHORT); delta = target - current
2) |delta| below epsilon → aligned
3) side = sign(delta); same-side decreases are reduce-only; force-reduce rejects any
   exposure increase
4) reduce-only sizes round down to the lot and are skipped under the instrument minimum;
   opening sizes round up to the lot and the instrument minimum
5) non-crossing increases must fit the incremental margin into available balance

Dual mode (independent long/short legs):
- an opposing leg is closed first, reduce-only, sized min(opposing leg, requested qty)
- the same leg is then reconciled toward what remains of the requested qty
- opening legs draw down a running margin reservation; reductions that round to
  nothing are skipped with a warning, openings that cannot be sized reject the plan
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from relay.core.models import Side
from relay.execution.base import Instrument, Leg, OrderSide, PositionMode, VenuePosition

EPSILON = 1e-9
_STEP_EPS = 1e-9

PlanStatus = Literal["ready", "aligned", "rejected"]


@dataclass(frozen=True, slots=True)
class Target:
    side: Side
    quantity: float
    leverage: float = 1.0

    @property
    def signed_quantity(self) -> float:
        q = abs(float(self.quantity))
        return q if self.side == Side.LONG else -q


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """Venue exposure for one symbol, in base units.

    ``net`` comes from one-way accounts, ``long``/``short`` from hedge accounts. Either
    view can be derived from the other.
    """

    net: float = 0.0
    long: float = 0.0
    short: float = 0.0
    leverage: float | None = None

    @classmethod
    def from_venue(cls, positions: Iterable[VenuePosition]) -> PositionSnapshot:
        net = long = short = 0.0
        lev: float | None = None
        for p in positions:
            size = float(p.size)
            if p.leg == "net":
                net += size
            elif p.leg == "long":
                long += abs(size)
            else:
                short += abs(size)
            if lev is None and p.leverage and abs(size) > EPSILON:
                lev = float(p.leverage)
        return cls(net=net, long=long, short=short, leverage=lev)

    @property
    def net_exposure(self) -> float:
        return self.net + self.long - self.short

    @property
    def long_leg(self) -> float:
        return self.long + max(self.net, 0.0)

    @property
    def short_leg(self) -> float:
        return self.short + max(-self.net, 0.0)


@dataclass(frozen=True, slots=True)
class PlannedOrder:
    side: OrderSide
    contracts: float
    quantity: float
    reduce_only: bool
    leg: Leg | None = None
    opens: bool = False
    margin: float = 0.0


@dataclass(frozen=True, slots=True)
class OrderPlan:
    status: PlanStatus
    orders: tuple[PlannedOrder, ...] = ()
    reason: str | None = None
    warnings: tuple[str, ...] = ()
    margin_required: float = 0.0
    remaining_margin: float = 0.0

    @property
    def opens_exposure(self) -> bool:
        return any(o.opens for o in self.orders)

    @property
    def rejected(self) -> bool:
        return self.status == "rejected"


def _clean(v: float) -> float:
    return round(v, 10)


def round_down_contracts(contracts: float, lot_size: float) -> float:
    if contracts <= 0:
        return 0.0
    if lot_size <= 0:
        return _clean(contracts)
    steps = math.floor(contracts / lot_size + _STEP_EPS)
    return _clean(max(steps, 0) * lot_size)


def round_up_contracts(contracts: float, lot_size: float, min_size: float = 0.0) -> float:
    if contracts <= 0:
        return 0.0
    if lot_size <= 0:
        sized = contracts
    else:
        steps = math.ceil(contracts / lot_size - _STEP_EPS)
        sized = steps * lot_size
    return _clean(max(sized, float(min_size)))


def _reduce_contracts(contracts: float, instrument: Instrument) -> float:
    """Reduce-only size: floor to the lot; anything under the venue minimum is zero."""

    sized = round_down_contracts(contracts, instrument.lot_size)
    if sized < float(instrument.min_size) - EPSILON:
        return 0.0
    return sized


def _opposite(side: OrderSide) -> OrderSide:
    return "sell" if side == "buy" else "buy"


def _rejected(reason: str, *, available: float, warnings: list[str] | None = None) -> OrderPlan:
    return OrderPlan(
        status="rejected",
        reason=reason,
        warnings=tuple(warnings or ()),
        remaining_margin=available,
    )


def _aligned(reason: str, *, available: float, warnings: list[str] | None = None) -> OrderPlan:
    return OrderPlan(
        status="aligned",
        reason=reason,
        warnings=tuple(warnings or ()),
        remaining_margin=available,
    )


def plan_orders(
    target: Target,
    snapshot: PositionSnapshot,
    instrument: Instrument,
    *,
    price: float,
    available_margin: float,
    position_mode: PositionMode = "net",
    force_reduce_only: bool = False,
) -> OrderPlan:
    available = float(available_margin)
    if price <= 0 or not math.isfinite(price):
        return _rejected(f"Invalid market price {price}", available=available)
    if instrument.contract_size <= 0:
        return _rejected(f"Invalid contract size for {instrument.venue_symbol}", available=available)
    if target.quantity < 0:
        return _rejected("Target quantity must be non-negative", available=available)

    if position_mode == "dual":
        return _plan_dual(
            target, snapshot, instrument, price=price, available=available, force_reduce_only=force_reduce_only
        )
    return _plan_net(
        target, snapshot, instrument, price=price, available=available, force_reduce_only=force_reduce_only
    )


def _leverage(target: Target) -> float:
    lev = float(target.leverage)
    return lev if lev > 0 else 1.0


def _plan_net(
    target: Target,
    snapshot: PositionSnapshot,
    instrument: Instrument,
    *,
    price: float,
    available: float,
    force_reduce_only: bool,
) -> OrderPlan:
    current = snapshot.net_exposure
    wanted = target.signed_quantity
    delta = wanted - current

    if abs(delta) <= EPSILON:
        return _aligned("Position already aligned", available=available)

    side: OrderSide = "buy" if delta > 0 else "sell"
    crossing = abs(current) > EPSILON and abs(wanted) > EPSILON and (current > 0) != (wanted > 0)
    increases = crossing or abs(wanted) > abs(current) + EPSILON

    if increases and force_reduce_only:
        return _rejected(
            f"Force reduce-only is set; refusing to increase exposure ({current:+g} -> {wanted:+g})",
            available=available,
        )

    cs = float(instrument.contract_size)
    raw_contracts = abs(delta) / cs

    if not increases:
        contracts = _reduce_contracts(raw_contracts, instrument)
        if contracts <= EPSILON:
            return _aligned(
                "Reduction below tradeable size; nothing sent",
                available=available,
                warnings=[f"reduce {abs(delta):g} is below the tradeable size of {instrument.venue_symbol}; skipped"],
            )
        order = PlannedOrder(side=side, contracts=contracts, quantity=_clean(contracts * cs), reduce_only=True)
        return OrderPlan(status="ready", orders=(order,), remaining_margin=available)

    contracts = round_up_contracts(raw_contracts, instrument.lot_size, instrument.min_size)
    if contracts <= EPSILON:
        return _rejected(f"Order size {abs(delta):g} is below instrument minimum", available=available)

    quantity = _clean(contracts * cs)
    margin = 0.0
    if not crossing:
        margin = quantity * price / _leverage(target)
        if margin > available + EPSILON:
            return _rejected(
                f"Insufficient margin: required {margin:.2f}, available {available:.2f}",
                available=available,
            )

    order = PlannedOrder(
        side=side,
        contracts=contracts,
        quantity=quantity,
        reduce_only=False,
        opens=True,
        margin=margin,
    )
    return OrderPlan(
        status="ready",
        orders=(order,),
        margin_required=margin,
        remaining_margin=available - margin,
    )


def _plan_dual(
    target: Target,
    snapshot: PositionSnapshot,
    instrument: Instrument,
    *,
    price: float,
    available: float,
    force_reduce_only: bool,
) -> OrderPlan:
    if target.side == Side.LONG:
        same_leg: Leg = "long"
        opp_leg: Leg = "short"
        same, opposing = snapshot.long_leg, snapshot.short_leg
    else:
        same_leg, opp_leg = "short", "long"
        same, opposing = snapshot.short_leg, snapshot.long_leg

    open_side: OrderSide = "buy" if same_leg == "long" else "sell"
    close_opp_side: OrderSide = open_side
    reduce_same_side: OrderSide = _opposite(open_side)

    cs = float(instrument.contract_size)
    requested = abs(float(target.quantity))
    orders: list[PlannedOrder] = []
    warnings: list[str] = []
    remaining_margin = available
    required = 0.0

    closed = min(opposing, requested) if opposing > EPSILON else 0.0
    if closed > EPSILON:
        contracts = _reduce_contracts(closed / cs, instrument)
        if contracts <= EPSILON:
            warnings.append(f"closing {closed:g} on {opp_leg} leg is below the tradeable size; skipped")
        else:
            orders.append(
                PlannedOrder(
                    side=close_opp_side,
                    contracts=contracts,
                    quantity=_clean(contracts * cs),
                    reduce_only=True,
                    leg=opp_leg,
                )
            )

    leg_delta = (requested - closed) - same

    if leg_delta > EPSILON:
        if force_reduce_only:
            return _rejected(
                f"Force reduce-only is set; refusing to open {leg_delta:g} on {same_leg} leg",
                available=available,
                warnings=warnings,
            )
        contracts = round_up_contracts(leg_delta / cs, instrument.lot_size, instrument.min_size)
        if contracts <= EPSILON:
            return _rejected(
                f"Order size {leg_delta:g} on {same_leg} leg is below instrument minimum",
                available=available,
                warnings=warnings,
            )
        quantity = _clean(contracts * cs)
        margin = quantity * price / _leverage(target)
        if margin > remaining_margin + EPSILON:
            return _rejected(
                f"Insufficient margin for {same_leg} leg: required {margin:.2f}, available {remaining_margin:.2f}",
                available=available,
                warnings=warnings,
            )
        remaining_margin -= margin
        required += margin
        orders.append(
            PlannedOrder(
                side=open_side,
                contracts=contracts,
                quantity=quantity,
                reduce_only=False,
                leg=same_leg,
                opens=True,
                margin=margin,
            )
        )
    elif leg_delta < -EPSILON:
        contracts = _reduce_contracts(-leg_delta / cs, instrument)
        if contracts <= EPSILON:
            warnings.append(f"reducing {-leg_delta:g} on {same_leg} leg is below the tradeable size; skipped")
        else:
            orders.append(
                PlannedOrder(
                    side=reduce_same_side,
                    contracts=contracts,
                    quantity=_clean(contracts * cs),
                    reduce_only=True,
                    leg=same_leg,
                )
            )

    if not orders:
        reason = "Position already aligned" if not warnings else "Reduction below tradeable size; nothing sent"
        return _aligned(reason, available=available, warnings=warnings)

    return OrderPlan(
        status="ready",
        orders=tuple(orders),
        warnings=tuple(warnings),
        margin_required=required,
        remaining_margin=remaining_margin,
    )


def protective_contracts(target: Target, instrument: Instrument) -> float:
    """Size of the take-profit/stop-loss order: the full target exposure."""

    cs = float(instrument.contract_size)
    if cs <= 0:
        return 0.0
    return round_up_contracts(abs(float(target.quantity)) / cs, instrument.lot_size, instrument.min_size)
