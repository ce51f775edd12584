"""relay.execution.venue

The venue executor: one decision → reconciled orders on one venue.

Flow per decision:
1) resolve the instrument and prepare the symbol (position mode, margin type)
2) snapshot balance, positions and mark price
3) plan (pure, see ``relay.execution.reconcile``)
4) set leverage on the leg(s) that open exposure
5) dispatch the planned orders in order; stop on the first rejection
6) place protective take-profit / stop-loss orders when exposure was opened

Every outcome is an ``ExecutionReport``. Nothing escapes.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from relay.core.config import ExecutionConfig
from relay.core.exceptions import RelayError
from relay.core.models import Decision, Side
from relay.execution.base import (
    ExecutionReport,
    Instrument,
    OrderRequest,
    ProtectiveOrderRequest,
    VenueApi,
)
from relay.execution.reconcile import (
    OrderPlan,
    PositionSnapshot,
    Target,
    plan_orders,
    protective_contracts,
)

logger = logging.getLogger(__name__)


def exit_plan_of(decision: Decision) -> dict[str, Any]:
    raw = decision.raw if isinstance(decision.raw, dict) else {}
    position = raw.get("position")
    if isinstance(position, dict) and isinstance(position.get("exit_plan"), dict):
        return dict(position["exit_plan"])
    return {}


def _positive(value: Any) -> float | None:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    return v if v > 0 else None


class VenueExecutor:
    """Executes decisions against a :class:`VenueApi`."""

    def __init__(self, api: VenueApi, config: ExecutionConfig) -> None:
        self.api = api
        self.config = config
        self.name = api.name

    async def aclose(self) -> None:
        await self.api.aclose()

    def resolve_leverage(self, decision: Decision, snapshot: PositionSnapshot) -> float:
        for candidate in (self.config.default_leverage, decision.signal.leverage, snapshot.leverage):
            if candidate is not None and candidate > 0:
                return float(candidate)
        return 1.0

    async def execute(self, decision: Decision) -> ExecutionReport:
        placed: list[str] = []
        try:
            return await self._execute(decision, placed)
        except (RelayError, httpx.HTTPError) as e:
            logger.warning(
                "execution_failed",
                extra={"decision_id": decision.id, "venue": self.name, "error": str(e)},
            )
            return ExecutionReport(
                decision_id=decision.id,
                success=False,
                message=f"Execution failed: {e}",
                order_ids=tuple(placed),
            )

    async def _execute(self, decision: Decision, placed: list[str]) -> ExecutionReport:
        sig = decision.signal
        mode = self.config.position_mode

        instrument = await self.api.get_instrument(sig.symbol)
        await self.api.prepare(sig.symbol, position_mode=mode)

        balance = await self.api.get_balance(instrument)
        positions = await self.api.get_positions(instrument)
        price = await self.api.get_mark_price(instrument)
        snapshot = PositionSnapshot.from_venue(positions)

        target = Target(side=sig.side, quantity=sig.quantity, leverage=self.resolve_leverage(decision, snapshot))
        plan = plan_orders(
            target,
            snapshot,
            instrument,
            price=price,
            available_margin=balance.available,
            position_mode=mode,
            force_reduce_only=self.config.force_reduce_only,
        )

        logger.info(
            "execution_planned",
            extra={
                "decision_id": decision.id,
                "venue": self.name,
                "symbol": instrument.venue_symbol,
                "status": plan.status,
                "orders": len(plan.orders),
                "price": price,
                "available": balance.available,
                "net": snapshot.net_exposure,
            },
        )
        for w in plan.warnings:
            logger.warning("execution_plan_warning", extra={"decision_id": decision.id, "warning": w})

        if plan.status == "rejected":
            return ExecutionReport(decision_id=decision.id, success=False, message=plan.reason)
        if plan.status == "aligned":
            return ExecutionReport(decision_id=decision.id, success=True, message=plan.reason)

        await self._apply_leverage(instrument, plan, target.leverage)

        for planned in plan.orders:
            ack = await self.api.place_order(
                instrument,
                OrderRequest(
                    symbol=instrument.venue_symbol,
                    side=planned.side,
                    contracts=planned.contracts,
                    quantity=planned.quantity,
                    reduce_only=planned.reduce_only,
                    leg=planned.leg,
                ),
            )
            order_id = ack.order_id
            if not ack.ok or order_id is None:
                message = f"Order rejected by {self.name}: {ack.error_code} {ack.error_message or ''}".strip()
                if placed:
                    message += f" (already placed: {', '.join(placed)})"
                return ExecutionReport(
                    decision_id=decision.id,
                    success=False,
                    message=message,
                    order_ids=tuple(placed),
                )
            placed.append(order_id)

        protective = await self._place_protective(decision, instrument, target, plan)

        parts = [f"orders={','.join(placed)}"]
        if protective:
            parts.append(f"protective={','.join(protective)}")
        return ExecutionReport(
            decision_id=decision.id,
            success=True,
            message=f"Order placed ({'; '.join(parts)})",
            order_ids=tuple(placed),
            protective_order_ids=tuple(protective),
        )

    async def _apply_leverage(self, instrument: Instrument, plan: OrderPlan, leverage: float) -> None:
        legs = {o.leg for o in plan.orders if o.opens}
        for leg in sorted(legs, key=lambda v: v or ""):
            await self.api.set_leverage(instrument, leverage, leg=leg)

    async def _place_protective(
        self,
        decision: Decision,
        instrument: Instrument,
        target: Target,
        plan: OrderPlan,
    ) -> list[str]:
        if not self.config.protective_orders or not plan.opens_exposure:
            return []

        exit_plan = exit_plan_of(decision)
        take_profit = _positive(exit_plan.get("profit_target"))
        stop_loss = _positive(exit_plan.get("stop_loss"))
        if take_profit is None and stop_loss is None:
            return []

        contracts = protective_contracts(target, instrument)
        if contracts <= 0:
            return []

        opened_leg = next((o.leg for o in plan.orders if o.opens), None)
        request = ProtectiveOrderRequest(
            symbol=instrument.venue_symbol,
            side="sell" if target.side == Side.LONG else "buy",
            contracts=contracts,
            quantity=contracts * instrument.contract_size,
            take_profit=take_profit,
            stop_loss=stop_loss,
            leg=opened_leg,
        )

        try:
            acks = await self.api.place_protective_order(instrument, request)
        except (RelayError, httpx.HTTPError) as e:
            logger.warning("protective_order_failed", extra={"decision_id": decision.id, "error": str(e)})
            return []

        ids: list[str] = []
        for ack in acks:
            if ack.ok and ack.order_id:
                ids.append(ack.order_id)
            else:
                logger.warning(
                    "protective_order_rejected",
                    extra={
                        "decision_id": decision.id,
                        "kind": ack.kind,
                        "code": ack.error_code,
                        "error": ack.error_message,
                    },
                )
        return ids
