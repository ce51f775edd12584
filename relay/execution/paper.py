"""relay.execution.paper

Paper venue: an in-memory perpetual-futures account.

Fills immediately at the quoted price with configurable slippage and fee. Tracks
cash, reserved margin and positions per symbol in either net or dual (hedge) mode,
and enforces the venue-side rules a real exchange would: reduce-only orders may not
grow a position, and openings need margin.

The ``simulator`` executor quotes each decision's current price into this venue and
then runs the normal venue flow against it.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field

from relay.core.config import ExecutionConfig, PaperConfig
from relay.core.exceptions import VenueError
from relay.core.models import Decision
from relay.execution.base import (
    Balance,
    ExecutionReport,
    Instrument,
    Leg,
    OrderAck,
    OrderRequest,
    PositionMode,
    ProtectiveOrderRequest,
    VenuePosition,
)
from relay.execution.venue import VenueExecutor

_EPS = 1e-12


@dataclass(slots=True)
class _Lot:
    size: float = 0.0
    avg_price: float = 0.0
    margin: float = 0.0
    leverage: float = 1.0


@dataclass(slots=True)
class _Book:
    net: _Lot = field(default_factory=_Lot)
    long: _Lot = field(default_factory=_Lot)
    short: _Lot = field(default_factory=_Lot)


@dataclass(frozen=True, slots=True)
class PaperFill:
    order_id: str
    symbol: str
    side: str
    fill_price: float
    fill_size: float
    fee: float
    realized_pnl: float
    reduce_only: bool
    leg: str | None = None


@dataclass(frozen=True, slots=True)
class PaperTrigger:
    order_id: str
    symbol: str
    side: str
    size: float
    kind: str
    trigger_price: float
    leg: str | None = None


class PaperVenueApi:
    """In-memory :class:`relay.execution.base.VenueApi` implementation."""

    name = "paper"

    def __init__(self, config: PaperConfig | None = None) -> None:
        self.cfg = config or PaperConfig()
        self.cash = float(self.cfg.start_balance)
        self.position_mode: PositionMode = "net"
        self.fills: list[PaperFill] = []
        self.triggers: list[PaperTrigger] = []
        self._books: dict[str, _Book] = {}
        self._quotes: dict[str, float] = {}
        self._leverage: dict[tuple[str, str], float] = {}

    # --- quoting -----------------------------------------------------------

    def quote(self, symbol: str, price: float) -> None:
        if price <= 0:
            raise VenueError(f"paper quote for {symbol} must be > 0")
        self._quotes[self._venue_symbol(symbol)] = float(price)

    @staticmethod
    def _venue_symbol(symbol: str) -> str:
        return str(symbol).upper().strip()

    def _book(self, venue_symbol: str) -> _Book:
        return self._books.setdefault(venue_symbol, _Book())

    @property
    def reserved_margin(self) -> float:
        total = 0.0
        for book in self._books.values():
            total += book.net.margin + book.long.margin + book.short.margin
        return total

    # --- VenueApi ------------------------------------------------------------

    async def prepare(self, symbol: str, *, position_mode: PositionMode) -> None:
        self.position_mode = position_mode

    async def get_instrument(self, symbol: str) -> Instrument:
        return Instrument(
            symbol=symbol,
            venue_symbol=self._venue_symbol(symbol),
            contract_size=float(self.cfg.contract_size),
            lot_size=float(self.cfg.lot_size),
            min_size=float(self.cfg.min_size),
        )

    async def get_balance(self, instrument: Instrument) -> Balance:
        return Balance(available=self.cash, equity=self.cash + self.reserved_margin)

    async def get_positions(self, instrument: Instrument) -> list[VenuePosition]:
        book = self._books.get(instrument.venue_symbol)
        if book is None:
            return []
        rows: list[VenuePosition] = []
        if abs(book.net.size) > _EPS:
            rows.append(VenuePosition("net", book.net.size, book.net.avg_price, book.net.leverage))
        if book.long.size > _EPS:
            rows.append(VenuePosition("long", book.long.size, book.long.avg_price, book.long.leverage))
        if book.short.size > _EPS:
            rows.append(VenuePosition("short", book.short.size, book.short.avg_price, book.short.leverage))
        return rows

    async def get_mark_price(self, instrument: Instrument) -> float:
        price = self._quotes.get(instrument.venue_symbol)
        if price is None:
            raise VenueError(f"no paper quote for {instrument.venue_symbol}")
        return price

    async def set_leverage(self, instrument: Instrument, leverage: float, *, leg: Leg | None = None) -> None:
        if leverage <= 0:
            raise VenueError("leverage must be > 0")
        self._leverage[(instrument.venue_symbol, leg or "net")] = float(leverage)

    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck:
        if order.quantity <= 0:
            return OrderAck(None, "INVALID_SIZE", "order size must be > 0")
        if order.side not in {"buy", "sell"}:
            return OrderAck(None, "INVALID_SIDE", f"unknown side {order.side}")

        mid = self._quotes.get(instrument.venue_symbol)
        if mid is None:
            return OrderAck(None, "NO_QUOTE", f"no paper quote for {instrument.venue_symbol}")

        fill_px = self._fill_price(mid=mid, side=order.side)
        fee = order.quantity * fill_px * float(self.cfg.fee_rate)
        book = self._book(instrument.venue_symbol)

        if order.leg is None:
            ack = self._apply_net(instrument, book, order, fill_px, fee)
        else:
            ack = self._apply_leg(instrument, book, order, fill_px, fee)
        return ack

    async def place_protective_order(
        self, instrument: Instrument, order: ProtectiveOrderRequest
    ) -> list[OrderAck]:
        acks: list[OrderAck] = []
        for kind, price in (("take_profit", order.take_profit), ("stop_loss", order.stop_loss)):
            if price is None:
                continue
            trigger = PaperTrigger(
                order_id=str(uuid.uuid4()),
                symbol=instrument.venue_symbol,
                side=order.side,
                size=order.quantity,
                kind=kind,
                trigger_price=float(price),
                leg=order.leg,
            )
            self.triggers.append(trigger)
            acks.append(OrderAck(trigger.order_id, kind=kind))
        return acks

    async def aclose(self) -> None:
        return None

    # --- fills -----------------------------------------------------------------

    def _fill_price(self, *, mid: float, side: str) -> float:
        slip = float(self.cfg.slippage_bps) / 10_000.0
        if side == "buy":
            return float(mid) * (1.0 + slip)
        return float(mid) * (1.0 - slip)

    def _leverage_for(self, venue_symbol: str, leg: str) -> float:
        return self._leverage.get((venue_symbol, leg), 1.0)

    def _record(self, instrument: Instrument, order: OrderRequest, px: float, fee: float, pnl: float) -> OrderAck:
        fill = PaperFill(
            order_id=str(uuid.uuid4()),
            symbol=instrument.venue_symbol,
            side=order.side,
            fill_price=px,
            fill_size=order.quantity,
            fee=fee,
            realized_pnl=pnl,
            reduce_only=order.reduce_only,
            leg=order.leg,
        )
        self.fills.append(fill)
        return OrderAck(fill.order_id)

    def _close(self, lot: _Lot, qty: float, px: float, direction: float) -> float:
        """Close ``qty`` of ``lot``; release its margin pro rata, return realized PnL.

        ``lot.size`` may be signed (net) or a magnitude (legs); ``direction`` is +1 for
        long exposure and -1 for short.
        """

        held = abs(lot.size)
        share = qty / held if held > _EPS else 1.0
        released = lot.margin * share
        pnl = (px - lot.avg_price) * qty * direction
        lot.margin -= released
        lot.size = math.copysign(max(held - qty, 0.0), lot.size)
        if abs(lot.size) <= _EPS:
            lot.size, lot.avg_price, lot.margin = 0.0, 0.0, 0.0
        self.cash += released + pnl
        return pnl

    def _open(self, lot: _Lot, qty: float, px: float, leverage: float, sign: float = 1.0) -> None:
        margin = qty * px / leverage
        held = abs(lot.size)
        new_size = held + qty
        lot.avg_price = (lot.avg_price * held + px * qty) / new_size
        lot.size = math.copysign(new_size, sign)
        lot.margin += margin
        lot.leverage = leverage
        self.cash -= margin

    def _apply_net(self, instrument: Instrument, book: _Book, order: OrderRequest, px: float, fee: float) -> OrderAck:
        lot = book.net
        held = abs(lot.size)
        current_sign = 1.0 if lot.size > 0 else -1.0
        order_sign = 1.0 if order.side == "buy" else -1.0
        closing = min(order.quantity, held) if held > _EPS and order_sign != current_sign else 0.0
        opening = order.quantity - closing

        if order.reduce_only and opening > _EPS:
            return OrderAck(None, "REDUCE_ONLY_REJECTED", "reduce-only order would increase position")

        leverage = self._leverage_for(instrument.venue_symbol, "net")
        if opening > _EPS:
            freed = lot.margin * (closing / held) if closing > _EPS else 0.0
            need = opening * px / leverage + fee
            if need > self.cash + freed + _EPS:
                return OrderAck(None, "INSUFFICIENT_MARGIN", f"required {need:.2f}, available {self.cash:.2f}")

        pnl = 0.0
        if closing > _EPS:
            pnl = self._close(lot, closing, px, current_sign)
        if opening > _EPS:
            self._open(lot, opening, px, leverage, order_sign)
        self.cash -= fee
        return self._record(instrument, order, px, fee, pnl)

    def _apply_leg(self, instrument: Instrument, book: _Book, order: OrderRequest, px: float, fee: float) -> OrderAck:
        leg = order.leg
        lot = book.long if leg == "long" else book.short
        opens = (leg == "long" and order.side == "buy") or (leg == "short" and order.side == "sell")

        if opens:
            if order.reduce_only:
                return OrderAck(None, "REDUCE_ONLY_REJECTED", f"reduce-only order would grow {leg} leg")
            leverage = self._leverage_for(instrument.venue_symbol, str(leg))
            need = order.quantity * px / leverage + fee
            if need > self.cash + _EPS:
                return OrderAck(None, "INSUFFICIENT_MARGIN", f"required {need:.2f}, available {self.cash:.2f}")
            self._open(lot, order.quantity, px, leverage)
            self.cash -= fee
            return self._record(instrument, order, px, fee, 0.0)

        if order.quantity > lot.size + 1e-9:
            msg = f"cannot close {order.quantity} of {lot.size} on {leg} leg"
            return OrderAck(None, "REDUCE_EXCEEDS_POSITION", msg)
        direction = 1.0 if leg == "long" else -1.0
        pnl = self._close(lot, min(order.quantity, lot.size), px, direction)
        self.cash -= fee
        return self._record(instrument, order, px, fee, pnl)


class SimulatorExecutor(VenueExecutor):
    """Runs decisions against a :class:`PaperVenueApi` at the signal's current price."""

    def __init__(self, config: ExecutionConfig, paper: PaperConfig | None = None) -> None:
        self._paper = PaperVenueApi(paper)
        super().__init__(self._paper, config)
        self.name = "simulator"

    @property
    def paper(self) -> PaperVenueApi:
        return self._paper

    async def execute(self, decision: Decision) -> ExecutionReport:
        sig = decision.signal
        if sig.current_price > 0:
            self.paper.quote(sig.symbol, sig.current_price)
        return await super().execute(decision)
