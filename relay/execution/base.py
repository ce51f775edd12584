"""relay.execution.base

The executor contract and the venue boundary.

Executors take a Decision and always return an ExecutionReport. Venue adapters
(``VenueApi``) are thin: they translate to one venue's REST dialect and back. Venue
*business* errors (rejected order, insufficient margin on the venue side) come back as
``OrderAck`` values; only transport/protocol failures raise.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Protocol, runtime_checkable

from relay.core.models import Decision

OrderSide = Literal["buy", "sell"]
Leg = Literal["long", "short"]
PositionMode = Literal["net", "dual"]


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    decision_id: str
    success: bool
    message: str | None = None
    order_ids: tuple[str, ...] = ()
    protective_order_ids: tuple[str, ...] = ()


@runtime_checkable
class Executor(Protocol):
    name: str

    async def execute(self, decision: Decision) -> ExecutionReport: ...


@dataclass(frozen=True, slots=True)
class Instrument:
    """Venue sizing rules.

    ``contract_size`` converts contracts to base units; ``lot_size`` and ``min_size``
    are in contracts.
    """

    symbol: str
    venue_symbol: str
    contract_size: float = 1.0
    lot_size: float = 1.0
    min_size: float = 0.0
    tick_size: float | None = None


@dataclass(frozen=True, slots=True)
class Balance:
    available: float
    equity: float
    currency: str = "USDT"


@dataclass(frozen=True, slots=True)
class VenuePosition:
    """One venue position row, in base units.

    ``leg="net"``: ``size`` is signed. ``leg="long"|"short"``: ``size`` is a magnitude.
    """

    leg: Literal["net", "long", "short"]
    size: float
    avg_price: float | None = None
    leverage: float | None = None


@dataclass(frozen=True, slots=True)
class OrderRequest:
    symbol: str
    side: OrderSide
    contracts: float
    quantity: float
    reduce_only: bool
    leg: Leg | None = None


@dataclass(frozen=True, slots=True)
class ProtectiveOrderRequest:
    symbol: str
    side: OrderSide
    contracts: float
    quantity: float
    take_profit: float | None = None
    stop_loss: float | None = None
    leg: Leg | None = None


@dataclass(frozen=True, slots=True)
class OrderAck:
    order_id: str | None
    error_code: str | None = None
    error_message: str | None = None
    kind: str = "order"

    @property
    def ok(self) -> bool:
        return self.error_code is None and bool(self.order_id)


class VenueApi(Protocol):
    name: str

    async def prepare(self, symbol: str, *, position_mode: PositionMode) -> None: ...

    async def get_instrument(self, symbol: str) -> Instrument: ...

    async def get_balance(self, instrument: Instrument) -> Balance: ...

    async def get_positions(self, instrument: Instrument) -> list[VenuePosition]: ...

    async def get_mark_price(self, instrument: Instrument) -> float: ...

    async def set_leverage(self, instrument: Instrument, leverage: float, *, leg: Leg | None = None) -> None: ...

    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck: ...

    async def place_protective_order(
        self, instrument: Instrument, order: ProtectiveOrderRequest
    ) -> list[OrderAck]: ...

    async def aclose(self) -> None: ...
