"""relay.execution.binance

Binance USDⓈ-M futures REST adapter.

Signed endpoints carry ``timestamp`` + ``recvWindow`` and an HMAC-SHA256 hex
``signature`` over the url-encoded parameter string. GET sends it as the query,
POST as a form body. Venue rejections (HTTP 4xx with ``{"code", "msg"}``) on order
placement come back as :class:`OrderAck` errors; on any other call they raise
:class:`VenueError`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from relay.core.client import ClientConfig, HttpClient
from relay.core.config import BinanceConfig
from relay.core.exceptions import InstrumentNotFoundError, VenueError
from relay.core.time import epoch_ms, utc_now
from relay.execution.base import (
    Balance,
    Instrument,
    Leg,
    OrderAck,
    OrderRequest,
    PositionMode,
    ProtectiveOrderRequest,
    VenuePosition,
)

logger = logging.getLogger(__name__)

# "No need to change margin type" / "No need to change position side"
_NO_CHANGE_CODES = {-4046, -4059}


def binance_symbol(symbol: str) -> str:
    upper = str(symbol).upper().strip()
    return upper if upper.endswith("USDT") else f"{upper}USDT"


def format_number(value: float) -> str:
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


def format_price(price: float, tick_size: float | None) -> str:
    if tick_size and tick_size > 0:
        steps = round(price / tick_size)
        return format_number(steps * tick_size)
    return f"{price:.2f}"


def _error_body(exc: httpx.HTTPStatusError) -> tuple[str, str]:
    try:
        body = exc.response.json()
    except ValueError:
        return str(exc.response.status_code), exc.response.text
    if isinstance(body, dict):
        return str(body.get("code", exc.response.status_code)), str(body.get("msg", ""))
    return str(exc.response.status_code), exc.response.text


class BinanceVenueApi:
    name = "binance"

    def __init__(
        self,
        config: BinanceConfig,
        *,
        client: HttpClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cfg = config
        self.base_url = config.resolved_base_url().rstrip("/")
        self._client = client or HttpClient(ClientConfig(rate_limit_rps=10.0, max_retries=0))
        self._clock = clock
        self._instruments: dict[str, Instrument] = {}
        self._prepared: set[str] = set()
        self._position_mode: PositionMode | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    # --- transport ---------------------------------------------------------

    def sign(self, query: str) -> str:
        return hmac.new(self.cfg.api_secret.encode(), query.encode(), hashlib.sha256).hexdigest()

    def _signed_payload(self, params: dict[str, Any]) -> str:
        payload = {k: str(v) for k, v in params.items() if v is not None}
        payload["recvWindow"] = str(self.cfg.recv_window_ms)
        payload["timestamp"] = str(epoch_ms(self._clock()))
        query = urlencode(payload)
        return f"{query}&signature={self.sign(query)}"

    async def _public(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            return await self._client.request_json("GET", f"{self.base_url}{path}", params=params)
        except httpx.HTTPStatusError as e:
            code, msg = _error_body(e)
            raise VenueError(f"Binance API error ({code}): {msg}") from e

    async def _signed_raw(self, method: str, path: str, params: dict[str, Any]) -> Any:
        payload = self._signed_payload(params)
        headers = {"X-MBX-APIKEY": self.cfg.api_key}
        if method == "GET":
            return await self._client.request_json(method, f"{self.base_url}{path}?{payload}", headers=headers)
        headers["Content-Type"] = "application/x-www-form-urlencoded"
        return await self._client.request_json(method, f"{self.base_url}{path}", content=payload, headers=headers)

    async def _signed(self, method: str, path: str, params: dict[str, Any]) -> Any:
        try:
            return await self._signed_raw(method, path, params)
        except httpx.HTTPStatusError as e:
            code, msg = _error_body(e)
            raise VenueError(f"Binance API error ({code}): {msg}") from e

    async def _signed_tolerant(self, method: str, path: str, params: dict[str, Any]) -> None:
        try:
            await self._signed_raw(method, path, params)
        except httpx.HTTPStatusError as e:
            code, msg = _error_body(e)
            if code.lstrip("-").isdigit() and int(code) in _NO_CHANGE_CODES:
                return
            raise VenueError(f"Binance API error ({code}): {msg}") from e

    # --- VenueApi ------------------------------------------------------------

    async def prepare(self, symbol: str, *, position_mode: PositionMode) -> None:
        if self._position_mode != position_mode:
            dual = "true" if position_mode == "dual" else "false"
            await self._signed_tolerant("POST", "/fapi/v1/positionSide/dual", {"dualSidePosition": dual})
            self._position_mode = position_mode

        venue_symbol = binance_symbol(symbol)
        if venue_symbol in self._prepared:
            return
        await self._signed_tolerant(
            "POST", "/fapi/v1/marginType", {"symbol": venue_symbol, "marginType": self.cfg.margin_type}
        )
        self._prepared.add(venue_symbol)

    async def get_instrument(self, symbol: str) -> Instrument:
        venue_symbol = binance_symbol(symbol)
        cached = self._instruments.get(venue_symbol)
        if cached is not None:
            return cached

        data = await self._public("/fapi/v1/exchangeInfo")
        info = next((s for s in (data or {}).get("symbols", []) if s.get("symbol") == venue_symbol), None)
        if info is None:
            raise InstrumentNotFoundError(f"Symbol {venue_symbol} not found in Binance exchange info")

        filters = {f.get("filterType"): f for f in info.get("filters", [])}
        lot = filters.get("MARKET_LOT_SIZE") or filters.get("LOT_SIZE") or {}
        price_filter = filters.get("PRICE_FILTER") or {}
        step = float(lot.get("stepSize") or 0.001)
        instrument = Instrument(
            symbol=symbol,
            venue_symbol=venue_symbol,
            contract_size=1.0,
            lot_size=step,
            min_size=float(lot.get("minQty") or 0.0),
            tick_size=float(price_filter.get("tickSize") or 0.01),
        )
        self._instruments[venue_symbol] = instrument
        return instrument

    async def get_balance(self, instrument: Instrument) -> Balance:
        data = await self._signed("GET", "/fapi/v2/account", {})
        return Balance(
            available=float(data.get("availableBalance") or 0.0),
            equity=float(data.get("totalWalletBalance") or 0.0),
        )

    async def get_positions(self, instrument: Instrument) -> list[VenuePosition]:
        rows = await self._signed("GET", "/fapi/v2/positionRisk", {"symbol": instrument.venue_symbol})
        out: list[VenuePosition] = []
        for row in rows if isinstance(rows, list) else []:
            if row.get("symbol") != instrument.venue_symbol:
                continue
            amt = float(row.get("positionAmt") or 0.0)
            if amt == 0:
                continue
            side = str(row.get("positionSide") or "BOTH").upper()
            leg = {"LONG": "long", "SHORT": "short"}.get(side, "net")
            out.append(
                VenuePosition(
                    leg=leg,  # type: ignore[arg-type]
                    size=amt if leg == "net" else abs(amt),
                    avg_price=float(row.get("entryPrice") or 0.0) or None,
                    leverage=float(row.get("leverage") or 0.0) or None,
                )
            )
        return out

    async def get_mark_price(self, instrument: Instrument) -> float:
        data = await self._public("/fapi/v1/ticker/price", {"symbol": instrument.venue_symbol})
        price = float((data or {}).get("price") or 0.0)
        if price <= 0:
            raise VenueError(f"Failed to fetch ticker price for {instrument.venue_symbol}")
        return price

    async def set_leverage(self, instrument: Instrument, leverage: float, *, leg: Leg | None = None) -> None:
        await self._signed(
            "POST",
            "/fapi/v1/leverage",
            {"symbol": instrument.venue_symbol, "leverage": max(int(round(leverage)), 1)},
        )

    def _order_params(self, instrument: Instrument, side: str, quantity: float, leg: Leg | None) -> dict[str, Any]:
        params: dict[str, Any] = {
            "symbol": instrument.venue_symbol,
            "side": side.upper(),
            "quantity": format_number(quantity),
        }
        if leg is not None:
            params["positionSide"] = leg.upper()
        return params

    async def _submit(self, params: dict[str, Any], *, kind: str) -> OrderAck:
        try:
            data = await self._signed_raw("POST", "/fapi/v1/order", params)
        except httpx.HTTPStatusError as e:
            code, msg = _error_body(e)
            return OrderAck(None, error_code=code, error_message=msg, kind=kind)
        order_id = (data or {}).get("orderId")
        if order_id is None:
            return OrderAck(None, error_code="NO_ORDER_ID", error_message=str(data), kind=kind)
        return OrderAck(str(order_id), kind=kind)

    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck:
        params = self._order_params(instrument, order.side, order.quantity, order.leg)
        params["type"] = "MARKET"
        params["newOrderRespType"] = "RESULT"
        # hedge mode rejects reduceOnly; the position side already says which leg closes
        if order.reduce_only and order.leg is None:
            params["reduceOnly"] = "true"
        logger.info("binance_order", extra={k: params[k] for k in ("symbol", "side", "quantity")})
        return await self._submit(params, kind="order")

    async def place_protective_order(
        self, instrument: Instrument, order: ProtectiveOrderRequest
    ) -> list[OrderAck]:
        acks: list[OrderAck] = []
        for kind, order_type, price in (
            ("take_profit", "TAKE_PROFIT_MARKET", order.take_profit),
            ("stop_loss", "STOP_MARKET", order.stop_loss),
        ):
            if price is None:
                continue
            params = self._order_params(instrument, order.side, order.quantity, order.leg)
            params["type"] = order_type
            params["stopPrice"] = format_price(price, instrument.tick_size)
            params["workingType"] = "MARK_PRICE"
            if order.leg is None:
                params["reduceOnly"] = "true"
            acks.append(await self._submit(params, kind=kind))
        return acks
