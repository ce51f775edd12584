"""relay.execution.okx

OKX v5 REST adapter (perpetual swaps).

Every private request is signed with base64(HMAC-SHA256(secret, ts + METHOD + path +
body)) in ``OK-ACCESS-*`` headers; ``x-simulated-trading: 1`` routes to demo trading.
Responses are ``{"code": "0", "msg": "", "data": [...]}``; order endpoints report
per-order ``sCode``/``sMsg`` inside ``data``.

Sizes on the wire are contracts. Positions are converted to base units with the
instrument's ``ctVal``.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any
from urllib.parse import urlencode

import httpx

from relay.core.client import ClientConfig, HttpClient
from relay.core.config import OkxConfig
from relay.core.exceptions import InstrumentNotFoundError, VenueError
from relay.core.time import isoformat_z, utc_now
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


def okx_inst_id(symbol: str, suffix: str = "-USDT-SWAP") -> str:
    upper = str(symbol).upper().strip()
    if "-" in upper:
        return upper
    if upper.endswith("USDT"):
        upper = upper[:-4]
    return f"{upper}{suffix.upper()}"


def format_number(value: float) -> str:
    text = f"{value:.8f}".rstrip("0").rstrip(".")
    return text or "0"


class OkxVenueApi:
    name = "okx"

    def __init__(
        self,
        config: OkxConfig,
        *,
        client: HttpClient | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.cfg = config
        self.base_url = config.base_url.rstrip("/")
        self._client = client or HttpClient(ClientConfig(rate_limit_rps=10.0, max_retries=0))
        self._clock = clock
        self._instruments: dict[str, Instrument] = {}
        self._position_mode: PositionMode | None = None

    async def aclose(self) -> None:
        await self._client.aclose()

    def inst_id(self, symbol: str) -> str:
        return self.cfg.inst_id or okx_inst_id(symbol, self.cfg.inst_suffix)

    # --- transport ---------------------------------------------------------

    def sign(self, timestamp: str, method: str, request_path: str, body: str) -> str:
        message = f"{timestamp}{method}{request_path}{body}"
        digest = hmac.new(self.cfg.api_secret.encode(), message.encode(), hashlib.sha256).digest()
        return base64.b64encode(digest).decode()

    def _headers(self, method: str, request_path: str, body: str) -> dict[str, str]:
        ts = isoformat_z(self._clock())
        headers = {
            "OK-ACCESS-KEY": self.cfg.api_key,
            "OK-ACCESS-SIGN": self.sign(ts, method, request_path, body),
            "OK-ACCESS-TIMESTAMP": ts,
            "OK-ACCESS-PASSPHRASE": self.cfg.passphrase,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.cfg.simulated:
            headers["x-simulated-trading"] = "1"
        return headers

    async def _envelope(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        request_path = path
        if params:
            query = urlencode({k: v for k, v in params.items() if v is not None})
            if query:
                request_path = f"{path}?{query}"
        payload = json.dumps(body, separators=(",", ":")) if body is not None else ""

        try:
            data = await self._client.request_json(
                method,
                f"{self.base_url}{request_path}",
                content=payload or None,
                headers=self._headers(method, request_path, payload),
                expected=dict,
            )
        except httpx.HTTPStatusError as e:
            raise VenueError(f"OKX request failed ({e.response.status_code}): {e.response.text}") from e
        return data

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> list[Any]:
        envelope = await self._envelope(method, path, params=params, body=body)
        code = str(envelope.get("code", "0"))
        if code != "0":
            raise VenueError(f"OKX API error ({code}): {envelope.get('msg', '')}")
        data = envelope.get("data")
        return data if isinstance(data, list) else []

    async def _order_ack(self, path: str, body: dict[str, Any], *, id_field: str, kind: str) -> OrderAck:
        try:
            envelope = await self._envelope("POST", path, body=body)
        except VenueError as e:
            return OrderAck(None, error_code="HTTP", error_message=str(e), kind=kind)

        rows = envelope.get("data") if isinstance(envelope.get("data"), list) else []
        first = rows[0] if rows else {}
        code = str(envelope.get("code", "0"))
        s_code = str(first.get("sCode", code))
        if s_code != "0" or code != "0":
            msg = first.get("sMsg") or envelope.get("msg") or ""
            return OrderAck(None, error_code=s_code if s_code != "0" else code, error_message=msg, kind=kind)
        order_id = first.get(id_field)
        if not order_id:
            return OrderAck(None, error_code="NO_ORDER_ID", error_message=str(first), kind=kind)
        return OrderAck(str(order_id), kind=kind)

    # --- VenueApi ------------------------------------------------------------

    async def prepare(self, symbol: str, *, position_mode: PositionMode) -> None:
        if self._position_mode == position_mode:
            return
        target = "long_short_mode" if position_mode == "dual" else "net_mode"
        try:
            await self._request("POST", "/api/v5/account/set-position-mode", body={"posMode": target})
        except VenueError as e:
            # OKX refuses a mode switch while positions or orders are open
            logger.warning("okx_position_mode_unchanged", extra={"target": target, "error": str(e)})
        self._position_mode = position_mode

    async def get_instrument(self, symbol: str) -> Instrument:
        inst_id = self.inst_id(symbol)
        cached = self._instruments.get(inst_id)
        if cached is not None:
            return cached

        rows = await self._request(
            "GET", "/api/v5/public/instruments", params={"instType": self.cfg.inst_type, "instId": inst_id}
        )
        info = next((r for r in rows if r.get("instId") == inst_id), None)
        if info is None:
            raise InstrumentNotFoundError(f"Instrument {inst_id} not found on OKX")

        lot = float(info.get("lotSz") or 1.0)
        instrument = Instrument(
            symbol=symbol,
            venue_symbol=inst_id,
            contract_size=float(info.get("ctVal") or 0.0) or 1.0,
            lot_size=lot,
            min_size=float(info.get("minSz") or lot),
            tick_size=float(info.get("tickSz") or 0.0) or None,
        )
        self._instruments[inst_id] = instrument
        return instrument

    async def get_balance(self, instrument: Instrument) -> Balance:
        rows = await self._request("GET", "/api/v5/account/balance", params={"ccy": self.cfg.settle_currency})
        account = rows[0] if rows else {}
        detail = next(
            (d for d in account.get("details", []) if str(d.get("ccy", "")).upper() == self.cfg.settle_currency),
            {},
        )
        available = next(
            (float(detail[k]) for k in ("availBal", "availEq", "cashBal") if detail.get(k) not in (None, "")),
            0.0,
        )
        equity = float(detail.get("eq") or account.get("totalEq") or 0.0)
        return Balance(available=available, equity=equity, currency=self.cfg.settle_currency)

    async def get_positions(self, instrument: Instrument) -> list[VenuePosition]:
        rows = await self._request(
            "GET",
            "/api/v5/account/positions",
            params={"instType": self.cfg.inst_type, "instId": instrument.venue_symbol},
        )
        out: list[VenuePosition] = []
        for row in rows:
            if row.get("instId") != instrument.venue_symbol:
                continue
            contracts = float(row.get("pos") or 0.0)
            if contracts == 0:
                continue
            pos_side = str(row.get("posSide") or "net").lower()
            leg = pos_side if pos_side in {"long", "short"} else "net"
            size = contracts * instrument.contract_size
            out.append(
                VenuePosition(
                    leg=leg,  # type: ignore[arg-type]
                    size=size if leg == "net" else abs(size),
                    avg_price=float(row.get("avgPx") or 0.0) or None,
                    leverage=float(row.get("lever") or 0.0) or None,
                )
            )
        return out

    async def get_mark_price(self, instrument: Instrument) -> float:
        rows = await self._request("GET", "/api/v5/market/ticker", params={"instId": instrument.venue_symbol})
        first = rows[0] if rows else {}
        price = float(first.get("last") or first.get("idxPx") or 0.0)
        if price <= 0:
            raise VenueError(f"Failed to fetch ticker for {instrument.venue_symbol}")
        return price

    async def set_leverage(self, instrument: Instrument, leverage: float, *, leg: Leg | None = None) -> None:
        body: dict[str, Any] = {
            "instId": instrument.venue_symbol,
            "lever": format_number(leverage),
            "mgnMode": self.cfg.margin_mode,
        }
        if leg is not None:
            body["posSide"] = leg
        await self._request("POST", "/api/v5/account/set-leverage", body=body)

    async def place_order(self, instrument: Instrument, order: OrderRequest) -> OrderAck:
        body: dict[str, Any] = {
            "instId": instrument.venue_symbol,
            "tdMode": self.cfg.margin_mode,
            "side": order.side,
            "ordType": "market",
            "sz": format_number(order.contracts),
            "reduceOnly": "true" if order.reduce_only else "false",
        }
        if order.leg is not None:
            body["posSide"] = order.leg
        logger.info("okx_order", extra={"instId": body["instId"], "side": body["side"], "sz": body["sz"]})
        return await self._order_ack("/api/v5/trade/order", body, id_field="ordId", kind="order")

    async def place_protective_order(
        self, instrument: Instrument, order: ProtectiveOrderRequest
    ) -> list[OrderAck]:
        body: dict[str, Any] = {
            "instId": instrument.venue_symbol,
            "tdMode": self.cfg.margin_mode,
            "side": order.side,
            "ordType": "conditional",
            "sz": format_number(order.contracts),
            "reduceOnly": "true",
        }
        if order.take_profit is not None:
            body.update(tpTriggerPx=format_number(order.take_profit), tpOrdPx="-1", tpTriggerPxType="last")
        if order.stop_loss is not None:
            body.update(slTriggerPx=format_number(order.stop_loss), slOrdPx="-1", slTriggerPxType="last")
        if order.leg is not None:
            body["posSide"] = order.leg
        ack = await self._order_ack("/api/v5/trade/order-algo", body, id_field="algoId", kind="tp_sl")
        return [ack]
