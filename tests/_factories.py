"""Shared builders for signals, bundles and source payloads."""

from __future__ import annotations

from typing import Any

from relay.core.models import NormalizedSignal, Side, SignalMeta
from relay.core.types import SignalBundle


def make_signal(**overrides: Any) -> NormalizedSignal:
    data: dict[str, Any] = {
        "agent_id": "deepseek-chat-v3.1",
        "symbol": "BTC",
        "side": Side.LONG,
        "quantity": 0.5,
        "leverage": 10.0,
        "entry_price": 100.0,
        "entry_oid": 1001,
        "signal_marker": 42,
        "current_price": 100.5,
        "received_at": "2025-01-15T11:59:30.000Z",
        "signal_timestamp": "2025-01-15T11:59:30.000Z",
    }
    data.update(overrides)
    return NormalizedSignal(**data)


def make_bundle(signal: NormalizedSignal | None = None, *, exit_plan: dict[str, Any] | None = None) -> SignalBundle:
    sig = signal or make_signal()
    position = {
        "symbol": sig.symbol,
        "entry_price": sig.entry_price,
        "quantity": sig.signed_quantity,
        "leverage": sig.leverage,
        "current_price": sig.current_price,
        "unrealized_pnl": 1.25,
        "entry_oid": sig.entry_oid,
        "exit_plan": exit_plan or {},
    }
    return SignalBundle(
        normalized=sig,
        raw={"account_id": "acct-1", "model_id": sig.agent_id, "position": position},
        meta=SignalMeta(source="test"),
    )


def account_payload(
    positions: dict[str, dict[str, Any]] | None = None,
    *,
    model_id: str = "deepseek-chat-v3.1",
    marker: int = 42,
) -> dict[str, Any]:
    if positions is None:
        positions = {
            "BTC": {
                "symbol": "BTC",
                "entry_price": 100.0,
                "quantity": 0.5,
                "leverage": 10,
                "current_price": 100.2,
                "unrealized_pnl": 0.1,
                "entry_oid": 1001,
                "exit_plan": {"profit_target": 120.0, "stop_loss": 90.0},
            },
            "ETH": {
                "symbol": "ETH",
                "entry_price": 50.0,
                "quantity": -2.0,
                "leverage": 5,
                "current_price": 49.9,
                "unrealized_pnl": 0.2,
                "entry_oid": 2002,
            },
        }
    return {
        "accountTotals": [
            {
                "id": f"{model_id}_{marker}",
                "model_id": model_id,
                "since_inception_hourly_marker": marker,
                "positions": positions,
            }
        ]
    }


