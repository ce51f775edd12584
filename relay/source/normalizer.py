"""relay.source.normalizer

Source positions → canonical signals.

The sign of the source quantity becomes ``side``; downstream only ever sees the magnitude.
"""

from __future__ import annotations

from datetime import datetime

from relay.core.models import NormalizedSignal, Side, SignalMeta
from relay.core.time import isoformat_z, utc_now
from relay.core.types import SignalBundle
from relay.source.nof1 import AgentAccount, SourcePosition


def build_signal(account: AgentAccount, position: SourcePosition, received_at: str) -> NormalizedSignal:
    return NormalizedSignal(
        agent_id=account.model_id,
        symbol=position.symbol,
        side=Side.LONG if position.quantity >= 0 else Side.SHORT,
        quantity=abs(float(position.quantity)),
        leverage=float(position.leverage),
        entry_price=float(position.entry_price),
        entry_oid=int(position.entry_oid),
        signal_marker=int(account.since_inception_hourly_marker),
        current_price=float(position.current_price),
        received_at=received_at,
        signal_timestamp=received_at,
    )


def build_bundles(
    accounts: list[AgentAccount],
    *,
    source: str,
    input_file: str | None = None,
    received_at: datetime | None = None,
) -> list[SignalBundle]:
    stamp = isoformat_z(received_at or utc_now())
    meta = SignalMeta(source=source, input_file=input_file)

    bundles: list[SignalBundle] = []
    for account in accounts:
        for position in account.positions.values():
            bundles.append(
                SignalBundle(
                    normalized=build_signal(account, position, stamp),
                    raw={
                        "account_id": account.id,
                        "model_id": account.model_id,
                        "position": position.model_dump(mode="json"),
                    },
                    meta=meta,
                )
            )
    return bundles
