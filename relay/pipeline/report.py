"""relay.pipeline.report

Positions report: the latest snapshot per (agent, symbol) from the signal log,
rendered as one box-drawn table per agent.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from relay.core.models import SignalRecord
from relay.core.time import parse_dt

HEADERS = ("Symbol", "Hold", "Side", "Entry", "Current", "Unrealized", "TP", "SL")
_EMPTY = "—"
_MIN_HOLD = 1e-8


@dataclass(frozen=True, slots=True)
class PositionRow:
    agent: str
    symbol: str
    hold: str
    side: str
    entry: str
    current: str
    unrealized: str
    tp: str
    sl: str

    def cells(self) -> tuple[str, ...]:
        return (self.symbol, self.hold, self.side, self.entry, self.current, self.unrealized, self.tp, self.sl)


def format_number(value: Any, *, digits: int = 4) -> str:
    """Adaptive precision: fewer decimals for large magnitudes, more for small ones."""

    if value is None:
        return _EMPTY
    try:
        num = float(value)
    except (TypeError, ValueError):
        return _EMPTY
    if not math.isfinite(num):
        return _EMPTY

    mag = abs(num)
    if mag >= 1000:
        precision = min(2, digits)
    elif mag >= 1:
        precision = min(4, digits)
    else:
        precision = min(6, digits + 2)

    text = f"{num:.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        dt: datetime = parse_dt(value)
    except ValueError:
        return 0.0
    return dt.timestamp()


def latest_positions(records: Iterable[SignalRecord]) -> list[PositionRow]:
    latest: dict[tuple[str, str], tuple[float, int, SignalRecord, dict[str, Any]]] = {}

    for rec in records:
        position = rec.raw.get("position") if isinstance(rec.raw, dict) else None
        if not isinstance(position, dict):
            continue
        try:
            qty = float(position.get("quantity"))
        except (TypeError, ValueError):
            continue
        if not math.isfinite(qty) or abs(qty) <= _MIN_HOLD:
            continue

        sig = rec.normalized
        key = (sig.agent_id, sig.symbol)
        ts = _timestamp(sig.received_at)
        seen = latest.get(key)
        if seen is None or ts > seen[0] or (ts == seen[0] and sig.signal_marker > seen[1]):
            latest[key] = (ts, sig.signal_marker, rec, position)

    rows: list[PositionRow] = []
    for _, _, rec, position in latest.values():
        sig = rec.normalized
        qty = float(position["quantity"])
        leverage = sig.leverage or position.get("leverage")
        hold = format_number(abs(qty), digits=6)
        if leverage:
            hold = f"{hold} @{format_number(leverage)}x"
        exit_plan = position.get("exit_plan") if isinstance(position.get("exit_plan"), dict) else {}
        rows.append(
            PositionRow(
                agent=sig.agent_id,
                symbol=sig.symbol,
                hold=hold,
                side="LONG" if qty >= 0 else "SHORT",
                entry=format_number(position.get("entry_price", sig.entry_price)),
                current=format_number(position.get("current_price", sig.current_price)),
                unrealized=format_number(position.get("unrealized_pnl"), digits=2),
                tp=format_number(exit_plan.get("profit_target")),
                sl=format_number(exit_plan.get("stop_loss")),
            )
        )
    return rows


def render_table(rows: list[PositionRow]) -> str:
    widths = [max(len(h), *(len(r.cells()[i]) for r in rows)) for i, h in enumerate(HEADERS)]

    def line(left: str, mid: str, right: str) -> str:
        return left + mid.join("─" * (w + 2) for w in widths) + right

    def render(cells: tuple[str, ...]) -> str:
        return "│" + "│".join(f" {c.ljust(widths[i])} " for i, c in enumerate(cells)) + "│"

    out = [line("┌", "┬", "┐"), render(HEADERS), line("├", "┼", "┤")]
    out.extend(render(r.cells()) for r in rows)
    out.append(line("└", "┴", "┘"))
    return "\n".join(out)


def format_positions(records: Iterable[SignalRecord], heading: str = "Agent Positions") -> str:
    rows = latest_positions(records)
    parts = [heading]
    if not rows:
        parts.append("No active positions.")
        return "\n".join(parts) + "\n"

    by_agent: dict[str, list[PositionRow]] = {}
    for r in rows:
        by_agent.setdefault(r.agent, []).append(r)

    for agent in sorted(by_agent):
        parts.append("")
        parts.append(f"Agent: {agent}")
        parts.append(render_table(by_agent[agent]))
    return "\n".join(parts) + "\n"
