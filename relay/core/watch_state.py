"""relay.core.watch_state

Idempotent intake.

Per (agent, symbol) we remember the last entry order id we let through. A snapshot that
still carries that id has been processed already and never reaches the guards again.
Only live intake consults this file; replay never does.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from relay.core.exceptions import JournalError
from relay.core.time import isoformat_z, utc_now
from relay.core.types import SignalBundle

logger = logging.getLogger(__name__)


class WatchStateEntry(BaseModel):
    entry_oid: int
    signal_marker: int | None = None
    updated_at: str


class AgentWatchState(BaseModel):
    positions: dict[str, WatchStateEntry] = Field(default_factory=dict)


class WatchState(BaseModel):
    agents: dict[str, AgentWatchState] = Field(default_factory=dict)

    def entry(self, agent_id: str, symbol: str) -> WatchStateEntry | None:
        agent = self.agents.get(agent_id)
        if agent is None:
            return None
        return agent.positions.get(symbol)


@dataclass(frozen=True, slots=True)
class WatchFilterResult:
    bundles: list[SignalBundle]
    next_state: WatchState
    skipped: int


def filter_bundles(bundles: Iterable[SignalBundle], state: WatchState) -> WatchFilterResult:
    """Drop bundles whose entry order id matches the stored one; record the rest.

    ``state`` is left untouched.
    """

    nxt = state.model_copy(deep=True)
    fresh: list[SignalBundle] = []
    skipped = 0
    stamp = isoformat_z(utc_now())

    for bundle in bundles:
        sig = bundle.normalized
        agent = nxt.agents.setdefault(sig.agent_id, AgentWatchState())
        seen = agent.positions.get(sig.symbol)
        if seen is not None and seen.entry_oid == sig.entry_oid:
            skipped += 1
            continue

        fresh.append(bundle)
        agent.positions[sig.symbol] = WatchStateEntry(
            entry_oid=sig.entry_oid,
            signal_marker=sig.signal_marker,
            updated_at=stamp,
        )

    return WatchFilterResult(bundles=fresh, next_state=nxt, skipped=skipped)


def load_watch_state(path: Path) -> WatchState:
    if not path.exists():
        return WatchState()
    try:
        return WatchState.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError, ValueError) as e:
        logger.warning("watch_state_unreadable", extra={"path": str(path), "error": str(e)})
        return WatchState()


def save_watch_state(state: WatchState, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(state.model_dump_json(indent=2) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        raise JournalError(f"cannot write watch state {path}: {e}") from e


def clear_watch_state(path: Path) -> None:
    save_watch_state(WatchState(), path)


def describe_watch_state(state: WatchState) -> str:
    rows = {
        agent_id: {sym: e.entry_oid for sym, e in agent.positions.items()}
        for agent_id, agent in sorted(state.agents.items())
    }
    return json.dumps(rows, indent=2, sort_keys=True)
