"""relay.source.nof1

Upstream signal source: agent account snapshots.

The API returns ``{"accountTotals": [AgentAccount, ...]}``. Saved payload files may also
hold a bare list of accounts or a single account; all three shapes are accepted.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from relay.core.client import ClientConfig, HttpClient
from relay.core.config import SourceConfig
from relay.core.exceptions import SourceError

logger = logging.getLogger(__name__)


class ExitPlan(BaseModel):
    profit_target: float | None = None
    stop_loss: float | None = None
    invalidation_condition: str | None = None


class SourcePosition(BaseModel):
    """A position as the source reports it. ``quantity`` is signed."""

    symbol: str
    entry_price: float
    quantity: float
    leverage: float = 1.0
    current_price: float
    unrealized_pnl: float = 0.0
    confidence: float | None = None
    entry_oid: int
    tp_oid: int | None = None
    sl_oid: int | None = None
    margin: float | None = None
    exit_plan: ExitPlan = Field(default_factory=ExitPlan)


class AgentAccount(BaseModel):
    id: str
    model_id: str
    since_inception_hourly_marker: int = 0
    positions: dict[str, SourcePosition] = Field(default_factory=dict)


def accounts_from_payload(payload: Any) -> list[AgentAccount]:
    """Coerce any supported payload shape into a list of accounts."""

    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict) and "accountTotals" in payload:
        items = payload.get("accountTotals") or []
    elif isinstance(payload, dict) and "model_id" in payload and "positions" in payload:
        items = [payload]
    else:
        raise SourceError("Unsupported payload structure for agent accounts.")

    if not isinstance(items, list):
        raise SourceError("accountTotals must be a list")

    try:
        return [AgentAccount.model_validate(item) for item in items]
    except ValidationError as e:
        raise SourceError(f"Invalid agent account payload: {e}") from e


def load_accounts_file(path: Path) -> list[AgentAccount]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SourceError(f"Failed to read or parse {path}: {e}") from e
    return accounts_from_payload(payload)


def account_totals_url(base_url: str, marker: int | None = None) -> httpx.URL:
    url = httpx.URL(base_url.rstrip("/") + "/account-totals")
    if marker is not None:
        url = url.copy_add_param("lastHourlyMarker", str(marker))
    return url


class SignalSource:
    """Fetches agent accounts over HTTP."""

    def __init__(self, config: SourceConfig, *, client: HttpClient | None = None) -> None:
        self.config = config
        self._client = client or HttpClient(
            ClientConfig(timeout_s=config.timeout_s, max_retries=config.max_retries)
        )

    @property
    def name(self) -> str:
        return self.config.name

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(
        self,
        *,
        agents: list[str] | None = None,
        marker: int | None = None,
    ) -> list[AgentAccount]:
        wanted = agents if agents is not None else self.config.agents
        mark = marker if marker is not None else self.config.marker
        url = account_totals_url(self.config.base_url, mark)

        try:
            payload = await self._client.request_json("GET", str(url), expected=dict)
        except httpx.HTTPError as e:
            raise SourceError(f"Failed to fetch signals from {url}: {e}") from e

        accounts = accounts_from_payload(payload)
        if wanted:
            targets = {a.strip() for a in wanted}
            accounts = [a for a in accounts if a.model_id in targets]

        logger.info("source_fetched", extra={"accounts": len(accounts), "marker": mark})
        return accounts
