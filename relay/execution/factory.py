"""relay.execution.factory

Config → executor. Live venues fail fast on missing credentials.
"""

from __future__ import annotations

import httpx

from relay.core.client import ClientConfig, HttpClient
from relay.core.config import Config
from relay.core.exceptions import ConfigError
from relay.execution.binance import BinanceVenueApi
from relay.execution.okx import OkxVenueApi
from relay.execution.paper import SimulatorExecutor
from relay.execution.venue import VenueExecutor


def _venue_client(transport: httpx.AsyncBaseTransport | None) -> HttpClient:
    return HttpClient(ClientConfig(rate_limit_rps=10.0, max_retries=0), transport=transport)


def create_executor(
    config: Config,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> VenueExecutor:
    venue = config.execution.venue

    if venue == "simulator":
        return SimulatorExecutor(config.execution, config.paper)

    if venue == "binance":
        b = config.binance
        if not b.api_key or not b.api_secret:
            raise ConfigError("Binance execution requires RELAY_BINANCE__API_KEY and RELAY_BINANCE__API_SECRET")
        return VenueExecutor(BinanceVenueApi(b, client=_venue_client(transport)), config.execution)

    if venue == "okx":
        o = config.okx
        if not o.api_key or not o.api_secret or not o.passphrase:
            raise ConfigError(
                "OKX execution requires RELAY_OKX__API_KEY, RELAY_OKX__API_SECRET and RELAY_OKX__PASSPHRASE"
            )
        return VenueExecutor(OkxVenueApi(o, client=_venue_client(transport)), config.execution)

    raise ConfigError(f"Unknown venue '{venue}'")
