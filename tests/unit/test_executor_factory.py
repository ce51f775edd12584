from __future__ import annotations

import pytest

from relay.core.config import Config
from relay.core.exceptions import ConfigError
from relay.execution.factory import create_executor
from relay.execution.paper import SimulatorExecutor


def test_simulator_is_the_default_venue() -> None:
    ex = create_executor(Config())
    assert isinstance(ex, SimulatorExecutor)
    assert ex.name == "simulator"


def test_live_venues_need_credentials() -> None:
    cfg = Config().with_overrides("execution", venue="binance").with_overrides("binance", api_key="", api_secret="")
    with pytest.raises(ConfigError, match="RELAY_BINANCE__API_SECRET"):
        create_executor(cfg)

    okx = Config().with_overrides("execution", venue="okx").with_overrides("okx", api_key="k", api_secret="s")
    with pytest.raises(ConfigError, match="RELAY_OKX__PASSPHRASE"):
        create_executor(okx.with_overrides("okx", passphrase=""))


def test_live_venue_with_credentials() -> None:
    cfg = (
        Config()
        .with_overrides("execution", venue="okx")
        .with_overrides("okx", api_key="k", api_secret="s", passphrase="p", simulated=True)
    )
    ex = create_executor(cfg)
    assert ex.name == "okx"
