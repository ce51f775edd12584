"""relay.core.config

Three config surfaces only:
1) `config/default.yaml` + `config/presets/*.yaml`
2) A guard overlay file (``--guards-config``, YAML or JSON)
3) Environment variables (venue secrets only)

CLI flags are applied last, as explicit overrides.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from relay.core.exceptions import ConfigError

GUARD_NAMES = ("price", "age", "notional", "noop")


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _positive_or_none(name: str, v: float | None) -> float | None:
    if v is not None and v <= 0:
        raise ValueError(f"{name} must be > 0")
    return v


class PathsConfig(BaseModel):
    data_dir: Path = Path("data")
    signal_log: str = "raw-signals.ndjson"
    decision_log: str = "decisions.ndjson"
    watch_state: str = "watch-state.json"

    def signal_log_path(self) -> Path:
        return self.data_dir / self.signal_log

    def decision_log_path(self) -> Path:
        return self.data_dir / self.decision_log

    def watch_state_path(self) -> Path:
        return self.data_dir / self.watch_state


class GuardsConfig(BaseModel):
    """Guard pipeline configuration.

    ``enabled`` is ordered: the first failing guard names the decision's reason code.
    When it is ``None`` the pipeline is ``price`` plus ``age``/``notional`` for whichever
    thresholds are set.
    """

    enabled: list[str] | None = None
    price_tolerance_pct: float = 1.0
    max_age_seconds: float | None = None
    max_notional: float | None = None

    @field_validator("enabled")
    @classmethod
    def known_guard_names(cls, v: list[str] | None) -> list[str] | None:
        if v is None:
            return None
        names = [str(n).strip().lower() for n in v if str(n).strip()]
        unknown = [n for n in names if n not in GUARD_NAMES]
        if unknown:
            raise ValueError(f"unknown guard(s): {', '.join(unknown)}")
        return names

    @field_validator("price_tolerance_pct")
    @classmethod
    def tolerance_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("price_tolerance_pct must be > 0")
        return v

    @field_validator("max_age_seconds")
    @classmethod
    def max_age_positive(cls, v: float | None) -> float | None:
        return _positive_or_none("max_age_seconds", v)

    @field_validator("max_notional")
    @classmethod
    def max_notional_positive(cls, v: float | None) -> float | None:
        return _positive_or_none("max_notional", v)

    def resolved_names(self) -> list[str]:
        if self.enabled:
            return list(self.enabled)
        names = ["price"]
        if self.max_age_seconds is not None:
            names.append("age")
        if self.max_notional is not None:
            names.append("notional")
        return names


class ExecutionConfig(BaseModel):
    enabled: bool = False
    simulate: bool = False
    venue: Literal["simulator", "binance", "okx"] = "simulator"
    position_mode: Literal["net", "dual"] = "net"
    force_reduce_only: bool = False
    default_leverage: float | None = None
    protective_orders: bool = True

    @field_validator("default_leverage")
    @classmethod
    def leverage_positive(cls, v: float | None) -> float | None:
        return _positive_or_none("default_leverage", v)


class SourceConfig(BaseModel):
    base_url: str = "https://nof1.ai/api"
    agents: list[str] = Field(default_factory=list)
    marker: int | None = None
    name: str = "nof1-api"
    timeout_s: float = 20.0
    max_retries: int = 3


class WatchConfig(BaseModel):
    interval_seconds: float = 60.0

    @field_validator("interval_seconds")
    @classmethod
    def interval_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval_seconds must be > 0")
        return v


class BinanceConfig(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    testnet: bool = False
    base_url: str | None = None
    margin_type: Literal["ISOLATED", "CROSSED"] = "CROSSED"
    recv_window_ms: int = 5000

    def resolved_base_url(self) -> str:
        if self.base_url:
            return self.base_url
        return "https://testnet.binancefuture.com" if self.testnet else "https://fapi.binance.com"


class OkxConfig(BaseModel):
    api_key: str = ""
    api_secret: str = ""
    passphrase: str = ""
    simulated: bool = False
    base_url: str = "https://www.okx.com"
    margin_mode: Literal["cross", "isolated"] = "cross"
    inst_id: str | None = None
    inst_suffix: str = "-USDT-SWAP"
    inst_type: str = "SWAP"
    settle_currency: str = "USDT"


class PaperConfig(BaseModel):
    start_balance: float = 10000.0
    slippage_bps: float = 5.0
    fee_rate: float = 0.0006
    contract_size: float = 1.0
    lot_size: float = 0.001
    min_size: float = 0.001


class LoggingConfig(BaseModel):
    level: str = "INFO"
    json_output: bool = False


class Config(BaseSettings):
    """Root configuration: preset, guard overlay and CLI overrides already merged."""

    preset: Literal["conservative", "balanced", "aggressive", "custom"] = "balanced"

    paths: PathsConfig = Field(default_factory=PathsConfig)
    guards: GuardsConfig = Field(default_factory=GuardsConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    source: SourceConfig = Field(default_factory=SourceConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)
    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    okx: OkxConfig = Field(default_factory=OkxConfig)
    paper: PaperConfig = Field(default_factory=PaperConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "RELAY_", "env_nested_delimiter": "__"}

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")

        raw = yaml.safe_load(path.read_text()) or {}

        preset_name = raw.get("preset", "balanced")
        preset_path = path.parent / "presets" / f"{preset_name}.yaml"
        if preset_path.exists():
            preset_data = yaml.safe_load(preset_path.read_text()) or {}
            raw = _deep_merge(preset_data, raw)

        try:
            return cls(**raw)
        except ValidationError as e:
            raise ConfigError(f"Invalid config {path}: {e}") from e

    @classmethod
    def from_repo_defaults(cls, repo_root: Path | None = None) -> Config:
        root = repo_root or Path.cwd()
        default_path = root / "config" / "default.yaml"
        if not default_path.exists():
            return cls()
        return cls.from_yaml(default_path)

    def with_guard_overlay(self, path: Path) -> Config:
        """Apply a guard overlay file.

        The file is YAML or JSON with either a top-level ``guards``/``params`` pair
        (``{"guards": ["price"], "params": {"maxNotional": 500}}``) or the
        :class:`GuardsConfig` fields directly.
        """

        if not path.exists():
            raise ConfigError(f"Guard config not found: {path}")
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Guard config {path} is not valid YAML/JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Guard config {path} must be a mapping")

        overlay = _guard_overlay_fields(data)
        merged = _deep_merge(self.guards.model_dump(), overlay)
        try:
            guards = GuardsConfig(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid guard config {path}: {e}") from e
        return self.model_copy(update={"guards": guards})

    def with_overrides(self, section: str, **values: Any) -> Config:
        """Return a copy with CLI overrides applied to one section (``None`` = keep)."""

        updates = {k: v for k, v in values.items() if v is not None}
        if not updates:
            return self
        current: BaseModel = getattr(self, section)
        merged = _deep_merge(current.model_dump(), updates)
        try:
            rebuilt = type(current)(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid {section} override: {e}") from e
        return self.model_copy(update={section: rebuilt})


_PARAM_ALIASES = {
    "priceTolerance": "price_tolerance_pct",
    "price_tolerance": "price_tolerance_pct",
    "maxAge": "max_age_seconds",
    "max_age": "max_age_seconds",
    "maxNotional": "max_notional",
}


def _guard_overlay_fields(data: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    if "guards" in data:
        out["enabled"] = data["guards"]
    params = data.get("params")
    if isinstance(params, dict):
        for k, v in params.items():
            out[_PARAM_ALIASES.get(k, k)] = v
    for k, v in data.items():
        if k in {"guards", "params"}:
            continue
        out[_PARAM_ALIASES.get(k, k)] = v
    return out


def dump_config(config: Config) -> str:
    """Redacted JSON view of the active configuration."""

    data = config.model_dump(mode="json")
    for section in ("binance", "okx"):
        for key in ("api_key", "api_secret", "passphrase"):
            if data.get(section, {}).get(key):
                data[section][key] = "[REDACTED]"
    return json.dumps(data, indent=2, sort_keys=True)
