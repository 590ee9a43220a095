"""Configuration loading utilities for the portfolio ledger."""

from __future__ import annotations

import json
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml
from pydantic import BaseModel, Field

CONFIG_ENV_PREFIX = "PORTFOLIO_"


class LedgerConfig(BaseModel):
    initial_capital: float = Field(default=10_000.0, ge=0)
    contract_size: float = Field(default=1.0, gt=0)
    day_boundary_tz: str = "UTC"


class StorageConfig(BaseModel):
    enabled: bool = True
    directory: str = ".portfolio"
    key: str = "portfolioData"
    orders_key: str = "trading_orders"


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:8000"
    transactions_path: str = "/api/transactions"
    market_data_path: str = "/api/market-data/{symbol}"
    replicate: bool = True
    timeout_seconds: float = 5.0
    retry_attempts: int = Field(default=3, ge=1)
    backoff_multiplier: float = 0.5
    backoff_min: float = 0.5
    backoff_max: float = 8.0
    queue_size: int = 1000


class RefreshConfig(BaseModel):
    interval_seconds: float = Field(default=1.0, gt=0)
    price_source: str = "mock"  # "mock" or "http"
    mock_cache_ttl_seconds: float = 0.5


class RiskConfig(BaseModel):
    var_confidence: float = Field(default=0.95, gt=0, lt=1)
    performer_limit: int = 5
    position_risk_percent: float = 2.0


class OrderConfig(BaseModel):
    max_quantity: float = 100.0
    leverage: float = Field(default=100.0, gt=0)
    currency: str = "USD"


class LoggingConfig(BaseModel):
    level: str = "INFO"


class Config(BaseModel):
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    orders: OrderConfig = Field(default_factory=OrderConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @staticmethod
    def load(path: str | Path | None = None, env_prefix: str = CONFIG_ENV_PREFIX) -> "Config":
        """Load config from a YAML/JSON/TOML file if provided, then apply env overrides."""
        payload: Dict[str, Any] = dict(_read_file(Path(path))) if path else {}
        _apply_env_overrides(payload, env_prefix=env_prefix)
        return Config(**payload)


def _read_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if suffix in {".toml", ".tml"}:
        with path.open("rb") as fh:
            return tomllib.load(fh)
    if suffix == ".json":
        with path.open("r", encoding="utf-8") as fh:
            return json.load(fh)
    raise ValueError(f"Unsupported config format: {path.suffix}")


_ENV_FIELDS = {
    "INITIAL_CAPITAL": ("ledger", "initial_capital", float),
    "CONTRACT_SIZE": ("ledger", "contract_size", float),
    "DAY_BOUNDARY_TZ": ("ledger", "day_boundary_tz", str),
    "STORAGE_DIR": ("storage", "directory", str),
    "API_BASE_URL": ("api", "base_url", str),
    "REFRESH_SECONDS": ("refresh", "interval_seconds", float),
    "PRICE_SOURCE": ("refresh", "price_source", str),
    "LEVERAGE": ("orders", "leverage", float),
    "LOG_LEVEL": ("logging", "level", str),
}


def _apply_env_overrides(payload: Dict[str, Any], env_prefix: str) -> None:
    for suffix, (section, key, cast) in _ENV_FIELDS.items():
        raw = os.getenv(f"{env_prefix}{suffix}")
        if raw is None:
            continue
        try:
            value = cast(raw)
        except ValueError:
            continue
        section_payload = dict(payload.get(section) or {})
        section_payload[key] = value
        payload[section] = section_payload
