"""YAML config loader with pydantic validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from pairagent.core.errors import ConfigError


# Load .env file
load_dotenv()


# ── Config Models ────────────────────────────────────────────────────────────


class AnalysisConfig(BaseModel):
    lookback_periods: int = Field(default=100, ge=2)
    min_points: int = Field(default=50, ge=2)
    # Must match the sampling period of the price series (8760 = hourly bars)
    periods_per_year: float = Field(default=8760.0, gt=0)
    signal_threshold: float = Field(default=2.0, gt=0)
    cointegration_method: Literal["approximate", "adfuller"] = "approximate"


class QualifierConfig(BaseModel):
    """Entry filters applied to an AnalysisResult."""

    z_score_threshold: float = Field(default=2.0, gt=0)
    correlation_threshold: float = Field(default=0.85, ge=0, le=1)
    dynamic_z_score: bool = False
    half_life_enforced: bool = True
    min_half_life: float = Field(default=1.0, ge=0)
    max_half_life: float | None = None
    adf_override_pvalue: float | None = Field(default=None, gt=0, le=1)
    min_sharpe: float | None = None
    max_volatility: float | None = None

    @model_validator(mode="after")
    def _check_band(self) -> QualifierConfig:
        if self.max_half_life is not None and self.max_half_life < self.min_half_life:
            raise ValueError("max_half_life must be >= min_half_life")
        return self


class ExitConfig(BaseModel):
    stop_loss_pct: float = -5.0
    take_profit_pct: float = 3.0
    mean_reversion_threshold: float = Field(default=0.5, ge=0)
    max_holding_hours: float = Field(default=168.0, gt=0)

    @model_validator(mode="after")
    def _check_signs(self) -> ExitConfig:
        if not self.stop_loss_pct < 0 < self.take_profit_pct:
            raise ValueError("expected stop_loss_pct < 0 < take_profit_pct")
        return self


class RiskConfig(BaseModel):
    max_concurrent_positions: int = Field(default=5, ge=1)
    max_correlated_positions: int = Field(default=2, ge=1)
    max_portfolio_risk: float = Field(default=0.8, gt=0, le=1)
    cash_reserve_pct: float = Field(default=0.2, ge=0, lt=1)


class SizingConfig(BaseModel):
    base_fraction: float = Field(default=0.1, gt=0, le=1)
    use_kelly: bool = False
    kelly_multiplier: float = Field(default=0.25, gt=0, le=1)
    kelly_min_trades: int = Field(default=10, ge=1)
    target_volatility: float | None = Field(default=None, gt=0)


class PairEntry(BaseModel):
    symbol_a: str
    symbol_b: str
    category: str = ""


class ScanConfig(BaseModel):
    full_cycle_seconds: float = Field(default=3600.0, gt=0)
    fast_exit_seconds: float = Field(default=300.0, gt=0)
    candidates_per_scan: int = Field(default=3, ge=1)
    scan_budget: int = Field(default=10, ge=1)
    inter_scan_delay_seconds: float = Field(default=2.0, ge=0)
    fallback_pairs: list[PairEntry] = Field(default_factory=list)


class DataConfig(BaseModel):
    base_url: str = "https://api.binance.com"
    interval: str = "1h"
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=1.0, ge=0)
    min_request_interval_seconds: float = Field(default=0.1, ge=0)
    price_cache_ttl_seconds: float = Field(default=30.0, ge=0)
    selector: Literal["random", "category"] = "random"
    # category -> symbols; a flat universe goes under a single key
    universe: dict[str, list[str]] = Field(default_factory=lambda: {
        "majors": ["BTCUSDT", "ETHUSDT", "SOLUSDT", "BNBUSDT", "XRPUSDT", "ADAUSDT"],
    })


class PerformanceConfig(BaseModel):
    leverage: float = Field(default=2.0, gt=0)


class StoreConfig(BaseModel):
    db_path: str = "data/pairagent.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "data/logs/pairagent.log"
    json_format: bool = True


class Settings(BaseModel):
    """Top-level application settings."""

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    qualifier: QualifierConfig = Field(default_factory=QualifierConfig)
    exits: ExitConfig = Field(default_factory=ExitConfig)
    risk: RiskConfig = Field(default_factory=RiskConfig)
    sizing: SizingConfig = Field(default_factory=SizingConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# ── Loader ───────────────────────────────────────────────────────────────────


def load_yaml(path: Path | str) -> dict[str, Any]:
    """Load a YAML file and return the parsed dict."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    return data or {}


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML. A missing file yields defaults; a bad file raises ConfigError."""
    if config_path is None:
        config_path = os.getenv("PAIRAGENT_CONFIG", "config/settings.yaml")

    path = Path(config_path)
    try:
        raw = load_yaml(path) if path.exists() else {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError(f"Top level of {path} must be a mapping")

    try:
        settings = Settings(**raw)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    # Env overlay for deployment-specific paths
    db_path = os.getenv("PAIRAGENT_DB_PATH")
    if db_path:
        settings.store.db_path = db_path

    return settings
