"""Configuration for the trading desk powered by ``pydantic-settings``."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

from application.agent import AgentConfig, CircuitBreakers, TradingHours
from domain.errors import ConfigError
from execution.adapters.delta import DELTA_BASE_URL
from execution.order_manager import OrderManagerConfig
from risk.limits import RiskLimits

_HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class _SettingsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RiskLimitsSettings(_SettingsModel):
    """Portfolio guardrails expressed as fractions of balance."""

    max_portfolio_risk: float = Field(0.10, ge=0.0, le=1.0)
    max_position_size: float = Field(0.10, ge=0.0, le=1.0)
    max_drawdown: float = Field(0.15, ge=0.0, le=1.0)
    max_daily_loss: float = Field(0.05, ge=0.0, le=1.0)
    max_open_positions: NonNegativeInt = 10
    correlation_limit: float = Field(0.70, ge=0.0, le=1.0)
    risk_per_trade: float = Field(0.02, ge=0.0, le=1.0)
    max_leverage: float = Field(3.0, ge=1.0)
    stop_loss_percentage: float = Field(0.02, ge=0.0, le=1.0)

    def to_limits(self) -> RiskLimits:
        return RiskLimits(**self.model_dump())


class TakeProfitSettings(_SettingsModel):
    check_interval: PositiveFloat = Field(1.0, description="Seconds between evaluations.")
    max_events: PositiveInt = 100


class OrderManagerSettings(_SettingsModel):
    default_timeout: PositiveFloat = Field(
        30.0, description="Seconds wait_for_order_update waits when no timeout is given."
    )
    max_trade_history: PositiveInt = 1000

    def to_config(self) -> OrderManagerConfig:
        return OrderManagerConfig(
            default_timeout=self.default_timeout,
            max_trade_history=self.max_trade_history,
        )


class TradingHoursSettings(_SettingsModel):
    start: str = Field("00:00", pattern=_HHMM_PATTERN)
    end: str = Field("23:59", pattern=_HHMM_PATTERN)


class CircuitBreakerSettings(_SettingsModel):
    max_drawdown: float = Field(0.15, ge=0.0, le=1.0)
    max_consecutive_losses: PositiveInt = 5
    min_account_balance: float = Field(1000.0, ge=0.0)
    volatility_threshold: float = Field(0.05, ge=0.0)
    max_daily_loss_pct: float = Field(0.05, ge=0.0, le=1.0)


class AgentSettings(_SettingsModel):
    enabled: bool = True
    analysis_interval: PositiveFloat = Field(300.0, description="Seconds between analysis cycles.")
    max_daily_trades: NonNegativeInt = 10
    emergency_stop_loss: float = Field(0.10, ge=0.0, le=1.0)
    confidence_threshold: float = Field(0.70, ge=0.0, le=1.0)
    trading_hours: TradingHoursSettings = Field(default_factory=TradingHoursSettings)
    circuit_breakers: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    take_profit_strategy: str = Field("balanced", min_length=1)
    max_errors: PositiveInt = 5

    def to_config(self) -> AgentConfig:
        payload = self.model_dump(exclude={"trading_hours", "circuit_breakers"})
        return AgentConfig(
            trading_hours=TradingHours(**self.trading_hours.model_dump()),
            circuit_breakers=CircuitBreakers(**self.circuit_breakers.model_dump()),
            **payload,
        )


class DeltaSettings(_SettingsModel):
    """Credentials and endpoint for the Delta Exchange REST API."""

    base_url: str = DELTA_BASE_URL
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    timeout: PositiveFloat = 10.0

    @model_validator(mode="after")
    def _credentials_pair(self) -> "DeltaSettings":
        if (self.api_key is None) != (self.api_secret is None):
            raise ValueError("api_key and api_secret must be provided together")
        return self


class DeskSettings(BaseSettings):
    """Top-level configuration.

    Values resolve from init arguments, then ``DELTADESK_*`` environment
    variables (nested with ``__``, e.g. ``DELTADESK_RISK__MAX_DRAWDOWN``).
    """

    model_config = SettingsConfigDict(
        env_prefix="DELTADESK_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    risk: RiskLimitsSettings = Field(default_factory=RiskLimitsSettings)
    take_profit: TakeProfitSettings = Field(default_factory=TakeProfitSettings)
    orders: OrderManagerSettings = Field(default_factory=OrderManagerSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    delta: DeltaSettings = Field(default_factory=DeltaSettings)
    log_level: str = Field("INFO", pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_json: bool = True
    metrics_enabled: bool = True

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "DeskSettings":
        try:
            return cls(**dict(data or {}))
        except ValidationError as exc:
            messages = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in exc.errors()
            )
            raise ConfigError(messages) from exc

    @classmethod
    def from_file(cls, path: str | Path) -> "DeskSettings":
        payload_path = Path(path)
        try:
            text = payload_path.read_text(encoding="utf8")
        except OSError as exc:
            raise ConfigError(f"unable to read configuration file {payload_path}: {exc}") from exc
        try:
            loaded = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"failed to parse YAML configuration at {payload_path}: {exc}") from exc
        if not isinstance(loaded, Mapping):
            raise ConfigError(f"configuration file {payload_path} must define a mapping")
        return cls.from_mapping(loaded)


__all__ = [
    "AgentSettings",
    "CircuitBreakerSettings",
    "DeltaSettings",
    "DeskSettings",
    "OrderManagerSettings",
    "RiskLimitsSettings",
    "TakeProfitSettings",
    "TradingHoursSettings",
]
