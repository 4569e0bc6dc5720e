"""Portfolio limit configuration enforced by the risk manager."""

from __future__ import annotations

import math
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

_FRACTIONAL_FIELDS = (
    "max_portfolio_risk",
    "max_position_size",
    "max_drawdown",
    "max_daily_loss",
    "correlation_limit",
    "risk_per_trade",
    "stop_loss_percentage",
)


def _finite(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if math.isfinite(number) else None


def non_numeric_fields(changes: Mapping[str, Any]) -> list[str]:
    """Names of known limit fields in ``changes`` whose value is not a finite number."""

    known = {f.name for f in fields(RiskLimits)}
    return sorted(key for key, value in changes.items() if key in known and _finite(value) is None)


def _clamp_unit(value: Any, fallback: float) -> float:
    number = _finite(value)
    if number is None:
        return fallback
    return min(max(number, 0.0), 1.0)


@dataclass(frozen=True, slots=True)
class RiskLimits:
    """Risk guardrails expressed as fractions of account balance.

    Attributes:
        max_portfolio_risk: Aggregate stop-distance risk allowed across positions.
        max_position_size: Largest single position value relative to balance.
        max_drawdown: Drawdown that raises a critical alert.
        max_daily_loss: Daily realised loss that blocks new trades.
        max_open_positions: Number of simultaneously open positions.
        correlation_limit: Correlation above which positions are treated as one.
        risk_per_trade: Balance fraction risked on a single trade.
        max_leverage: Leverage ceiling, never below ``1``.
        stop_loss_percentage: Default stop distance from entry.

    Fractional attributes are clamped into ``[0, 1]`` rather than rejected, so a
    ``max_position_size`` of ``1.5`` becomes ``1.0``.
    """

    max_portfolio_risk: float = 0.10
    max_position_size: float = 0.10
    max_drawdown: float = 0.15
    max_daily_loss: float = 0.05
    max_open_positions: int = 10
    correlation_limit: float = 0.70
    risk_per_trade: float = 0.02
    max_leverage: float = 3.0
    stop_loss_percentage: float = 0.02

    def __post_init__(self) -> None:
        defaults = RiskLimits.__dataclass_fields__
        for name in _FRACTIONAL_FIELDS:
            object.__setattr__(
                self, name, _clamp_unit(getattr(self, name), defaults[name].default)
            )
        open_positions = _finite(self.max_open_positions)
        if open_positions is None:
            open_positions = defaults["max_open_positions"].default
        object.__setattr__(self, "max_open_positions", max(int(open_positions), 0))
        leverage = _finite(self.max_leverage)
        if leverage is None:
            leverage = defaults["max_leverage"].default
        object.__setattr__(self, "max_leverage", max(leverage, 1.0))

    def merged(self, changes: Mapping[str, Any]) -> "RiskLimits":
        """Return a copy with ``changes`` applied.

        Unknown keys and values that are not finite numbers are ignored, so the
        current limit stays in force.
        """

        known = {f.name for f in fields(self)}
        accepted = {
            key: value
            for key, value in changes.items()
            if key in known and _finite(value) is not None
        }
        return replace(self, **accepted)

    def to_dict(self) -> dict[str, float | int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


__all__ = ["RiskLimits", "non_numeric_fields"]
