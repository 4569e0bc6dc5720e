"""Price-level, sizing and portfolio statistics helpers."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from domain.position import PositionSide

VAR_Z_95 = 1.645
DEFAULT_VOLATILITY = 0.02
TRADING_DAYS = 365


def parse_side(side: PositionSide | str | None) -> PositionSide | None:
    """Resolve ``long``/``short`` (or ``buy``/``sell``) into a :class:`PositionSide`."""

    if isinstance(side, PositionSide):
        return side
    if not isinstance(side, str):
        return None
    normalized = side.strip().lower()
    if normalized in {"long", "buy"}:
        return PositionSide.LONG
    if normalized in {"short", "sell"}:
        return PositionSide.SHORT
    return None


def stop_loss_price(entry_price: float, side: PositionSide | str, stop_loss_percentage: float) -> float:
    resolved = parse_side(side)
    if resolved is None or not entry_price > 0:
        return 0.0
    if resolved is PositionSide.LONG:
        return entry_price * (1 - stop_loss_percentage)
    return entry_price * (1 + stop_loss_percentage)


def take_profit_price(
    entry_price: float,
    stop_loss: float,
    side: PositionSide | str,
    risk_reward_ratio: float = 2.0,
) -> float:
    resolved = parse_side(side)
    if resolved is None or not entry_price > 0:
        return 0.0
    reward = abs(entry_price - stop_loss) * risk_reward_ratio
    if resolved is PositionSide.LONG:
        return entry_price + reward
    return entry_price - reward


def optimal_position_size(
    balance: float,
    entry_price: float,
    stop_loss: float,
    risk_per_trade_pct: float,
    max_position_fraction: float,
) -> float:
    """Size a trade so a stop-out loses ``risk_per_trade_pct`` percent of balance.

    The result is capped so the position value never exceeds
    ``balance * max_position_fraction``.
    """

    if not (balance > 0 and entry_price > 0) or risk_per_trade_pct <= 0:
        return 0.0
    price_risk = abs(entry_price - stop_loss)
    if price_risk == 0 or not math.isfinite(price_risk):
        return 0.0
    risk_amount = balance * (risk_per_trade_pct / 100.0)
    size = risk_amount / price_risk
    max_size = balance * max_position_fraction / entry_price
    return max(min(size, max_size), 0.0)


def _clean(series: Sequence[float] | None) -> np.ndarray:
    if not series:
        return np.empty(0, dtype=float)
    values = np.asarray(series, dtype=float)
    return values[np.isfinite(values)]


def sharpe_ratio(pnl_history: Sequence[float] | None, periods: int = TRADING_DAYS) -> float:
    """Annualised Sharpe ratio of per-period P&L with a zero risk-free rate."""

    values = _clean(pnl_history)
    if values.size < 2:
        return 0.0
    std = float(values.std(ddof=1))
    if std == 0.0:
        return 0.0
    return float(values.mean() / std * math.sqrt(periods))


def win_rate(pnl_history: Sequence[float] | None) -> float:
    """Percentage of non-flat periods that closed with a profit."""

    values = _clean(pnl_history)
    decided = values[values != 0.0]
    if decided.size == 0:
        return 0.0
    return float((decided > 0).sum() / decided.size * 100.0)


def historical_max_drawdown(pnl_history: Sequence[float] | None, balance: float) -> float:
    """Largest peak-to-trough equity decline, as a percentage of the peak.

    Equity is reconstructed by assuming ``balance`` is the ending equity of the
    supplied P&L sequence.
    """

    values = _clean(pnl_history)
    if values.size == 0 or balance <= 0:
        return 0.0
    start = balance - float(values.sum())
    equity = start + np.concatenate(([0.0], np.cumsum(values)))
    peaks = np.maximum.accumulate(equity)
    valid = peaks > 0
    if not valid.any():
        return 0.0
    drawdowns = (peaks[valid] - equity[valid]) / peaks[valid]
    return float(drawdowns.max() * 100.0)


def value_at_risk(
    exposure: float,
    pnl_history: Sequence[float] | None = None,
    balance: float = 0.0,
    *,
    default_volatility: float = DEFAULT_VOLATILITY,
    z_score: float = VAR_Z_95,
) -> float:
    """One-period parametric VaR of ``exposure``.

    Volatility is estimated from ``pnl_history`` relative to ``balance`` when at
    least two observations exist, otherwise ``default_volatility`` is used.
    """

    if exposure <= 0:
        return 0.0
    volatility = default_volatility
    values = _clean(pnl_history)
    if values.size >= 2 and balance > 0:
        estimated = float((values / balance).std(ddof=1))
        if estimated > 0:
            volatility = estimated
    return float(exposure * volatility * z_score)


__all__ = [
    "DEFAULT_VOLATILITY",
    "VAR_Z_95",
    "historical_max_drawdown",
    "optimal_position_size",
    "parse_side",
    "sharpe_ratio",
    "stop_loss_price",
    "take_profit_price",
    "value_at_risk",
    "win_rate",
]
