"""Portfolio risk manager gating trades and raising limit alerts.

The manager is constructed once by the hosting application and shared by
reference. Validation methods are pure with respect to their arguments and
the current :class:`RiskLimits`; only alert history, the daily P&L
accumulator and the observed drawdown peak are stateful.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Mapping, Sequence

from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from domain.position import PositionSide, coerce_float, normalize_positions
from interfaces.execution import PositionInput, RiskGate
from risk.limits import RiskLimits, non_numeric_fields
from risk.models import AlertKind, AlertSeverity, RiskAlert, RiskMetrics, TradeValidation
from risk.sizing import (
    historical_max_drawdown,
    optimal_position_size,
    parse_side,
    sharpe_ratio,
    stop_loss_price,
    take_profit_price,
    value_at_risk,
    win_rate,
)

MAX_ALERT_HISTORY = 50


class RiskManager(RiskGate):
    """Validate trades against :class:`RiskLimits` and track limit breaches."""

    def __init__(
        self,
        limits: RiskLimits | None = None,
        *,
        metrics: MetricsCollector | None = None,
        max_alert_history: int = MAX_ALERT_HISTORY,
    ) -> None:
        self._limits = limits or RiskLimits()
        self._alerts: deque[RiskAlert] = deque(maxlen=max(1, int(max_alert_history)))
        self._daily_pnl = 0.0
        self._peak_drawdown = 0.0
        self._logger = get_logger(__name__)
        self._metrics = metrics or get_metrics_collector()

    @property
    def limits(self) -> RiskLimits:
        return self._limits

    @property
    def daily_pnl(self) -> float:
        return self._daily_pnl

    # ------------------------------------------------------------------
    # Validation
    def validate_position_size(
        self, symbol: str, size: float, price: float, balance: float
    ) -> TradeValidation:
        """Check a prospective position against ``max_position_size``.

        Rejections carry one of ``"Insufficient balance"``,
        ``"Invalid position size"``, ``"Invalid price"`` or
        ``"Position size exceeds limit"``. Approvals carry the position value as
        a percentage of balance in ``risk_score``.
        """

        balance_value = coerce_float(balance)
        size_value = coerce_float(size)
        price_value = coerce_float(price)
        if balance_value <= 0:
            return TradeValidation.reject("Insufficient balance")
        if size_value <= 0:
            return TradeValidation.reject("Invalid position size")
        if price_value <= 0:
            return TradeValidation.reject("Invalid price")

        position_fraction = size_value * price_value / balance_value
        if position_fraction > self._limits.max_position_size:
            return TradeValidation.reject("Position size exceeds limit")
        return TradeValidation(approved=True, risk_score=position_fraction * 100.0)

    def validate_trade(
        self,
        symbol: str,
        side: PositionSide | str,
        size: float,
        price: float,
        strategy_tag: str | None = None,
        positions: PositionInput | None = None,
        balance: float = 0.0,
    ) -> TradeValidation:
        """Validate parameters, open-position capacity and position size."""

        verdict = self._evaluate_trade(symbol, side, size, price, positions, balance)
        self._record_verdict(symbol, verdict, strategy_tag=strategy_tag, side=side)
        return verdict

    def should_allow_trade(
        self,
        symbol: str,
        side: PositionSide | str,
        size: float,
        price: float,
        positions: PositionInput | None = None,
        balance: float = 0.0,
    ) -> TradeValidation:
        """Like :meth:`validate_trade` but also blocks once the daily loss limit is hit."""

        balance_value = coerce_float(balance)
        if balance_value > 0 and self._daily_loss_breached(balance_value):
            verdict = TradeValidation.reject("Daily loss limit reached")
            self._record_verdict(symbol, verdict, side=side)
            return verdict
        return self.validate_trade(symbol, side, size, price, None, positions, balance)

    def _evaluate_trade(
        self,
        symbol: str,
        side: PositionSide | str,
        size: float,
        price: float,
        positions: PositionInput | None,
        balance: float,
    ) -> TradeValidation:
        if not isinstance(symbol, str) or not symbol.strip():
            return TradeValidation.reject("Invalid symbol")
        if parse_side(side) is None:
            return TradeValidation.reject("Invalid side")
        if coerce_float(size) <= 0:
            return TradeValidation.reject("Invalid position size")
        if coerce_float(price) <= 0:
            return TradeValidation.reject("Invalid price")

        open_positions = len(normalize_positions(positions))
        if open_positions >= self._limits.max_open_positions:
            return TradeValidation.reject(
                f"Maximum open positions reached ({open_positions}/{self._limits.max_open_positions})"
            )
        return self.validate_position_size(symbol, size, price, balance)

    def _record_verdict(
        self,
        symbol: str,
        verdict: TradeValidation,
        *,
        strategy_tag: str | None = None,
        side: Any = None,
    ) -> None:
        outcome = "approved" if verdict.approved else "rejected"
        self._metrics.record_risk_validation(str(symbol or ""), outcome)
        if not verdict.approved:
            self._logger.warning(
                "Trade rejected by risk manager",
                symbol=symbol,
                side=str(side),
                reason=verdict.reason,
                strategy=strategy_tag,
            )

    def _daily_loss_breached(self, balance: float) -> bool:
        return self._daily_pnl < -(self._limits.max_daily_loss * balance)

    # ------------------------------------------------------------------
    # Metrics
    def get_risk_metrics(self, positions: PositionInput | None, balance: float) -> RiskMetrics:
        """Derive exposure, portfolio risk and drawdown from a positions snapshot.

        Malformed entries contribute zero; an empty snapshot or a non-positive
        balance yields :meth:`RiskMetrics.zero`.
        """

        return self.calculate_risk_metrics(positions, balance)

    def calculate_risk_metrics(
        self,
        positions: PositionInput | None,
        balance: float,
        pnl_history: Sequence[float] | None = None,
    ) -> RiskMetrics:
        """Full metrics computation, optionally using a per-period P&L history."""

        balance_value = coerce_float(balance)
        snapshots = normalize_positions(positions)
        if balance_value <= 0 or not snapshots:
            return RiskMetrics.zero()

        total_exposure = sum(position.notional for position in snapshots)
        unrealized = sum(position.unrealized_pnl for position in snapshots)
        realized = sum(position.realized_pnl for position in snapshots)
        stop_distance = self._limits.stop_loss_percentage
        portfolio_risk = total_exposure * stop_distance / balance_value * 100.0
        current_drawdown = max(0.0, -(unrealized + realized)) / balance_value * 100.0
        self._peak_drawdown = max(self._peak_drawdown, current_drawdown)
        max_drawdown = max(
            self._peak_drawdown, historical_max_drawdown(pnl_history, balance_value)
        )

        metrics = RiskMetrics(
            total_exposure=total_exposure,
            portfolio_risk=portfolio_risk,
            current_drawdown=current_drawdown,
            max_drawdown=max_drawdown,
            unrealized_pnl=unrealized,
            realized_pnl=realized,
            sharpe_ratio=sharpe_ratio(pnl_history),
            win_rate=win_rate(pnl_history),
            value_at_risk=value_at_risk(total_exposure, pnl_history, balance_value),
        )
        self._metrics.set_portfolio_risk(metrics.portfolio_risk)
        self._metrics.set_drawdown(metrics.current_drawdown)
        return metrics

    # ------------------------------------------------------------------
    # Alerts
    def check_risk_limits(
        self,
        metrics: RiskMetrics,
        positions: PositionInput | None = None,
        balance: float = 0.0,
    ) -> list[RiskAlert]:
        """Compare ``metrics`` against the limits and return newly raised alerts.

        Every comparison is strictly greater-than: a value sitting exactly on
        its threshold does not alert.
        """

        limits = self._limits
        balance_value = coerce_float(balance)
        snapshots = normalize_positions(positions)
        alerts: list[RiskAlert] = []

        portfolio_threshold = limits.max_portfolio_risk * 100.0
        if metrics.portfolio_risk > portfolio_threshold:
            alerts.append(
                RiskAlert(
                    kind=AlertKind.PORTFOLIO_RISK,
                    severity=AlertSeverity.CRITICAL,
                    message=(
                        f"Portfolio risk {metrics.portfolio_risk:.2f}% exceeds "
                        f"limit of {portfolio_threshold:.2f}%"
                    ),
                    metric="portfolio_risk",
                    current_value=metrics.portfolio_risk,
                    threshold=portfolio_threshold,
                )
            )

        drawdown_threshold = limits.max_drawdown * 100.0
        if metrics.current_drawdown > drawdown_threshold:
            alerts.append(
                RiskAlert(
                    kind=AlertKind.DRAWDOWN,
                    severity=AlertSeverity.CRITICAL,
                    message=(
                        f"Drawdown {metrics.current_drawdown:.2f}% exceeds "
                        f"limit of {drawdown_threshold:.2f}%"
                    ),
                    metric="current_drawdown",
                    current_value=metrics.current_drawdown,
                    threshold=drawdown_threshold,
                )
            )

        if balance_value > 0 and self._daily_loss_breached(balance_value):
            loss_threshold = -(limits.max_daily_loss * balance_value)
            alerts.append(
                RiskAlert(
                    kind=AlertKind.DAILY_LOSS,
                    severity=AlertSeverity.CRITICAL,
                    message=(
                        f"Daily P&L {self._daily_pnl:.2f} breaches loss limit of "
                        f"{loss_threshold:.2f}"
                    ),
                    metric="daily_pnl",
                    current_value=self._daily_pnl,
                    threshold=loss_threshold,
                )
            )

        if len(snapshots) > limits.max_open_positions:
            alerts.append(
                RiskAlert(
                    kind=AlertKind.MAX_POSITIONS,
                    severity=AlertSeverity.WARNING,
                    message=(
                        f"{len(snapshots)} open positions exceed limit of "
                        f"{limits.max_open_positions}"
                    ),
                    metric="open_positions",
                    current_value=float(len(snapshots)),
                    threshold=float(limits.max_open_positions),
                )
            )

        if balance_value > 0:
            size_threshold = limits.max_position_size * 100.0
            for position in snapshots:
                position_pct = position.notional / balance_value * 100.0
                if position_pct > size_threshold:
                    alerts.append(
                        RiskAlert(
                            kind=AlertKind.POSITION_SIZE,
                            severity=AlertSeverity.WARNING,
                            message=(
                                f"Position {position.symbol or '<unknown>'} is "
                                f"{position_pct:.2f}% of balance, limit {size_threshold:.2f}%"
                            ),
                            metric="position_size",
                            current_value=position_pct,
                            threshold=size_threshold,
                        )
                    )

        for alert in alerts:
            self._alerts.append(alert)
            self._metrics.record_risk_alert(alert.kind.value, alert.severity.value)
            self._logger.warning(
                "Risk alert raised",
                kind=alert.kind.value,
                severity=alert.severity.value,
                current_value=alert.current_value,
                threshold=alert.threshold,
            )
        return alerts

    def get_alerts(self, limit: int | None = None) -> list[RiskAlert]:
        """Return alert history, newest first."""

        alerts = list(reversed(self._alerts))
        if limit is not None:
            return alerts[: max(int(limit), 0)]
        return alerts

    def clear_alerts(self) -> None:
        self._alerts.clear()

    # ------------------------------------------------------------------
    # Price levels and sizing
    def calculate_stop_loss(self, entry_price: float, side: PositionSide | str) -> float:
        return stop_loss_price(
            coerce_float(entry_price), side, self._limits.stop_loss_percentage
        )

    def calculate_take_profit(
        self,
        entry_price: float,
        stop_loss: float,
        side: PositionSide | str,
        risk_reward_ratio: float = 2.0,
    ) -> float:
        return take_profit_price(
            coerce_float(entry_price), coerce_float(stop_loss), side, risk_reward_ratio
        )

    def calculate_optimal_position_size(
        self,
        balance: float,
        entry_price: float,
        stop_loss: float,
        risk_per_trade_pct: float | None = None,
    ) -> float:
        """Return the size risking ``risk_per_trade_pct`` percent of balance on a stop-out.

        Defaults to the configured ``risk_per_trade`` and is capped by
        ``max_position_size``.
        """

        pct = (
            self._limits.risk_per_trade * 100.0
            if risk_per_trade_pct is None
            else coerce_float(risk_per_trade_pct)
        )
        return optimal_position_size(
            coerce_float(balance),
            coerce_float(entry_price),
            coerce_float(stop_loss),
            pct,
            self._limits.max_position_size,
        )

    # ------------------------------------------------------------------
    # Mutation
    def update_limits(
        self, changes: Mapping[str, Any] | None = None, **overrides: Any
    ) -> RiskLimits:
        """Merge ``changes`` into the current limits and return the new limits."""

        merged = {**(changes or {}), **overrides}
        updated = self._limits.merged(merged)
        ignored = sorted(set(merged) - set(updated.to_dict()))
        if ignored:
            self._logger.warning("Ignoring unknown risk limit fields", fields=ignored)
        rejected = non_numeric_fields(merged)
        if rejected:
            self._logger.warning("Ignoring non-numeric risk limit values", fields=rejected)
        self._limits = updated
        self._logger.info("Risk limits updated", **updated.to_dict())
        return updated

    update_risk_limits = update_limits

    def update_daily_pnl(self, delta: float) -> float:
        self._daily_pnl += coerce_float(delta)
        return self._daily_pnl

    def reset_daily_pnl(self) -> None:
        self._daily_pnl = 0.0


__all__ = ["MAX_ALERT_HISTORY", "RiskManager"]
