# SPDX-License-Identifier: MIT
from __future__ import annotations

import math

import pytest

from risk.limits import RiskLimits, non_numeric_fields
from risk.manager import RiskManager
from risk.models import AlertKind, AlertSeverity, RiskMetrics


def _position(symbol: str, size: float, entry: float, unrealized: float = 0.0, realized: float = 0.0) -> dict:
    return {
        "product": {"symbol": symbol, "id": 27},
        "size": size,
        "entry_price": entry,
        "unrealized_pnl": unrealized,
        "realized_pnl": realized,
    }


class TestValidatePositionSize:
    def test_position_within_limit_is_approved(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_position_size("BTC-USD", 0.05, 50_000, 100_000)

        assert verdict.approved
        assert verdict.reason is None
        assert verdict.risk_score == pytest.approx(2.5)

    def test_position_above_limit_is_rejected(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_position_size("BTC-USD", 0.25, 50_000, 100_000)

        assert not verdict.approved
        assert verdict.reason == "Position size exceeds limit"

    def test_position_exactly_at_limit_is_approved(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_position_size("BTC-USD", 0.2, 50_000, 100_000)

        assert verdict.approved

    @pytest.mark.parametrize(
        ("size", "price", "balance", "reason"),
        [
            (0.1, 100.0, 0.0, "Insufficient balance"),
            (0.1, 100.0, -5.0, "Insufficient balance"),
            (-1.0, 100.0, 1_000.0, "Invalid position size"),
            (0.0, 100.0, 1_000.0, "Invalid position size"),
            (0.1, 0.0, 1_000.0, "Invalid price"),
            (0.1, math.nan, 1_000.0, "Invalid price"),
            ("abc", 100.0, 1_000.0, "Invalid position size"),
        ],
    )
    def test_invalid_inputs_are_rejected_with_reason(
        self, risk_manager: RiskManager, size, price, balance, reason
    ) -> None:
        verdict = risk_manager.validate_position_size("BTC-USD", size, price, balance)

        assert not verdict.approved
        assert verdict.reason == reason


class TestValidateTrade:
    def test_rejects_unknown_side(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_trade("BTCUSD", "sideways", 0.01, 45_000, balance=10_000)

        assert verdict.reason == "Invalid side"

    def test_rejects_blank_symbol(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_trade("  ", "long", 0.01, 45_000, balance=10_000)

        assert verdict.reason == "Invalid symbol"

    def test_rejects_when_open_position_capacity_is_used(self) -> None:
        manager = RiskManager(RiskLimits(max_open_positions=2))
        positions = [_position("BTCUSD", 0.01, 45_000), _position("ETHUSD", 1, 2_500)]

        verdict = manager.validate_trade("SOLUSD", "buy", 1, 100, positions=positions, balance=10_000)

        assert not verdict.approved
        assert verdict.reason == "Maximum open positions reached (2/2)"

    def test_delegates_to_position_size_check(self, risk_manager: RiskManager) -> None:
        verdict = risk_manager.validate_trade("BTCUSD", "long", 1, 45_000, balance=10_000)

        assert verdict.reason == "Position size exceeds limit"

    def test_records_outcome_metric(self, risk_manager: RiskManager, metrics, registry) -> None:
        risk_manager.validate_trade("BTCUSD", "long", 0.01, 45_000, balance=10_000)
        risk_manager.validate_trade("BTCUSD", "long", 1, 45_000, balance=10_000)

        approved = registry.get_sample_value(
            "deltadesk_risk_validation_total", {"symbol": "BTCUSD", "outcome": "approved"}
        )
        rejected = registry.get_sample_value(
            "deltadesk_risk_validation_total", {"symbol": "BTCUSD", "outcome": "rejected"}
        )
        assert approved == 1.0
        assert rejected == 1.0


class TestShouldAllowTrade:
    def test_blocks_after_daily_loss_limit(self, risk_manager: RiskManager) -> None:
        risk_manager.update_daily_pnl(-600)

        verdict = risk_manager.should_allow_trade("BTCUSD", "long", 0.01, 45_000, [], 10_000)

        assert not verdict.approved
        assert verdict.reason == "Daily loss limit reached"

    def test_loss_exactly_at_limit_still_allows(self, risk_manager: RiskManager) -> None:
        risk_manager.update_daily_pnl(-500)

        verdict = risk_manager.should_allow_trade("BTCUSD", "long", 0.01, 45_000, [], 10_000)

        assert verdict.approved

    def test_reset_daily_pnl_clears_block(self, risk_manager: RiskManager) -> None:
        risk_manager.update_daily_pnl(-2_000)
        risk_manager.reset_daily_pnl()

        assert risk_manager.daily_pnl == 0.0
        assert risk_manager.should_allow_trade("BTCUSD", "long", 0.01, 45_000, [], 10_000).approved


class TestRiskMetrics:
    @pytest.mark.parametrize("balance", [0.0, 1.0, 10_000.0])
    def test_empty_positions_yield_zero_metrics(self, risk_manager: RiskManager, balance: float) -> None:
        assert risk_manager.get_risk_metrics([], balance) == RiskMetrics.zero()

    def test_exposure_risk_and_drawdown(self, risk_manager: RiskManager) -> None:
        positions = [
            _position("BTCUSD", 0.1, 45_000, unrealized=-300),
            _position("ETHUSD", -2, 2_500, unrealized=100, realized=-50),
        ]

        metrics = risk_manager.get_risk_metrics(positions, 20_000)

        assert metrics.total_exposure == pytest.approx(9_500)
        assert metrics.portfolio_risk == pytest.approx(9_500 * 0.02 / 20_000 * 100)
        assert metrics.unrealized_pnl == pytest.approx(-200)
        assert metrics.realized_pnl == pytest.approx(-50)
        assert metrics.current_drawdown == pytest.approx(250 / 20_000 * 100)
        assert metrics.value_at_risk == pytest.approx(9_500 * 0.02 * 1.645)

    def test_malformed_entries_are_coerced(self, risk_manager: RiskManager) -> None:
        positions = [
            None,
            "garbage",
            {"product": None, "size": "abc", "entry_price": math.nan, "unrealized_pnl": "12.5"},
            _position("BTCUSD", 0.1, 45_000, unrealized=-10),
        ]

        metrics = risk_manager.get_risk_metrics(positions, 10_000)

        assert metrics.unrealized_pnl == pytest.approx(2.5)
        assert metrics.total_exposure == pytest.approx(4_500)

    def test_max_drawdown_keeps_observed_peak(self, risk_manager: RiskManager) -> None:
        risk_manager.get_risk_metrics([_position("BTCUSD", 0.1, 45_000, unrealized=-1_000)], 10_000)
        metrics = risk_manager.get_risk_metrics([_position("BTCUSD", 0.1, 45_000, unrealized=-100)], 10_000)

        assert metrics.current_drawdown == pytest.approx(1.0)
        assert metrics.max_drawdown == pytest.approx(10.0)

    def test_history_statistics(self, risk_manager: RiskManager) -> None:
        history = [100.0, -50.0, 200.0, 0.0, -25.0]

        metrics = risk_manager.calculate_risk_metrics(
            [_position("BTCUSD", 0.1, 45_000)], 10_000, pnl_history=history
        )

        assert metrics.win_rate == pytest.approx(50.0)
        assert metrics.sharpe_ratio > 0
        assert metrics.max_drawdown > 0


class TestCheckRiskLimits:
    def test_drawdown_exactly_at_limit_does_not_alert(self, risk_manager: RiskManager) -> None:
        metrics = RiskMetrics(current_drawdown=15.0)

        assert risk_manager.check_risk_limits(metrics, [], 10_000) == []

    def test_drawdown_above_limit_alerts_critical(self, risk_manager: RiskManager) -> None:
        alerts = risk_manager.check_risk_limits(RiskMetrics(current_drawdown=16.0), [], 10_000)

        assert [alert.kind for alert in alerts] == [AlertKind.DRAWDOWN]
        assert alerts[0].severity is AlertSeverity.CRITICAL
        assert alerts[0].threshold == pytest.approx(15.0)

    def test_portfolio_daily_loss_and_position_alerts(self) -> None:
        manager = RiskManager(RiskLimits(max_open_positions=1))
        manager.update_daily_pnl(-1_000)
        positions = [_position("BTCUSD", 0.1, 45_000), _position("ETHUSD", 0.1, 2_500)]

        alerts = manager.check_risk_limits(RiskMetrics(portfolio_risk=12.0), positions, 10_000)

        kinds = {alert.kind for alert in alerts}
        assert kinds == {
            AlertKind.PORTFOLIO_RISK,
            AlertKind.DAILY_LOSS,
            AlertKind.MAX_POSITIONS,
            AlertKind.POSITION_SIZE,
        }
        oversized = [alert for alert in alerts if alert.kind is AlertKind.POSITION_SIZE]
        assert len(oversized) == 1
        assert "BTCUSD" in oversized[0].message

    def test_alert_history_is_newest_first_and_bounded(self) -> None:
        manager = RiskManager(max_alert_history=3)
        for drawdown in (16.0, 17.0, 18.0, 19.0):
            manager.check_risk_limits(RiskMetrics(current_drawdown=drawdown), [], 10_000)

        alerts = manager.get_alerts()

        assert [alert.current_value for alert in alerts] == [19.0, 18.0, 17.0]
        assert [alert.current_value for alert in manager.get_alerts(1)] == [19.0]

        manager.clear_alerts()
        assert manager.get_alerts() == []

    def test_get_alerts_returns_a_copy(self, risk_manager: RiskManager) -> None:
        risk_manager.check_risk_limits(RiskMetrics(current_drawdown=20.0), [], 10_000)

        risk_manager.get_alerts().clear()

        assert len(risk_manager.get_alerts()) == 1


class TestPriceLevels:
    def test_stop_loss_by_side(self, risk_manager: RiskManager) -> None:
        assert risk_manager.calculate_stop_loss(45_000, "long") == pytest.approx(44_100)
        assert risk_manager.calculate_stop_loss(45_000, "short") == pytest.approx(45_900)
        assert risk_manager.calculate_stop_loss(0, "long") == 0.0

    def test_take_profit_uses_reward_ratio(self, risk_manager: RiskManager) -> None:
        assert risk_manager.calculate_take_profit(45_000, 44_100, "long", 2.0) == pytest.approx(46_800)
        assert risk_manager.calculate_take_profit(45_000, 45_900, "short", 2.0) == pytest.approx(43_200)

    def test_optimal_position_size_is_capped(self, risk_manager: RiskManager) -> None:
        # 2% of 10k risked over a 900 stop distance, capped at 10% of balance.
        size = risk_manager.calculate_optimal_position_size(10_000, 45_000, 44_100)

        assert size == pytest.approx(1_000 / 45_000)

    def test_optimal_position_size_with_zero_stop_distance(self, risk_manager: RiskManager) -> None:
        assert risk_manager.calculate_optimal_position_size(10_000, 45_000, 45_000) == 0.0


class TestLimits:
    def test_update_limits_applies_immediately(self, risk_manager: RiskManager) -> None:
        risk_manager.update_limits({"max_position_size": 0.5})

        assert risk_manager.validate_position_size("BTC-USD", 0.25, 50_000, 100_000).approved

    def test_update_limits_clamps_and_ignores_unknown(self, risk_manager: RiskManager) -> None:
        limits = risk_manager.update_risk_limits(max_position_size=1.5, max_leverage=0.2, bogus=1)

        assert limits.max_position_size == 1.0
        assert limits.max_leverage == 1.0
        assert "bogus" not in limits.to_dict()

    def test_defaults(self) -> None:
        limits = RiskLimits()

        assert limits.to_dict() == {
            "max_portfolio_risk": 0.10,
            "max_position_size": 0.10,
            "max_drawdown": 0.15,
            "max_daily_loss": 0.05,
            "max_open_positions": 10,
            "correlation_limit": 0.70,
            "risk_per_trade": 0.02,
            "max_leverage": 3.0,
            "stop_loss_percentage": 0.02,
        }

    def test_unparsable_values_keep_the_current_limit(self, metrics) -> None:
        manager = RiskManager(RiskLimits(max_drawdown=0.30, max_open_positions=3), metrics=metrics)

        limits = manager.update_limits(
            {"max_drawdown": "abc", "max_open_positions": float("inf"), "max_leverage": float("nan")}
        )

        assert limits.max_drawdown == 0.30
        assert limits.max_open_positions == 3
        assert limits.max_leverage == 3.0

    def test_non_finite_construction_falls_back_to_defaults(self) -> None:
        limits = RiskLimits(max_open_positions=float("inf"), max_leverage=float("nan"), max_drawdown=None)

        assert limits.max_open_positions == 10
        assert limits.max_leverage == 3.0
        assert limits.max_drawdown == 0.15
        assert non_numeric_fields({"max_drawdown": "x", "max_leverage": 2, "bogus": "y"}) == ["max_drawdown"]
