# SPDX-License-Identifier: MIT
from __future__ import annotations

import asyncio
from datetime import datetime, time, timezone

import pytest

from application.agent import (
    AgentConfig,
    AgentStatus,
    AutonomousAgent,
    CircuitBreakers,
    DecisionAction,
    TradingHours,
)
from domain.errors import AgentStateError
from domain.position import PositionSide, PositionSnapshot
from domain.signal import TradeSignal
from execution.take_profit import TakeProfitSystem
from tests.fakes import ScriptedAnalysisEngine, StaticMarketState, buy_signal, market_state


@pytest.fixture
def take_profit(metrics, clock) -> TakeProfitSystem:
    return TakeProfitSystem(metrics=metrics, clock=clock)


@pytest.fixture
def make_agent(risk_manager, order_manager, take_profit, metrics, clock):
    def factory(*results, state=None, **config) -> AutonomousAgent:
        return AutonomousAgent(
            risk_manager,
            order_manager,
            StaticMarketState(state),
            ScriptedAnalysisEngine(results or None),
            take_profit=take_profit,
            config=AgentConfig(**config),
            metrics=metrics,
            clock=clock,
        )

    return factory


def _losing_position(unrealized: float) -> PositionSnapshot:
    return PositionSnapshot(
        symbol="BTCUSD", size=0.1, entry_price=45_000, mark_price=44_000, unrealized_pnl=unrealized
    )


class TestConfiguration:
    def test_trading_hours_window(self) -> None:
        hours = TradingHours("09:00", "17:00")

        assert hours.contains(time(9, 0))
        assert hours.contains(datetime(2025, 1, 6, 17, 0, 59, tzinfo=timezone.utc))
        assert not hours.contains(time(17, 1))

    def test_trading_hours_wrap_midnight(self) -> None:
        hours = TradingHours("22:00", "02:00")

        assert hours.contains(time(23, 30))
        assert hours.contains(time(1, 0))
        assert not hours.contains(time(12, 0))

    def test_invalid_values_rejected(self) -> None:
        with pytest.raises(ValueError):
            TradingHours("9am", "17:00")
        with pytest.raises(ValueError):
            AgentConfig(confidence_threshold=1.5)
        with pytest.raises(ValueError):
            AgentConfig(analysis_interval=0)

    def test_nested_mappings_are_coerced(self) -> None:
        config = AgentConfig(
            trading_hours={"start": "08:00", "end": "20:00"},
            circuit_breakers={"max_consecutive_losses": 3},
        )

        assert config.trading_hours == TradingHours("08:00", "20:00")
        assert config.circuit_breakers == CircuitBreakers(max_consecutive_losses=3)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_pause_resume_stop(self, make_agent) -> None:
        agent = make_agent()
        seen = []
        agent.subscribe(lambda state: seen.append(state.status))

        agent.start()
        agent.start()
        agent.pause()
        assert await agent.run_cycle() is None
        agent.resume()
        await agent.stop()

        assert agent.status is AgentStatus.STOPPED
        assert seen == [AgentStatus.RUNNING, AgentStatus.PAUSED, AgentStatus.RUNNING, AgentStatus.STOPPED]
        assert agent.get_state().started_at is not None

    @pytest.mark.asyncio
    async def test_illegal_transitions(self, make_agent) -> None:
        agent = make_agent()

        with pytest.raises(AgentStateError):
            agent.pause()
        with pytest.raises(AgentStateError):
            agent.resume()
        assert await agent.run_cycle() is None

    @pytest.mark.asyncio
    async def test_disabled_agent_cannot_start(self, make_agent) -> None:
        agent = make_agent(enabled=False)

        with pytest.raises(AgentStateError):
            agent.start()
        assert agent.status is AgentStatus.STOPPED

    @pytest.mark.asyncio
    async def test_schedule_runs_cycles(self, make_agent) -> None:
        agent = make_agent(analysis_interval=0.01, confidence_threshold=0.9)

        agent.start()
        await asyncio.sleep(0.05)
        await agent.stop()

        decisions = agent.get_decisions(limit=None)
        assert decisions
        assert {d.action for d in decisions} == {DecisionAction.HOLD}


class TestDecisions:
    @pytest.mark.asyncio
    async def test_trade_places_order_and_registers_take_profit(
        self, make_agent, order_manager, take_profit, registry
    ) -> None:
        agent = make_agent()
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.TRADE
        assert decision.symbol == "BTCUSD"
        assert decision.order_id == "1"
        assert decision.client_order_id.startswith("agent-")
        assert decision.reasoning == "BUY signal with 85.0% confidence: momentum breakout"
        order = order_manager.get_order("1")
        assert order.size == pytest.approx(0.02)
        assert order.limit_price == 45_000
        assert order.product_id == 27
        position = take_profit.get_position("1")
        assert position.side is PositionSide.LONG
        assert position.strategy.id == "balanced"
        state = agent.get_state()
        assert (state.daily_trades, state.total_trades) == (1, 1)
        assert state.last_analysis is not None
        assert registry.get_sample_value("deltadesk_agent_decisions_total", {"action": "TRADE"}) == 1.0
        await agent.stop()

    @pytest.mark.asyncio
    async def test_size_is_capped_by_optimal_size(self, make_agent, order_manager) -> None:
        agent = make_agent(buy_signal(position_size=2.0, stop_loss=30_000), state=market_state(balance=1_000_000))
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.TRADE
        # 2% of balance over a 15000 stop distance.
        assert order_manager.get_order("1").size == pytest.approx(20_000 / 15_000)
        await agent.stop()

    @pytest.mark.asyncio
    async def test_sell_signal_opens_short(self, make_agent, order_manager, take_profit) -> None:
        agent = make_agent(buy_signal(signal=TradeSignal.SELL, stop_loss=45_900))
        agent.start()

        await agent.run_cycle()

        assert order_manager.get_order("1").side.value == "sell"
        assert take_profit.get_position("1").side is PositionSide.SHORT
        await agent.stop()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("result", "action", "reasoning"),
        [
            (buy_signal(confidence=0.5), DecisionAction.HOLD, "Confidence too low: 50.0%"),
            (buy_signal(signal=TradeSignal.HOLD), DecisionAction.HOLD, "Analysis suggests holding"),
            (
                buy_signal(position_size=1.0),
                DecisionAction.SKIP,
                "Risk check failed: Position size exceeds limit",
            ),
            (buy_signal(stop_loss=45_000), DecisionAction.SKIP, "Optimal position size is zero"),
        ],
    )
    async def test_non_trading_outcomes(self, make_agent, order_manager, result, action, reasoning) -> None:
        agent = make_agent(result)
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is action
        assert decision.reasoning == reasoning
        assert order_manager.get_all_orders() == []
        assert agent.status is AgentStatus.RUNNING
        await agent.stop()

    @pytest.mark.asyncio
    async def test_mapping_analysis_is_accepted(self, make_agent) -> None:
        agent = make_agent(
            {
                "symbol": "BTCUSD",
                "signal": "buy",
                "confidence": 0.9,
                "entryPrice": 45_000,
                "stopLoss": 44_100,
                "positionSize": 0.01,
            }
        )
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.TRADE
        await agent.stop()

    @pytest.mark.asyncio
    async def test_rejected_order_is_skipped(self, make_agent, client) -> None:
        client.schedule_failures("reject")
        agent = make_agent()
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.SKIP
        assert decision.reasoning == "Order placement failed: simulated rejection"
        assert agent.get_state().daily_trades == 0
        await agent.stop()

    @pytest.mark.asyncio
    async def test_trading_hours_and_daily_limit(self, make_agent, clock) -> None:
        agent = make_agent(max_daily_trades=1, trading_hours=TradingHours("13:00", "14:00"))
        agent.start()

        decision = await agent.run_cycle()
        assert decision.reasoning == "Outside trading hours"

        clock.advance(3600)
        assert (await agent.run_cycle()).action is DecisionAction.TRADE
        limited = await agent.run_cycle()
        assert (limited.action, limited.reasoning) == (DecisionAction.SKIP, "Daily trade limit reached")

        agent.reset_daily_counters()
        assert (await agent.run_cycle()).action is DecisionAction.TRADE
        await agent.stop()

    @pytest.mark.asyncio
    async def test_high_volatility_only_warns(self, make_agent) -> None:
        agent = make_agent(state=market_state(change_24h=-8.0))
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.TRADE
        assert agent.get_state().warnings == ["High volatility on BTCUSD: -8.00%"]
        await agent.stop()

    @pytest.mark.asyncio
    async def test_decisions_newest_first(self, make_agent) -> None:
        agent = make_agent(buy_signal(confidence=0.1), buy_signal(signal=TradeSignal.HOLD))
        agent.start()

        await agent.run_cycle()
        await agent.run_cycle()

        assert [d.reasoning for d in agent.get_decisions()] == [
            "Analysis suggests holding",
            "Confidence too low: 10.0%",
        ]
        assert len(agent.get_decisions(limit=1)) == 1
        await agent.stop()


class TestCircuitBreakers:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("state", "reason"),
        [
            (
                market_state(positions=[_losing_position(-2_000)]),
                "Maximum drawdown exceeded: 20.00%",
            ),
            (
                market_state(positions=[_losing_position(-1_200)]),
                "Emergency stop loss breached: 12.00%",
            ),
            (market_state(balance=500), "Account balance below minimum: 500.00"),
            (
                market_state(
                    positions=[PositionSnapshot(symbol="BTCUSD", size=2.0, entry_price=45_000, mark_price=45_000)]
                ),
                "Portfolio risk exceeded: 18.00%",
            ),
        ],
    )
    async def test_market_conditions_trip_emergency_stop(self, make_agent, order_manager, registry, state, reason) -> None:
        agent = make_agent(state=state)
        agent.start()

        decision = await agent.run_cycle()

        assert decision.action is DecisionAction.EMERGENCY_STOP
        assert decision.reasoning == reason
        assert agent.status is AgentStatus.EMERGENCY_STOP
        assert agent.get_state().emergency_reason == reason
        assert order_manager.get_all_orders() == []
        assert registry.get_sample_value("deltadesk_circuit_breaker_trips_total", {"reason": reason}) == 1.0
        assert await agent.run_cycle() is None

    @pytest.mark.asyncio
    async def test_daily_loss_trips(self, make_agent, risk_manager) -> None:
        agent = make_agent()
        risk_manager.update_daily_pnl(-600)
        agent.start()

        decision = await agent.run_cycle()

        assert decision.reasoning == "Daily loss limit exceeded: -600.00"

    @pytest.mark.asyncio
    async def test_loss_streak_trips_immediately_while_running(self, make_agent, risk_manager) -> None:
        agent = make_agent(circuit_breakers={"max_consecutive_losses": 3})
        agent.start()

        agent.record_trade_result(-10)
        agent.record_trade_result(5)
        for _ in range(3):
            agent.record_trade_result(-10)

        state = agent.get_state()
        assert state.status is AgentStatus.EMERGENCY_STOP
        assert state.emergency_reason == "Maximum consecutive losses reached: 3"
        assert state.total_pnl == pytest.approx(-35)
        assert risk_manager.daily_pnl == pytest.approx(-35)

    @pytest.mark.asyncio
    async def test_loss_streak_checked_at_cycle_when_recorded_while_stopped(self, make_agent) -> None:
        agent = make_agent(circuit_breakers={"max_consecutive_losses": 2})
        agent.record_trade_result(-1)
        agent.record_trade_result(-1)
        assert agent.status is AgentStatus.STOPPED

        agent.start()
        decision = await agent.run_cycle()

        assert decision.reasoning == "Maximum consecutive losses reached: 2"

    @pytest.mark.asyncio
    async def test_manual_restart_clears_emergency(self, make_agent) -> None:
        agent = make_agent(state=market_state(balance=500))
        agent.start()
        await agent.run_cycle()
        assert agent.status is AgentStatus.EMERGENCY_STOP

        agent.start()

        state = agent.get_state()
        assert state.status is AgentStatus.RUNNING
        assert state.emergency_reason is None
        assert state.consecutive_losses == 0
        assert state.errors == []
        await agent.stop()
        assert agent.status is AgentStatus.STOPPED


class TestErrors:
    @pytest.mark.asyncio
    async def test_repeated_failures_move_to_error(self, make_agent) -> None:
        agent = make_agent(RuntimeError("engine offline"), max_errors=2)
        agent.start()

        assert await agent.run_cycle() is None
        state = agent.get_state()
        assert (state.status, state.error_count) == (AgentStatus.RUNNING, 1)
        assert state.errors == ["Agent error: engine offline"]

        assert await agent.run_cycle() is None
        assert agent.status is AgentStatus.ERROR

        agent.start()
        assert agent.get_state().error_count == 0
        await agent.stop()

    @pytest.mark.asyncio
    async def test_overlapping_cycle_is_skipped(self, risk_manager, order_manager, metrics, clock) -> None:
        gate = asyncio.Event()

        class SlowEngine(ScriptedAnalysisEngine):
            async def analyze(self, market_data, positions, balance):
                await gate.wait()
                return await super().analyze(market_data, positions, balance)

        agent = AutonomousAgent(
            risk_manager,
            order_manager,
            StaticMarketState(),
            SlowEngine([buy_signal(confidence=0.1)]),
            metrics=metrics,
            clock=clock,
        )
        agent.start()

        first = asyncio.create_task(agent.run_cycle())
        await asyncio.sleep(0)
        assert await agent.run_cycle() is None
        gate.set()

        assert (await first).action is DecisionAction.HOLD
        await agent.stop()


class TestRuntimeUpdates:
    @pytest.mark.asyncio
    async def test_update_config(self, make_agent, risk_manager) -> None:
        agent = make_agent()
        agent.start()

        config = agent.update_config(
            confidence_threshold=0.95, analysis_interval=60, risk_limits={"max_position_size": 0.2}, bogus=1
        )

        assert config.confidence_threshold == 0.95
        assert config.analysis_interval == 60
        assert risk_manager.limits.max_position_size == 0.2
        assert (await agent.run_cycle()).action is DecisionAction.HOLD

        agent.update_config(enabled=False)
        assert agent.status is AgentStatus.STOPPED
        await agent.stop()

    @pytest.mark.asyncio
    async def test_subscriber_receives_snapshots(self, make_agent) -> None:
        agent = make_agent()
        snapshots = []
        unsubscribe = agent.subscribe(snapshots.append)
        agent.start()

        await agent.run_cycle()
        unsubscribe()
        await agent.stop()

        assert snapshots[-1].total_trades == 1
        snapshots[-1].total_trades = 99
        assert agent.get_state().total_trades == 1
