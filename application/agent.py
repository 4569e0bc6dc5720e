# SPDX-License-Identifier: MIT
"""Autonomous trading agent with circuit breakers.

The agent polls the market state on a fixed interval, asks the analysis
engine for a trade idea, gates it through the risk manager and submits the
resulting order. Every cycle records exactly one :class:`AgentDecision`.

Status transitions::

    STOPPED -> RUNNING <-> PAUSED
    RUNNING -> ERROR            (too many failed cycles)
    RUNNING -> EMERGENCY_STOP   (a circuit breaker tripped)

Only ``RUNNING`` schedules cycles. ``ERROR`` and ``EMERGENCY_STOP`` are left
through an explicit :meth:`AutonomousAgent.start`.
"""

from __future__ import annotations

import copy
from collections import deque
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, time, timezone
from enum import Enum
from typing import Any, Callable, Deque, List, Mapping
from uuid import uuid4

from core.utils.clock import Clock, SystemClock
from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from core.utils.scheduling import PeriodicTask
from core.utils.signals import Signal
from domain.errors import AgentStateError
from domain.market import MarketState
from domain.order import OrderRequest, OrderType
from domain.signal import AnalysisResult, TradeSignal
from execution.order_manager import HybridOrderManager
from execution.take_profit import TakeProfitSystem
from interfaces.execution import AnalysisEngine, MarketStateProvider
from risk.manager import RiskManager
from risk.models import RiskMetrics

MAX_DECISION_HISTORY = 100
MAX_ERROR_HISTORY = 10
MAX_WARNING_HISTORY = 10
# Portfolio risk may overshoot its alert threshold by half before trading halts.
PORTFOLIO_RISK_BREAKER_FACTOR = 1.5


class AgentStatus(str, Enum):
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"
    EMERGENCY_STOP = "EMERGENCY_STOP"


class DecisionAction(str, Enum):
    TRADE = "TRADE"
    HOLD = "HOLD"
    SKIP = "SKIP"
    EMERGENCY_STOP = "EMERGENCY_STOP"


def _parse_hhmm(value: str | time) -> time:
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    try:
        hours, minutes = str(value).split(":")
        return time(int(hours), int(minutes))
    except ValueError as exc:
        raise ValueError(f"expected HH:MM, got {value!r}") from exc


@dataclass(slots=True)
class TradingHours:
    """Inclusive ``HH:MM`` window in UTC; ``start > end`` wraps past midnight."""

    start: str = "00:00"
    end: str = "23:59"

    def __post_init__(self) -> None:
        _parse_hhmm(self.start)
        _parse_hhmm(self.end)

    def contains(self, moment: datetime | time) -> bool:
        current = (moment.time() if isinstance(moment, datetime) else moment).replace(
            second=0, microsecond=0
        )
        start, end = _parse_hhmm(self.start), _parse_hhmm(self.end)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end


@dataclass(slots=True)
class CircuitBreakers:
    """Conditions forcing an emergency stop.

    ``max_drawdown``, ``volatility_threshold`` and ``max_daily_loss_pct`` are
    fractions (``0.15`` is 15%). Volatility above its threshold only raises a
    warning.
    """

    max_drawdown: float = 0.15
    max_consecutive_losses: int = 5
    min_account_balance: float = 1000.0
    volatility_threshold: float = 0.05
    max_daily_loss_pct: float = 0.05


@dataclass(slots=True)
class AgentConfig:
    enabled: bool = True
    analysis_interval: float = 300.0
    max_daily_trades: int = 10
    emergency_stop_loss: float = 0.10
    confidence_threshold: float = 0.70
    trading_hours: TradingHours = field(default_factory=TradingHours)
    circuit_breakers: CircuitBreakers = field(default_factory=CircuitBreakers)
    take_profit_strategy: str = "balanced"
    max_errors: int = 5

    def __post_init__(self) -> None:
        if isinstance(self.trading_hours, Mapping):
            self.trading_hours = TradingHours(**self.trading_hours)
        if isinstance(self.circuit_breakers, Mapping):
            self.circuit_breakers = CircuitBreakers(**self.circuit_breakers)
        if self.analysis_interval <= 0:
            raise ValueError("analysis_interval must be positive")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if self.max_daily_trades < 0:
            raise ValueError("max_daily_trades cannot be negative")
        if self.max_errors <= 0:
            raise ValueError("max_errors must be positive")


@dataclass(frozen=True, slots=True)
class AgentDecision:
    action: DecisionAction
    reasoning: str
    symbol: str | None = None
    confidence: float = 0.0
    order_id: str | None = None
    client_order_id: str | None = None
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "action": self.action.value,
            "symbol": self.symbol,
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "order_id": self.order_id,
            "client_order_id": self.client_order_id,
        }


@dataclass(slots=True)
class AgentState:
    status: AgentStatus = AgentStatus.STOPPED
    started_at: datetime | None = None
    last_analysis: datetime | None = None
    total_trades: int = 0
    daily_trades: int = 0
    daily_pnl: float = 0.0
    total_pnl: float = 0.0
    consecutive_losses: int = 0
    current_drawdown: float = 0.0
    error_count: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    emergency_reason: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status is AgentStatus.RUNNING


class AutonomousAgent:
    """Drive analysis, risk gating and order submission on a schedule."""

    def __init__(
        self,
        risk_manager: RiskManager,
        order_manager: HybridOrderManager,
        market_state: MarketStateProvider,
        analysis_engine: AnalysisEngine,
        *,
        take_profit: TakeProfitSystem | None = None,
        config: AgentConfig | None = None,
        metrics: MetricsCollector | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._risk = risk_manager
        self._orders = order_manager
        self._market_state = market_state
        self._engine = analysis_engine
        self._take_profit = take_profit
        self._config = config or AgentConfig()
        self._metrics = metrics or get_metrics_collector()
        self._clock = clock or SystemClock()
        self._logger = get_logger(__name__)
        self._state = AgentState()
        self._decisions: Deque[AgentDecision] = deque(maxlen=MAX_DECISION_HISTORY)
        self._signal = Signal("agent.state")
        self._task: PeriodicTask | None = None
        self._analyzing = False
        self._metrics.set_agent_status(self._state.status.value)

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def status(self) -> AgentStatus:
        return self._state.status

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self) -> None:
        """Start scheduling cycles.

        Starting from ``ERROR`` or ``EMERGENCY_STOP`` is the manual restart:
        the error log, loss streak and emergency reason are cleared.
        """

        if not self._config.enabled:
            raise AgentStateError("agent is disabled by configuration")
        if self._state.status is AgentStatus.RUNNING:
            return
        if self._state.status in {AgentStatus.ERROR, AgentStatus.EMERGENCY_STOP}:
            self._state.consecutive_losses = 0
            self._state.emergency_reason = None
        self._state.errors.clear()
        self._state.error_count = 0
        self._state.started_at = self._clock.now()
        self._schedule()
        self._set_status(AgentStatus.RUNNING)
        self._logger.info(
            "Autonomous agent started",
            interval=self._config.analysis_interval,
            max_daily_trades=self._config.max_daily_trades,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            await task.stop()
        if self._state.status in {AgentStatus.RUNNING, AgentStatus.PAUSED}:
            self._set_status(AgentStatus.STOPPED)
        self._logger.info("Autonomous agent stopped", status=self._state.status.value)

    def pause(self) -> None:
        if self._state.status is not AgentStatus.RUNNING:
            raise AgentStateError(f"cannot pause agent in {self._state.status.value}")
        self._cancel_schedule()
        self._set_status(AgentStatus.PAUSED)
        self._logger.info("Autonomous agent paused")

    def resume(self) -> None:
        if self._state.status is not AgentStatus.PAUSED:
            raise AgentStateError(f"cannot resume agent in {self._state.status.value}")
        self._schedule()
        self._set_status(AgentStatus.RUNNING)
        self._logger.info("Autonomous agent resumed")

    def emergency_stop(self, reason: str) -> AgentDecision:
        """Halt trading until a manual :meth:`start`."""

        self._cancel_schedule()
        self._state.emergency_reason = reason
        self._append_bounded(self._state.errors, f"Emergency stop: {reason}", MAX_ERROR_HISTORY)
        self._set_status(AgentStatus.EMERGENCY_STOP)
        self._metrics.record_circuit_breaker(reason)
        self._logger.critical("Emergency stop triggered", reason=reason)
        return self._record(DecisionAction.EMERGENCY_STOP, reason)

    def _schedule(self) -> None:
        self._cancel_schedule()
        self._task = PeriodicTask(
            "autonomous-agent",
            self._config.analysis_interval,
            self.run_cycle,
            logger=self._logger,
        )
        self._task.start()

    def _cancel_schedule(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()

    def _set_status(self, status: AgentStatus) -> None:
        self._state.status = status
        self._metrics.set_agent_status(status.value)
        self._notify()

    # ------------------------------------------------------------------
    # Cycle
    async def run_cycle(self) -> AgentDecision | None:
        """Execute one analysis cycle.

        Returns the recorded decision, or ``None`` when the agent is not
        running, a previous cycle is still in progress or the cycle failed.
        """

        if self._analyzing or self._state.status is not AgentStatus.RUNNING:
            return None
        self._analyzing = True
        try:
            with self._logger.operation("agent_cycle") as op:
                try:
                    decision = await self._cycle()
                except Exception as exc:
                    op["status"] = "failure"
                    op["error"] = str(exc)
                    self._handle_error(exc)
                    return None
                op["decision"] = decision.action.value
                return decision
        finally:
            self._analyzing = False

    async def _cycle(self) -> AgentDecision:
        now = self._clock.now()
        if not self._config.trading_hours.contains(now):
            return self._record(DecisionAction.SKIP, "Outside trading hours")
        if self._state.daily_trades >= self._config.max_daily_trades:
            return self._record(DecisionAction.SKIP, "Daily trade limit reached")

        market = await self._market_state.get_market_state()
        if self._take_profit is not None:
            self._take_profit.update_market_snapshot(market.market_data)
        metrics = self._risk.calculate_risk_metrics(market.positions, market.balance)
        self._state.current_drawdown = metrics.current_drawdown
        self._check_volatility(market)
        reason = self._breaker_reason(metrics, market.balance)
        if reason is not None:
            return self.emergency_stop(reason)

        analysis = await self._engine.analyze(market.market_data, market.positions, market.balance)
        if isinstance(analysis, Mapping):
            analysis = AnalysisResult.from_mapping(analysis)
        self._state.last_analysis = now
        return await self._decide(analysis, market)

    def _breaker_reason(self, metrics: RiskMetrics, balance: float) -> str | None:
        breakers = self._config.circuit_breakers
        drawdown = metrics.current_drawdown / 100.0
        if drawdown > breakers.max_drawdown:
            return f"Maximum drawdown exceeded: {metrics.current_drawdown:.2f}%"
        if drawdown > self._config.emergency_stop_loss:
            return f"Emergency stop loss breached: {metrics.current_drawdown:.2f}%"
        if metrics.portfolio_risk > self._risk.limits.max_portfolio_risk * 100.0 * PORTFOLIO_RISK_BREAKER_FACTOR:
            return f"Portfolio risk exceeded: {metrics.portfolio_risk:.2f}%"
        if self._state.consecutive_losses >= breakers.max_consecutive_losses:
            return f"Maximum consecutive losses reached: {self._state.consecutive_losses}"
        if self._risk.daily_pnl < -(breakers.max_daily_loss_pct * balance):
            return f"Daily loss limit exceeded: {self._risk.daily_pnl:.2f}"
        if balance < breakers.min_account_balance:
            return f"Account balance below minimum: {balance:.2f}"
        return None

    def _check_volatility(self, market: MarketState) -> None:
        threshold = self._config.circuit_breakers.volatility_threshold
        for ticker in market.market_data:
            volatility = abs(ticker.change_24h) / 100.0
            if volatility > threshold:
                message = f"High volatility on {ticker.symbol}: {ticker.change_24h:.2f}%"
                self._append_bounded(self._state.warnings, message, MAX_WARNING_HISTORY)
                self._logger.warning("High volatility detected", symbol=ticker.symbol, change_24h=ticker.change_24h)

    async def _decide(self, analysis: AnalysisResult, market: MarketState) -> AgentDecision:
        symbol = analysis.symbol
        confidence = analysis.confidence
        if confidence < self._config.confidence_threshold:
            return self._record(
                DecisionAction.HOLD,
                f"Confidence too low: {confidence * 100:.1f}%",
                symbol=symbol,
                confidence=confidence,
            )
        side = analysis.signal.position_side if isinstance(analysis.signal, TradeSignal) else None
        if side is None:
            return self._record(
                DecisionAction.HOLD, "Analysis suggests holding", symbol=symbol, confidence=confidence
            )

        verdict = self._risk.should_allow_trade(
            symbol,
            side,
            analysis.position_size,
            analysis.entry_price,
            market.positions,
            market.balance,
        )
        if not verdict.approved:
            return self._record(
                DecisionAction.SKIP,
                f"Risk check failed: {verdict.reason}",
                symbol=symbol,
                confidence=confidence,
            )

        stop_loss = analysis.stop_loss or self._risk.calculate_stop_loss(analysis.entry_price, side)
        optimal = self._risk.calculate_optimal_position_size(
            market.balance, analysis.entry_price, stop_loss
        )
        size = min(optimal, analysis.position_size)
        if size <= 0:
            return self._record(
                DecisionAction.SKIP, "Optimal position size is zero", symbol=symbol, confidence=confidence
            )

        ticker = market.ticker(symbol)
        client_order_id = f"agent-{uuid4().hex[:16]}"
        request = OrderRequest(
            size=size,
            side=side.entry_order_side,
            product_id=analysis.product_id or (ticker.product_id if ticker else None),
            product_symbol=symbol,
            order_type=OrderType.LIMIT,
            limit_price=analysis.entry_price,
            client_order_id=client_order_id,
        )
        result = await self._orders.place_order(request)
        if not result.success:
            return self._record(
                DecisionAction.SKIP,
                f"Order placement failed: {result.error}",
                symbol=symbol,
                confidence=confidence,
                client_order_id=client_order_id,
            )

        self._state.daily_trades += 1
        self._state.total_trades += 1
        if self._take_profit is not None:
            self._take_profit.add_position(
                result.order_id or client_order_id,
                symbol,
                side,
                analysis.entry_price,
                size,
                strategy_name=self._config.take_profit_strategy,
                take_profit_price=analysis.take_profit,
            )
        reasoning = f"{analysis.signal.value} signal with {confidence * 100:.1f}% confidence"
        if analysis.reasoning:
            reasoning = f"{reasoning}: {analysis.reasoning}"
        return self._record(
            DecisionAction.TRADE,
            reasoning,
            symbol=symbol,
            confidence=confidence,
            order_id=result.order_id,
            client_order_id=client_order_id,
        )

    def _record(self, action: DecisionAction, reasoning: str, **details: Any) -> AgentDecision:
        decision = AgentDecision(action=action, reasoning=reasoning, timestamp=self._clock.now(), **details)
        self._decisions.appendleft(decision)
        self._metrics.record_agent_decision(action.value)
        self._logger.info(
            "Agent decision recorded",
            action=action.value,
            symbol=decision.symbol,
            reasoning=reasoning,
            order_id=decision.order_id,
        )
        self._notify()
        return decision

    def _handle_error(self, exc: Exception) -> None:
        self._state.error_count += 1
        self._append_bounded(self._state.errors, f"Agent error: {exc}", MAX_ERROR_HISTORY)
        self._logger.exception("Agent cycle failed", error_count=self._state.error_count)
        if self._state.error_count >= self._config.max_errors:
            self._cancel_schedule()
            self._set_status(AgentStatus.ERROR)
            self._logger.critical("Agent stopped after repeated errors", error_count=self._state.error_count)
        else:
            self._notify()

    @staticmethod
    def _append_bounded(items: List[str], item: str, limit: int) -> None:
        items.append(item)
        del items[:-limit]

    # ------------------------------------------------------------------
    # Bookkeeping
    def record_trade_result(self, pnl: float) -> None:
        """Account a closed trade's P&L; trips the loss-streak breaker when running."""

        self._risk.update_daily_pnl(pnl)
        self._state.daily_pnl += pnl
        self._state.total_pnl += pnl
        if pnl < 0:
            self._state.consecutive_losses += 1
        else:
            self._state.consecutive_losses = 0
        limit = self._config.circuit_breakers.max_consecutive_losses
        if self._state.status is AgentStatus.RUNNING and self._state.consecutive_losses >= limit:
            self.emergency_stop(f"Maximum consecutive losses reached: {self._state.consecutive_losses}")
        else:
            self._notify()

    def reset_daily_counters(self) -> None:
        self._state.daily_trades = 0
        self._state.daily_pnl = 0.0
        self._risk.reset_daily_pnl()
        self._notify()

    def update_config(self, **changes: Any) -> AgentConfig:
        """Apply ``changes`` to the configuration.

        ``risk_limits`` is forwarded to the risk manager. Unknown keys are
        ignored with a warning. A running agent picks up a new
        ``analysis_interval`` immediately.
        """

        risk_limits = changes.pop("risk_limits", None)
        if risk_limits:
            self._risk.update_limits(risk_limits)
        known = {f.name for f in fields(AgentConfig)}
        ignored = sorted(set(changes) - known)
        if ignored:
            self._logger.warning("Ignoring unknown agent config fields", fields=ignored)
        accepted = {key: value for key, value in changes.items() if key in known}
        previous_interval = self._config.analysis_interval
        self._config = replace(self._config, **accepted)
        if self._state.status is AgentStatus.RUNNING and self._config.analysis_interval != previous_interval:
            self._schedule()
        if not self._config.enabled and self._state.status in {AgentStatus.RUNNING, AgentStatus.PAUSED}:
            self._cancel_schedule()
            self._set_status(AgentStatus.STOPPED)
        return self._config

    def get_state(self) -> AgentState:
        return copy.deepcopy(self._state)

    def get_decisions(self, limit: int | None = 20) -> List[AgentDecision]:
        decisions = list(self._decisions)
        return decisions if limit is None else decisions[: max(0, int(limit))]

    def subscribe(self, callback: Callable[[AgentState], Any]) -> Callable[[], None]:
        """Call ``callback`` with a state snapshot after every change."""

        return self._signal.connect(callback)

    def _notify(self) -> None:
        if len(self._signal):
            self._signal.emit(self.get_state())


__all__ = [
    "AgentConfig",
    "AgentDecision",
    "AgentState",
    "AgentStatus",
    "AutonomousAgent",
    "CircuitBreakers",
    "DecisionAction",
    "TradingHours",
]
