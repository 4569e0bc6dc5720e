# SPDX-License-Identifier: MIT
"""Explicit wiring of the trading desk components."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Mapping, Set

from application.agent import AutonomousAgent
from application.settings import DeskSettings
from core.utils.clock import Clock, SystemClock
from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from domain.order import OrderPlacementResult, OrderRequest, OrderType
from execution.advanced_orders import AdvancedOrderManager
from execution.events import StreamEvent
from execution.order_manager import HybridOrderManager
from execution.take_profit import PositionTakeProfit, TakeProfitLevel, TakeProfitSystem
from interfaces.execution import AnalysisEngine, MarketStateProvider, OrderCommandClient
from risk.manager import RiskManager

_logger = get_logger(__name__)


@dataclass(slots=True)
class TradingDesk:
    """Single set of collaborating components owned by one process."""

    settings: DeskSettings
    risk_manager: RiskManager
    order_manager: HybridOrderManager
    take_profit: TakeProfitSystem
    advanced_orders: AdvancedOrderManager
    agent: AutonomousAgent
    _exit_orders: Set["asyncio.Task[OrderPlacementResult]"] = field(default_factory=set)

    async def start(self) -> None:
        self.take_profit.start()
        if self.settings.agent.enabled:
            self.agent.start()
        _logger.info("Trading desk started", agent_enabled=self.settings.agent.enabled)

    async def stop(self) -> None:
        await self.agent.stop()
        await self.take_profit.stop()
        await self.advanced_orders.shutdown()
        if self._exit_orders:
            await asyncio.gather(*self._exit_orders, return_exceptions=True)
        self.order_manager.close()
        _logger.info("Trading desk stopped")

    def dispatch(self, payload: Mapping[str, Any] | str | bytes) -> StreamEvent | None:
        """Feed one raw event-stream payload to the order manager."""

        return self.order_manager.handle_stream_message(payload)

    def submit_exit(self, position: PositionTakeProfit, level: TakeProfitLevel, size: float) -> None:
        """Route a triggered take-profit level as a reduce-only market order."""

        request = OrderRequest(
            size=size,
            side=position.side.exit_order_side,
            product_symbol=position.symbol,
            order_type=OrderType.MARKET,
            reduce_only=True,
            client_order_id=f"tp-{position.trade_id}-{level.id}",
        )
        task = asyncio.get_running_loop().create_task(self.order_manager.place_order(request))
        self._exit_orders.add(task)
        task.add_done_callback(self._exit_orders.discard)


def build_desk(
    settings: DeskSettings,
    command_client: OrderCommandClient,
    market_state: MarketStateProvider,
    analysis_engine: AnalysisEngine,
    *,
    metrics: MetricsCollector | None = None,
    clock: Clock | None = None,
) -> TradingDesk:
    """Construct every component once and connect them."""

    metrics = metrics or get_metrics_collector()
    clock = clock or SystemClock()
    risk_manager = RiskManager(settings.risk.to_limits(), metrics=metrics)
    order_manager = HybridOrderManager(
        command_client, settings.orders.to_config(), metrics=metrics
    )
    take_profit = TakeProfitSystem(
        check_interval=settings.take_profit.check_interval,
        max_events=settings.take_profit.max_events,
        metrics=metrics,
        clock=clock,
    )
    advanced_orders = AdvancedOrderManager(order_manager, metrics=metrics)
    agent_config = settings.agent.to_config()
    agent = AutonomousAgent(
        risk_manager,
        order_manager,
        market_state,
        analysis_engine,
        take_profit=take_profit,
        config=agent_config,
        metrics=metrics,
        clock=clock,
    )
    desk = TradingDesk(
        settings=settings,
        risk_manager=risk_manager,
        order_manager=order_manager,
        take_profit=take_profit,
        advanced_orders=advanced_orders,
        agent=agent,
    )
    take_profit.set_close_handler(desk.submit_exit)
    return desk


__all__ = ["TradingDesk", "build_desk"]
