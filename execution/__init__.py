"""Order management, stream reconciliation and exit management."""

from .advanced_orders import AdvancedOrderManager, IcebergOrderTask, SlicedOrderTask, TwapOrderTask
from .connectors import SimulatedCommandClient
from .events import ConnectionEvent, OrderEvent, StreamEvent, TradeEvent, parse_stream_message
from .order_manager import HybridOrderManager, OrderManagerConfig
from .take_profit import (
    PositionTakeProfit,
    StrategyType,
    TakeProfitEvent,
    TakeProfitEventType,
    TakeProfitLevel,
    TakeProfitStrategy,
    TakeProfitSystem,
    default_strategies,
)

__all__ = [
    "AdvancedOrderManager",
    "ConnectionEvent",
    "HybridOrderManager",
    "IcebergOrderTask",
    "OrderEvent",
    "OrderManagerConfig",
    "PositionTakeProfit",
    "SimulatedCommandClient",
    "SlicedOrderTask",
    "StrategyType",
    "StreamEvent",
    "TakeProfitEvent",
    "TakeProfitEventType",
    "TakeProfitLevel",
    "TakeProfitStrategy",
    "TakeProfitSystem",
    "TradeEvent",
    "TwapOrderTask",
    "default_strategies",
    "parse_stream_message",
]
