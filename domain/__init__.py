"""Domain layer containing core trading entities."""

from .errors import (
    AgentStateError,
    ConfigError,
    EventParseError,
    OrderCommandError,
    OrderError,
    OrderTimeoutError,
    TradingError,
)
from .market import MarketState, MarketTicker
from .order import (
    BracketLeg,
    BracketOrderRequest,
    ConfirmedOrder,
    OrderCommandResult,
    OrderPlacementResult,
    OrderRequest,
    OrderSide,
    OrderState,
    OrderType,
    StopOrderType,
    SubmittedOrder,
    TimeInForce,
)
from .position import PositionSide, PositionSnapshot, coerce_float, normalize_positions
from .signal import AnalysisResult, TradeSignal

__all__ = [
    "AgentStateError",
    "AnalysisResult",
    "BracketLeg",
    "BracketOrderRequest",
    "ConfigError",
    "ConfirmedOrder",
    "EventParseError",
    "MarketState",
    "MarketTicker",
    "OrderCommandError",
    "OrderCommandResult",
    "OrderError",
    "OrderPlacementResult",
    "OrderRequest",
    "OrderSide",
    "OrderState",
    "OrderTimeoutError",
    "OrderType",
    "PositionSide",
    "PositionSnapshot",
    "StopOrderType",
    "SubmittedOrder",
    "TimeInForce",
    "TradeSignal",
    "TradingError",
    "coerce_float",
    "normalize_positions",
]
