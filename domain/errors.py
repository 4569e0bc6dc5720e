"""Exception hierarchy shared across the trading desk."""

from __future__ import annotations


class TradingError(RuntimeError):
    """Base exception for trading desk failures."""


class ConfigError(TradingError, ValueError):
    """Raised when configuration cannot be loaded or validated."""


class OrderError(TradingError):
    """Base class for order lifecycle failures."""


class OrderCommandError(OrderError):
    """Raised when the exchange rejects an order command."""


class OrderTimeoutError(OrderError, TimeoutError):
    """Raised when an awaited order update does not arrive in time."""

    def __init__(self, order_id: str, timeout: float) -> None:
        super().__init__(f"Timed out after {timeout:.2f}s waiting for update on order {order_id}")
        self.order_id = order_id
        self.timeout = timeout


class EventParseError(TradingError, ValueError):
    """Raised when an event-stream payload cannot be decoded."""


class AgentStateError(TradingError):
    """Raised on an illegal autonomous agent state transition."""


__all__ = [
    "AgentStateError",
    "ConfigError",
    "EventParseError",
    "OrderCommandError",
    "OrderError",
    "OrderTimeoutError",
    "TradingError",
]
