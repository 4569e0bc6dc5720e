from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class OrderSide(str, Enum):
    """Supported trading directions."""

    BUY = "buy"
    SELL = "sell"

    @property
    def opposite(self) -> "OrderSide":
        return OrderSide.SELL if self is OrderSide.BUY else OrderSide.BUY


class OrderType(str, Enum):
    """Order types accepted by the exchange."""

    LIMIT = "limit_order"
    MARKET = "market_order"


class TimeInForce(str, Enum):
    GTC = "gtc"
    IOC = "ioc"
    FOK = "fok"


class StopOrderType(str, Enum):
    STOP_LOSS = "stop_loss_order"
    TAKE_PROFIT = "take_profit_order"


class OrderState(str, Enum):
    """Lifecycle states reported by the order event stream."""

    OPEN = "open"
    PENDING = "pending"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in {OrderState.CLOSED, OrderState.CANCELLED}


def _format_number(value: float) -> str:
    return format(float(value), "f").rstrip("0").rstrip(".") or "0"


@dataclass(slots=True)
class OrderRequest:
    """Order command submitted to the exchange.

    Either ``product_id`` or ``product_symbol`` identifies the instrument.
    Limit orders require ``limit_price``; stop orders require ``stop_price``.
    """

    size: float
    side: OrderSide | str
    product_id: int | None = None
    product_symbol: str | None = None
    order_type: OrderType | str = OrderType.LIMIT
    limit_price: float | None = None
    time_in_force: TimeInForce | str = TimeInForce.GTC
    reduce_only: bool = False
    post_only: bool = False
    client_order_id: str | None = None
    stop_order_type: StopOrderType | str | None = None
    stop_price: float | None = None
    trail_amount: float | None = None

    def __post_init__(self) -> None:
        self.side = OrderSide(self.side)
        self.order_type = OrderType(self.order_type)
        self.time_in_force = TimeInForce(self.time_in_force)
        if self.stop_order_type is not None:
            self.stop_order_type = StopOrderType(self.stop_order_type)
        self._validate()

    def _validate(self) -> None:
        if self.product_id is None and not self.product_symbol:
            raise ValueError("product_id or product_symbol must be provided")
        if self.size <= 0:
            raise ValueError("size must be positive")
        if self.order_type is OrderType.LIMIT:
            if self.limit_price is None:
                raise ValueError("limit_price is required for limit orders")
        if self.limit_price is not None and self.limit_price <= 0:
            raise ValueError("limit_price must be positive when provided")
        if self.stop_order_type is not None and self.stop_price is None and self.trail_amount is None:
            raise ValueError("stop orders require stop_price or trail_amount")
        if self.stop_price is not None and self.stop_price <= 0:
            raise ValueError("stop_price must be positive when provided")
        if self.post_only and self.order_type is OrderType.MARKET:
            raise ValueError("post_only is only valid for limit orders")
        if self.client_order_id is not None and not self.client_order_id.strip():
            raise ValueError("client_order_id cannot be blank")

    @property
    def instrument(self) -> str:
        """Human readable instrument key used in logs and metrics."""

        return self.product_symbol or str(self.product_id)

    def to_payload(self) -> dict[str, Any]:
        """Serialize into the exchange's order-placement body."""

        payload: dict[str, Any] = {
            "size": self.size,
            "side": self.side.value,
            "order_type": self.order_type.value,
            "time_in_force": self.time_in_force.value,
        }
        if self.product_id is not None:
            payload["product_id"] = self.product_id
        if self.product_symbol:
            payload["product_symbol"] = self.product_symbol
        if self.limit_price is not None:
            payload["limit_price"] = _format_number(self.limit_price)
        if self.reduce_only:
            payload["reduce_only"] = True
        if self.post_only:
            payload["post_only"] = True
        if self.client_order_id:
            payload["client_order_id"] = self.client_order_id
        if self.stop_order_type is not None:
            payload["stop_order_type"] = self.stop_order_type.value
        if self.stop_price is not None:
            payload["stop_price"] = _format_number(self.stop_price)
        if self.trail_amount is not None:
            payload["trail_amount"] = _format_number(self.trail_amount)
        return payload


@dataclass(slots=True)
class BracketLeg:
    """Stop-loss or take-profit leg attached to a bracket."""

    stop_price: float
    order_type: OrderType | str = OrderType.MARKET
    limit_price: float | None = None

    def __post_init__(self) -> None:
        self.order_type = OrderType(self.order_type)
        if self.stop_price <= 0:
            raise ValueError("stop_price must be positive")
        if self.order_type is OrderType.LIMIT and self.limit_price is None:
            raise ValueError("limit_price is required for limit legs")

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "order_type": self.order_type.value,
            "stop_price": _format_number(self.stop_price),
        }
        if self.limit_price is not None:
            payload["limit_price"] = _format_number(self.limit_price)
        return payload


@dataclass(slots=True)
class BracketOrderRequest:
    """Attach stop-loss and/or take-profit legs to an existing position."""

    product_id: int | None = None
    product_symbol: str | None = None
    stop_loss: BracketLeg | None = None
    take_profit: BracketLeg | None = None
    trigger_method: str = "last_traded_price"

    def __post_init__(self) -> None:
        if self.product_id is None and not self.product_symbol:
            raise ValueError("product_id or product_symbol must be provided")
        if self.stop_loss is None and self.take_profit is None:
            raise ValueError("bracket requires at least one leg")

    @property
    def instrument(self) -> str:
        return self.product_symbol or str(self.product_id)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"bracket_stop_trigger_method": self.trigger_method}
        if self.product_id is not None:
            payload["product_id"] = self.product_id
        if self.product_symbol:
            payload["product_symbol"] = self.product_symbol
        if self.stop_loss is not None:
            payload["stop_loss_order"] = self.stop_loss.to_payload()
        if self.take_profit is not None:
            payload["take_profit_order"] = self.take_profit.to_payload()
        return payload


@dataclass(frozen=True, slots=True)
class SubmittedOrder:
    """Exchange acknowledgement of a submission.

    This is *not* execution state; only a :class:`ConfirmedOrder` delivered by
    the event stream says what happened to the order.
    """

    order_id: str | None
    client_order_id: str | None
    instrument: str
    raw: Mapping[str, Any] = field(default_factory=dict)
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class ConfirmedOrder:
    """Order state as last reported by the event stream."""

    id: str
    state: OrderState
    side: OrderSide
    size: float
    unfilled_size: float
    client_order_id: str | None = None
    product_id: int | None = None
    product_symbol: str | None = None
    order_type: OrderType | None = None
    limit_price: float | None = None
    average_fill_price: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def filled_size(self) -> float:
        return max(self.size - self.unfilled_size, 0.0)

    @property
    def is_open(self) -> bool:
        return not self.state.is_terminal

    @property
    def is_filled(self) -> bool:
        return self.state is OrderState.CLOSED and self.unfilled_size <= 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_order_id": self.client_order_id,
            "product_id": self.product_id,
            "product_symbol": self.product_symbol,
            "state": self.state.value,
            "side": self.side.value,
            "order_type": self.order_type.value if self.order_type else None,
            "size": self.size,
            "unfilled_size": self.unfilled_size,
            "filled_size": self.filled_size,
            "limit_price": self.limit_price,
            "average_fill_price": self.average_fill_price,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "received_at": self.received_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class OrderPlacementResult:
    """Outcome of a placement command."""

    success: bool
    order: SubmittedOrder | None = None
    order_id: str | None = None
    client_order_id: str | None = None
    error: str | None = None


@dataclass(frozen=True, slots=True)
class OrderCommandResult:
    """Outcome of a cancel or edit command for a single order."""

    success: bool
    order_id: str | None = None
    data: Mapping[str, Any] | None = None
    error: str | None = None


__all__ = [
    "BracketLeg",
    "BracketOrderRequest",
    "ConfirmedOrder",
    "OrderCommandResult",
    "OrderPlacementResult",
    "OrderRequest",
    "OrderSide",
    "OrderState",
    "OrderType",
    "StopOrderType",
    "SubmittedOrder",
    "TimeInForce",
]
