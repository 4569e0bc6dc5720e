# SPDX-License-Identifier: MIT
"""Typed events decoded from the exchange's private event stream.

Raw stream payloads are parsed exactly once by :func:`parse_stream_message`
into a closed union of event models. Downstream components only ever see
:class:`OrderEvent`, :class:`TradeEvent` or :class:`ConnectionEvent`.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from domain.errors import EventParseError
from domain.order import ConfirmedOrder, OrderSide, OrderState, OrderType


def _coerce_timestamp(value: Any) -> Any:
    """Accept ISO strings or epoch values in seconds, milliseconds or microseconds."""

    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            number = float(value)
            if number > 1e14:
                number /= 1_000_000
            elif number > 1e11:
                number /= 1_000
            return datetime.fromtimestamp(number, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise ValueError(f"epoch timestamp out of range: {value!r}") from exc
    if isinstance(value, str) and value.strip().isdigit():
        return _coerce_timestamp(int(value.strip()))
    return value


def _number(value: Any, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"{name} must be numeric, got {type(value).__name__}")
    return float(value)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _StreamModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)


class OrderEvent(_StreamModel):
    """Order lifecycle update (``orders`` channel)."""

    type: Literal["orders"]
    id: str
    state: OrderState
    side: OrderSide
    size: float = Field(default=0.0, ge=0)
    unfilled_size: float = Field(default=0.0, ge=0)
    client_order_id: str | None = None
    product_id: int | None = None
    product_symbol: str | None = None
    order_type: OrderType | None = None
    limit_price: float | None = None
    average_fill_price: float | None = None
    action: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise_payload(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        payload = dict(data)
        if payload.get("id") is None and payload.get("order_id") is not None:
            payload["id"] = payload["order_id"]
        if payload.get("id") is not None:
            payload["id"] = str(payload["id"])
        if not payload.get("product_symbol") and payload.get("symbol"):
            payload["product_symbol"] = payload["symbol"]
        if not payload.get("client_order_id"):
            payload["client_order_id"] = None
        if payload.get("unfilled_size") is None:
            size = payload.get("size") or 0
            filled = payload.get("filled_size")
            if filled is not None:
                payload["unfilled_size"] = max(_number(size, "size") - _number(filled, "filled_size"), 0.0)
            elif payload.get("state") == OrderState.CLOSED.value:
                payload["unfilled_size"] = 0.0
            else:
                payload["unfilled_size"] = size
        for key in ("created_at", "updated_at"):
            payload[key] = _coerce_timestamp(payload.get(key))
        return payload

    @field_validator("order_type", mode="before")
    @classmethod
    def _known_order_type(cls, value: Any) -> Any:
        if value is None or isinstance(value, OrderType):
            return value
        if isinstance(value, str) and value in {member.value for member in OrderType}:
            return value
        return None

    def to_confirmed(self) -> ConfirmedOrder:
        return ConfirmedOrder(
            id=self.id,
            state=self.state,
            side=self.side,
            size=self.size,
            unfilled_size=min(self.unfilled_size, self.size) if self.size else self.unfilled_size,
            client_order_id=self.client_order_id,
            product_id=self.product_id,
            product_symbol=self.product_symbol,
            order_type=self.order_type,
            limit_price=self.limit_price,
            average_fill_price=self.average_fill_price,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )


class TradeEvent(_StreamModel):
    """Fill notification (``v2/user_trades`` channel)."""

    type: Literal["v2/user_trades", "user_trades"]
    order_id: str
    side: OrderSide
    size: float = Field(gt=0)
    price: float = Field(gt=0)
    fill_id: str | None = None
    client_order_id: str | None = None
    symbol: str | None = None
    product_id: int | None = None
    role: str | None = None
    timestamp: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalise_payload(cls, data: Any) -> Any:
        if not isinstance(data, Mapping):
            return data
        payload = dict(data)
        for key in ("order_id", "fill_id"):
            if payload.get(key) is not None:
                payload[key] = str(payload[key])
        if payload.get("fill_id") is None and payload.get("id") is not None:
            payload["fill_id"] = str(payload["id"])
        if not payload.get("symbol") and payload.get("product_symbol"):
            payload["symbol"] = payload["product_symbol"]
        if not payload.get("client_order_id"):
            payload["client_order_id"] = None
        payload["timestamp"] = _coerce_timestamp(payload.get("timestamp"))
        return payload

    @property
    def notional(self) -> float:
        return self.size * self.price


class ConnectionEvent(_StreamModel):
    """Transport status change reported by the stream client."""

    type: Literal["connection"]
    status: Literal["connected", "disconnected", "reconnecting"]
    reason: str | None = None

    @property
    def connected(self) -> bool:
        return self.status == "connected"


StreamEvent = Annotated[Union[OrderEvent, TradeEvent, ConnectionEvent], Field(discriminator="type")]

_STREAM_ADAPTER: TypeAdapter[OrderEvent | TradeEvent | ConnectionEvent] = TypeAdapter(StreamEvent)


def parse_stream_message(payload: Mapping[str, Any] | str | bytes) -> OrderEvent | TradeEvent | ConnectionEvent:
    """Decode one stream payload into a typed event.

    Raises:
        EventParseError: If the payload is not JSON, not an object, carries an
            unknown ``type`` or fails validation.
    """

    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise EventParseError(f"stream payload is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, Mapping):
        raise EventParseError(f"stream payload must be an object, got {type(payload).__name__}")
    try:
        return _STREAM_ADAPTER.validate_python(dict(payload))
    except ValidationError as exc:
        raise EventParseError(
            f"invalid stream payload of type {payload.get('type')!r}: {exc.error_count()} validation error(s)"
        ) from exc
    except (TypeError, OverflowError) as exc:
        raise EventParseError(f"invalid stream payload of type {payload.get('type')!r}: {exc}") from exc


__all__ = [
    "ConnectionEvent",
    "OrderEvent",
    "StreamEvent",
    "TradeEvent",
    "parse_stream_message",
]
