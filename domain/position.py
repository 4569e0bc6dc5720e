"""Read-only position snapshots mirrored from the exchange."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from .order import OrderSide


class PositionSide(str, Enum):
    LONG = "long"
    SHORT = "short"

    @property
    def entry_order_side(self) -> OrderSide:
        return OrderSide.BUY if self is PositionSide.LONG else OrderSide.SELL

    @property
    def exit_order_side(self) -> OrderSide:
        return self.entry_order_side.opposite

    @property
    def direction(self) -> float:
        return 1.0 if self is PositionSide.LONG else -1.0


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Parse ``value`` as a finite float, returning ``default`` otherwise."""

    if value is None or isinstance(value, bool):
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError, OverflowError):
        return default
    if not math.isfinite(parsed):
        return default
    return parsed


@dataclass(frozen=True, slots=True)
class PositionSnapshot:
    """Immutable view of an exchange position.

    ``size`` is signed: positive for long exposure, negative for short.
    """

    symbol: str
    size: float = 0.0
    entry_price: float = 0.0
    mark_price: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    product_id: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | "PositionSnapshot") -> "PositionSnapshot":
        """Build a snapshot from a raw exchange payload.

        Unparsable numeric fields become ``0.0``; a missing product becomes an
        empty symbol. This never raises for mapping input.
        """

        if isinstance(payload, PositionSnapshot):
            return payload
        product = payload.get("product")
        symbol = ""
        product_id = payload.get("product_id")
        if isinstance(product, Mapping):
            symbol = str(product.get("symbol") or "")
            product_id = product.get("id", product_id)
        symbol = symbol or str(payload.get("product_symbol") or payload.get("symbol") or "")
        try:
            resolved_id = int(product_id) if product_id is not None else None
        except (TypeError, ValueError, OverflowError):
            resolved_id = None
        return cls(
            symbol=symbol,
            size=coerce_float(payload.get("size")),
            entry_price=coerce_float(payload.get("entry_price")),
            mark_price=coerce_float(payload.get("mark_price")),
            unrealized_pnl=coerce_float(payload.get("unrealized_pnl")),
            realized_pnl=coerce_float(payload.get("realized_pnl")),
            product_id=resolved_id,
        )

    @property
    def side(self) -> PositionSide | None:
        if self.size > 0:
            return PositionSide.LONG
        if self.size < 0:
            return PositionSide.SHORT
        return None

    @property
    def notional(self) -> float:
        """Absolute position value at entry."""

        return abs(self.size * self.entry_price)


def normalize_positions(
    positions: Iterable[Mapping[str, Any] | PositionSnapshot] | None,
) -> list[PositionSnapshot]:
    """Convert raw payloads into snapshots, dropping entries that are not mappings."""

    if not positions or isinstance(positions, (str, bytes, Mapping)):
        return []
    try:
        entries = iter(positions)
    except TypeError:
        return []
    snapshots: list[PositionSnapshot] = []
    for raw in entries:
        if isinstance(raw, (PositionSnapshot, Mapping)):
            snapshots.append(PositionSnapshot.from_payload(raw))
    return snapshots


__all__ = ["PositionSide", "PositionSnapshot", "coerce_float", "normalize_positions"]
