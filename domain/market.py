"""Market and account state snapshots polled by the agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from .position import PositionSnapshot, coerce_float, normalize_positions


@dataclass(frozen=True, slots=True)
class MarketTicker:
    symbol: str
    price: float
    change_24h: float = 0.0
    volume: float = 0.0
    product_id: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MarketTicker":
        return cls(
            symbol=str(payload.get("symbol") or ""),
            price=coerce_float(payload.get("price", payload.get("mark_price"))),
            change_24h=coerce_float(payload.get("change_24h", payload.get("change"))),
            volume=coerce_float(payload.get("volume")),
            product_id=payload.get("product_id"),
        )


@dataclass(frozen=True, slots=True)
class MarketState:
    """One polled view of markets, positions and balance."""

    market_data: Sequence[MarketTicker] = field(default_factory=tuple)
    positions: Sequence[PositionSnapshot] = field(default_factory=tuple)
    balance: float = 0.0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MarketState":
        tickers = tuple(
            MarketTicker.from_payload(item)
            for item in payload.get("market_data") or ()
            if isinstance(item, Mapping)
        )
        return cls(
            market_data=tickers,
            positions=tuple(normalize_positions(payload.get("positions"))),
            balance=coerce_float(payload.get("balance")),
        )

    def ticker(self, symbol: str) -> MarketTicker | None:
        for ticker in self.market_data:
            if ticker.symbol == symbol:
                return ticker
        return None


__all__ = ["MarketState", "MarketTicker"]
