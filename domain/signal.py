"""Analysis engine output consumed by the autonomous agent."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .position import PositionSide, coerce_float


class TradeSignal(str, Enum):
    """Directive produced by the analysis engine."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"

    @property
    def position_side(self) -> PositionSide | None:
        if self is TradeSignal.BUY:
            return PositionSide.LONG
        if self is TradeSignal.SELL:
            return PositionSide.SHORT
        return None


@dataclass(slots=True)
class AnalysisResult:
    """Trade idea returned by an analysis engine.

    ``confidence`` is clamped into ``[0, 1]``; prices and sizes are taken as
    given since the engine is treated as an opaque oracle.
    """

    symbol: str
    signal: TradeSignal | str
    confidence: float
    entry_price: float
    stop_loss: float = 0.0
    take_profit: float | None = None
    position_size: float = 0.0
    reasoning: str = ""
    product_id: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("symbol must be provided")
        if not isinstance(self.signal, TradeSignal):
            self.signal = TradeSignal(str(self.signal).upper())
        self.confidence = min(max(coerce_float(self.confidence), 0.0), 1.0)
        self.entry_price = coerce_float(self.entry_price)
        self.stop_loss = coerce_float(self.stop_loss)
        self.position_size = max(coerce_float(self.position_size), 0.0)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "AnalysisResult":
        return cls(
            symbol=str(payload.get("symbol") or ""),
            signal=payload.get("signal", TradeSignal.HOLD.value),
            confidence=payload.get("confidence", 0.0),
            entry_price=payload.get("entry_price", payload.get("entryPrice", 0.0)),
            stop_loss=payload.get("stop_loss", payload.get("stopLoss", 0.0)),
            take_profit=payload.get("take_profit", payload.get("takeProfit")),
            position_size=payload.get("position_size", payload.get("positionSize", 0.0)),
            reasoning=str(payload.get("reasoning") or ""),
            product_id=payload.get("product_id"),
        )


__all__ = ["AnalysisResult", "TradeSignal"]
