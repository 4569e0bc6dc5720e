"""Execution layer interfaces covering risk gating and exchange collaborators."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

if TYPE_CHECKING:
    from domain import AnalysisResult, MarketState, PositionSnapshot
    from risk.models import RiskMetrics, TradeValidation

PositionInput = Iterable["Mapping[str, Any] | PositionSnapshot"]


@dataclass(frozen=True, slots=True)
class CommandResponse:
    """Single request/response exchange with the order command interface."""

    success: bool
    result: Any = None
    error: str | None = None
    status_code: int | None = None

    @classmethod
    def ok(cls, result: Any = None, *, status_code: int | None = 200) -> "CommandResponse":
        return cls(success=True, result=result, status_code=status_code)

    @classmethod
    def failed(cls, error: str, *, status_code: int | None = None) -> "CommandResponse":
        return cls(success=False, error=error, status_code=status_code)


class RiskGate(ABC):
    """Contract for admitting trades against portfolio limits."""

    @abstractmethod
    def should_allow_trade(
        self,
        symbol: str,
        side: str,
        size: float,
        price: float,
        positions: PositionInput,
        balance: float,
    ) -> "TradeValidation":
        """Return whether a new trade may be opened."""

    @abstractmethod
    def get_risk_metrics(self, positions: PositionInput, balance: float) -> "RiskMetrics":
        """Compute exposure metrics for a positions snapshot."""

    @abstractmethod
    def calculate_optimal_position_size(
        self,
        balance: float,
        entry_price: float,
        stop_loss: float,
        risk_per_trade_pct: float | None = None,
    ) -> float:
        """Return a position size in base units."""


class OrderCommandClient(ABC):
    """REST-shaped command interface; one request, one response.

    Implementations report failures through :class:`CommandResponse` instead of
    raising.
    """

    @abstractmethod
    async def place_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        """Submit a new order."""

    @abstractmethod
    async def place_bracket_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        """Attach bracket legs to a position."""

    @abstractmethod
    async def cancel_order(self, order_id: str) -> CommandResponse:
        """Cancel a single order."""

    @abstractmethod
    async def cancel_batch_orders(self, order_ids: Sequence[str]) -> CommandResponse:
        """Cancel several orders; ``result`` carries per-order outcomes when available."""

    @abstractmethod
    async def cancel_all_orders(self, filters: Mapping[str, Any] | None = None) -> CommandResponse:
        """Cancel every order matching ``filters``."""

    @abstractmethod
    async def edit_order(self, order_id: str, updates: Mapping[str, Any]) -> CommandResponse:
        """Amend price or size of an open order."""


class MarketStateProvider(ABC):
    """Source of market, position and balance snapshots."""

    @abstractmethod
    async def get_market_state(self) -> "MarketState":
        """Return the latest account and market view."""


class AnalysisEngine(ABC):
    """Opaque oracle producing trade ideas."""

    @abstractmethod
    async def analyze(
        self,
        market_data: Sequence[Any],
        positions: Sequence["PositionSnapshot"],
        balance: float,
    ) -> "AnalysisResult":
        """Return a trade signal with sizing hints."""


__all__ = [
    "AnalysisEngine",
    "CommandResponse",
    "MarketStateProvider",
    "OrderCommandClient",
    "RiskGate",
]
