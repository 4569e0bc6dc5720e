"""Interface definitions for trading desk collaborators."""

from interfaces.execution import (
    AnalysisEngine,
    CommandResponse,
    MarketStateProvider,
    OrderCommandClient,
    RiskGate,
)

__all__ = [
    "AnalysisEngine",
    "CommandResponse",
    "MarketStateProvider",
    "OrderCommandClient",
    "RiskGate",
]
