"""Application layer wiring risk, execution and the autonomous agent."""

from .agent import (
    AgentConfig,
    AgentDecision,
    AgentState,
    AgentStatus,
    AutonomousAgent,
    CircuitBreakers,
    DecisionAction,
    TradingHours,
)
from .container import TradingDesk, build_desk
from .settings import DeskSettings

__all__ = [
    "AgentConfig",
    "AgentDecision",
    "AgentState",
    "AgentStatus",
    "AutonomousAgent",
    "CircuitBreakers",
    "DecisionAction",
    "DeskSettings",
    "TradingDesk",
    "TradingHours",
    "build_desk",
]
