"""Value types produced by the risk manager."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4


class AlertKind(str, Enum):
    PORTFOLIO_RISK = "portfolio_risk"
    DRAWDOWN = "drawdown"
    DAILY_LOSS = "daily_loss"
    MAX_POSITIONS = "max_positions"
    POSITION_SIZE = "position_size"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True, slots=True)
class RiskMetrics:
    """Exposure figures derived from one positions/balance snapshot.

    ``portfolio_risk`` and the drawdown fields are percentages of balance.
    """

    total_exposure: float = 0.0
    portfolio_risk: float = 0.0
    current_drawdown: float = 0.0
    max_drawdown: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    sharpe_ratio: float = 0.0
    win_rate: float = 0.0
    value_at_risk: float = 0.0

    @classmethod
    def zero(cls) -> "RiskMetrics":
        return cls()

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class RiskAlert:
    kind: AlertKind
    severity: AlertSeverity
    message: str
    metric: str
    current_value: float
    threshold: float
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "metric": self.metric,
            "current_value": self.current_value,
            "threshold": self.threshold,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class TradeValidation:
    """Verdict returned by trade and position-size validation."""

    approved: bool
    reason: str | None = None
    risk_score: float | None = None

    @classmethod
    def reject(cls, reason: str) -> "TradeValidation":
        return cls(approved=False, reason=reason)


__all__ = ["AlertKind", "AlertSeverity", "RiskAlert", "RiskMetrics", "TradeValidation"]
