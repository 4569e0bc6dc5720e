"""Risk management: limits, sizing and the portfolio risk manager."""

from risk.limits import RiskLimits
from risk.manager import RiskManager
from risk.models import AlertKind, AlertSeverity, RiskAlert, RiskMetrics, TradeValidation

__all__ = [
    "AlertKind",
    "AlertSeverity",
    "RiskAlert",
    "RiskLimits",
    "RiskManager",
    "RiskMetrics",
    "TradeValidation",
]
