# SPDX-License-Identifier: MIT
"""Shared utilities for the trading desk."""

from .clock import Clock, ManualClock, SystemClock
from .logging import (
    JSONFormatter,
    StructuredLogger,
    configure_logging,
    correlation_context,
    get_logger,
)
from .metrics import MetricsCollector, get_metrics_collector, start_metrics_server
from .scheduling import PeriodicTask, ScheduledTask, TaskState
from .signals import Signal

__all__ = [
    "Clock",
    "JSONFormatter",
    "ManualClock",
    "MetricsCollector",
    "PeriodicTask",
    "ScheduledTask",
    "Signal",
    "StructuredLogger",
    "SystemClock",
    "TaskState",
    "configure_logging",
    "correlation_context",
    "get_logger",
    "get_metrics_collector",
    "start_metrics_server",
]
