# SPDX-License-Identifier: MIT
"""Prometheus instrumentation for risk, order, take-profit and agent activity."""
from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

_AGENT_STATUSES = ("STOPPED", "RUNNING", "PAUSED", "ERROR", "EMERGENCY_STOP")


class MetricsCollector:
    """Centralised metrics collection for the trading desk."""

    def __init__(self, registry: Optional[CollectorRegistry] = None, *, enabled: bool = True):
        """Initialise the collector.

        Args:
            registry: Prometheus registry (the process default when ``None``).
            enabled: When ``False`` every recording method is a no-op.
        """

        self._enabled = enabled
        self.registry = registry
        if not enabled:
            return

        # Risk metrics
        self.risk_validation_total = Counter(
            "deltadesk_risk_validation_total",
            "Risk validations grouped by outcome",
            ["symbol", "outcome"],
            registry=registry,
        )
        self.risk_alerts_total = Counter(
            "deltadesk_risk_alerts_total",
            "Risk alerts raised",
            ["kind", "severity"],
            registry=registry,
        )
        self.portfolio_risk = Gauge(
            "deltadesk_portfolio_risk_percent",
            "Latest computed portfolio risk as a percentage of balance",
            registry=registry,
        )
        self.drawdown = Gauge(
            "deltadesk_drawdown_percent",
            "Latest computed drawdown as a percentage of balance",
            registry=registry,
        )

        # Order metrics
        self.order_commands_total = Counter(
            "deltadesk_order_commands_total",
            "Order commands issued to the exchange",
            ["command", "status"],
            registry=registry,
        )
        self.order_command_latency = Histogram(
            "deltadesk_order_command_latency_seconds",
            "Latency of order command round-trips",
            ["command"],
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=registry,
        )
        self.order_events_total = Counter(
            "deltadesk_order_events_total",
            "Order events received from the event stream",
            ["state"],
            registry=registry,
        )
        self.trade_events_total = Counter(
            "deltadesk_trade_events_total",
            "Trade executions received from the event stream",
            ["side"],
            registry=registry,
        )

        # Take-profit metrics
        self.take_profit_events_total = Counter(
            "deltadesk_take_profit_events_total",
            "Take-profit events emitted",
            ["event_type"],
            registry=registry,
        )
        self.take_profit_realized = Counter(
            "deltadesk_take_profit_realized_profit_total",
            "Profit realised by take-profit levels",
            registry=registry,
        )

        # Agent metrics
        self.agent_decisions_total = Counter(
            "deltadesk_agent_decisions_total",
            "Decisions recorded by the autonomous agent",
            ["action"],
            registry=registry,
        )
        self.agent_status = Gauge(
            "deltadesk_agent_status",
            "One-hot encoding of the agent state machine",
            ["status"],
            registry=registry,
        )
        self.circuit_breaker_trips_total = Counter(
            "deltadesk_circuit_breaker_trips_total",
            "Circuit breaker trips grouped by reason",
            ["reason"],
            registry=registry,
        )
        self.advanced_order_slices_total = Counter(
            "deltadesk_advanced_order_slices_total",
            "Child orders placed by iceberg and TWAP tasks",
            ["algorithm", "status"],
            registry=registry,
        )

    @property
    def enabled(self) -> bool:
        """Check if metrics collection is enabled."""
        return self._enabled

    def record_risk_validation(self, symbol: str, outcome: str) -> None:
        """Record the result of a risk validation."""

        if not self._enabled:
            return
        self.risk_validation_total.labels(symbol=symbol or "unknown", outcome=outcome).inc()

    def record_risk_alert(self, kind: str, severity: str) -> None:
        if not self._enabled:
            return
        self.risk_alerts_total.labels(kind=kind, severity=severity).inc()

    def set_portfolio_risk(self, value: float) -> None:
        if not self._enabled:
            return
        self.portfolio_risk.set(float(value))

    def set_drawdown(self, value: float) -> None:
        if not self._enabled:
            return
        self.drawdown.set(float(value))

    def record_order_command(self, command: str, status: str) -> None:
        """Record the outcome of an order command."""

        if not self._enabled:
            return
        self.order_commands_total.labels(command=command, status=status).inc()

    def observe_order_command_latency(self, command: str, seconds: float) -> None:
        if not self._enabled:
            return
        self.order_command_latency.labels(command=command).observe(max(0.0, float(seconds)))

    @contextmanager
    def measure_order_command(self, command: str) -> Iterator[Dict[str, Any]]:
        """Measure a command round-trip; callers may set ``ctx["status"]``."""

        if not self._enabled:
            yield {}
            return

        started = time.perf_counter()
        ctx: Dict[str, Any] = {}
        status = "success"
        try:
            yield ctx
        except Exception:
            status = "error"
            raise
        finally:
            self.observe_order_command_latency(command, time.perf_counter() - started)
            final_status = status if status == "error" else str(ctx.get("status") or status)
            self.record_order_command(command, final_status)

    def record_order_event(self, state: str) -> None:
        if not self._enabled:
            return
        self.order_events_total.labels(state=state).inc()

    def record_trade_event(self, side: str) -> None:
        if not self._enabled:
            return
        self.trade_events_total.labels(side=side).inc()

    def record_take_profit_event(self, event_type: str, profit: float = 0.0) -> None:
        """Record a take-profit event and any profit it realised."""

        if not self._enabled:
            return
        self.take_profit_events_total.labels(event_type=event_type).inc()
        if profit > 0:
            self.take_profit_realized.inc(profit)

    def record_agent_decision(self, action: str) -> None:
        if not self._enabled:
            return
        self.agent_decisions_total.labels(action=action).inc()

    def set_agent_status(self, status: str) -> None:
        """Flag ``status`` as the active agent state."""

        if not self._enabled:
            return
        for candidate in _AGENT_STATUSES:
            self.agent_status.labels(status=candidate).set(1.0 if candidate == status else 0.0)

    def record_circuit_breaker(self, reason: str) -> None:
        if not self._enabled:
            return
        self.circuit_breaker_trips_total.labels(reason=reason).inc()

    def record_advanced_order_slice(self, algorithm: str, status: str) -> None:
        if not self._enabled:
            return
        self.advanced_order_slices_total.labels(algorithm=algorithm, status=status).inc()

    def render_prometheus(self) -> str:
        """Render the currently collected metrics in Prometheus text format."""

        if not self._enabled:
            return ""
        payload = generate_latest(self.registry) if self.registry else generate_latest()
        return payload.decode("utf-8")


# Process-wide collector bound to the default Prometheus registry
_collector: Optional[MetricsCollector] = None


def get_metrics_collector(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Return the process-wide metrics collector, creating it on first use."""

    global _collector
    if _collector is None:
        _collector = MetricsCollector(registry)
    return _collector


def start_metrics_server(port: int = 8000, addr: str = "") -> None:
    """Expose the default registry over HTTP for Prometheus scraping."""

    start_http_server(port, addr)


__all__ = [
    "MetricsCollector",
    "get_metrics_collector",
    "start_metrics_server",
]
