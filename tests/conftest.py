# SPDX-License-Identifier: MIT
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from core.utils.clock import ManualClock
from core.utils.metrics import MetricsCollector
from execution.connectors import SimulatedCommandClient
from execution.order_manager import HybridOrderManager, OrderManagerConfig
from risk.manager import RiskManager


@pytest.fixture
def registry() -> CollectorRegistry:
    return CollectorRegistry()


@pytest.fixture
def metrics(registry: CollectorRegistry) -> MetricsCollector:
    return MetricsCollector(registry)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def risk_manager(metrics: MetricsCollector) -> RiskManager:
    return RiskManager(metrics=metrics)


@pytest.fixture
def client() -> SimulatedCommandClient:
    return SimulatedCommandClient()


@pytest.fixture
def order_manager(client: SimulatedCommandClient, metrics: MetricsCollector) -> HybridOrderManager:
    """Order manager wired so simulated exchange events flow back into it."""

    manager = HybridOrderManager(client, OrderManagerConfig(default_timeout=1.0), metrics=metrics)
    client.attach_event_sink(manager.handle_stream_message)
    return manager
