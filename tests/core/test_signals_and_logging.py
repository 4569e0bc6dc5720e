# SPDX-License-Identifier: MIT
from __future__ import annotations

import io
import json
import logging
from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from core.utils.clock import ManualClock
from core.utils.logging import (
    JSONFormatter,
    StructuredLogger,
    configure_logging,
    correlation_context,
    get_correlation_id,
)
from core.utils.metrics import MetricsCollector
from core.utils.signals import Signal


class TestSignal:
    def test_handlers_receive_arguments_in_order(self) -> None:
        signal = Signal("demo")
        seen = []
        signal.connect(lambda value: seen.append(("a", value)))
        signal.connect(lambda value: seen.append(("b", value)))

        signal.emit(7)

        assert seen == [("a", 7), ("b", 7)]
        assert len(signal) == 2

    def test_failing_handler_is_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        signal = Signal("demo")
        seen = []

        def broken(_value) -> None:
            raise RuntimeError("boom")

        signal.connect(broken)
        signal.connect(seen.append)

        signal.emit("x")

        assert seen == ["x"]
        assert any(record.message == "Signal handler failed" for record in caplog.records)

    def test_disconnect_is_idempotent(self) -> None:
        signal = Signal("demo")
        seen = []
        disconnect = signal.connect(seen.append)

        disconnect()
        disconnect()
        signal.emit(1)

        assert seen == []
        assert len(signal) == 0


class TestLogging:
    def test_json_formatter_renders_fields(self) -> None:
        record = logging.LogRecord("deltadesk.tests", logging.WARNING, __file__, 10, "odd fill", (), None)
        record.correlation_id = "cid-1"
        record.extra_fields = {"side": "buy", "at": datetime(2025, 1, 6, tzinfo=timezone.utc)}

        payload = json.loads(JSONFormatter().format(record))

        assert payload["level"] == "WARNING"
        assert payload["correlation_id"] == "cid-1"
        assert payload["side"] == "buy"
        assert payload["at"] == "2025-01-06T00:00:00+00:00"

    def test_correlation_context_binds_and_resets(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO)
        logger = StructuredLogger("deltadesk.tests")

        with correlation_context("cycle-9") as correlation_id:
            logger.info("inside", symbol="BTCUSD")
            assert get_correlation_id() == correlation_id == "cycle-9"

        assert get_correlation_id() is None
        assert caplog.records[-1].correlation_id == "cycle-9"
        assert caplog.records[-1].extra_fields == {"symbol": "BTCUSD"}

    def test_bound_fields_are_merged(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO)
        logger = StructuredLogger("deltadesk.tests").bind(task_id="t-1")

        logger.info("slice placed", slice=2)

        assert caplog.records[-1].extra_fields == {"task_id": "t-1", "slice": 2}

    def test_operation_logs_failure_and_reraises(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.DEBUG)
        logger = StructuredLogger("deltadesk.tests")

        with pytest.raises(KeyError):
            with logger.operation("lookup", key="x"):
                raise KeyError("x")

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.message == "Failed operation: lookup"
        assert record.extra_fields["status"] == "failure"
        assert record.extra_fields["error_type"] == "KeyError"

    def test_configure_logging_plain_text(self) -> None:
        stream = io.StringIO()
        root = logging.getLogger()
        previous_level, previous_handlers = root.level, list(root.handlers)
        try:
            configure_logging("warning", use_json=False, stream=stream)
            StructuredLogger("deltadesk.tests").warning("plain message")
        finally:
            root.handlers[:] = previous_handlers
            root.setLevel(previous_level)

        assert "WARNING - plain message" in stream.getvalue()


class TestMetricsAndClock:
    def test_disabled_collector_is_noop(self) -> None:
        collector = MetricsCollector(CollectorRegistry(), enabled=False)

        collector.record_agent_decision("HOLD")
        with collector.measure_order_command("place_order") as ctx:
            ctx["status"] = "failed"

        assert not collector.enabled
        assert collector.render_prometheus() == ""

    def test_agent_status_is_one_hot(self, metrics, registry) -> None:
        metrics.set_agent_status("RUNNING")
        metrics.set_agent_status("PAUSED")

        assert registry.get_sample_value("deltadesk_agent_status", {"status": "PAUSED"}) == 1.0
        assert registry.get_sample_value("deltadesk_agent_status", {"status": "RUNNING"}) == 0.0
        assert "deltadesk_agent_status" in metrics.render_prometheus()

    def test_command_latency_recorded_on_error(self, metrics, registry) -> None:
        with pytest.raises(RuntimeError):
            with metrics.measure_order_command("cancel_order"):
                raise RuntimeError("down")

        assert (
            registry.get_sample_value("deltadesk_order_commands_total", {"command": "cancel_order", "status": "error"})
            == 1.0
        )
        assert (
            registry.get_sample_value("deltadesk_order_command_latency_seconds_count", {"command": "cancel_order"})
            == 1.0
        )

    def test_manual_clock(self) -> None:
        clock = ManualClock(datetime(2025, 1, 6, tzinfo=timezone.utc))

        clock.advance(90)
        assert clock.now() == datetime(2025, 1, 6, 0, 1, 30, tzinfo=timezone.utc)
        assert clock.monotonic() == 90
        with pytest.raises(ValueError):
            clock.advance(-1)
        clock.set(datetime(2025, 1, 6, 0, 0, tzinfo=timezone.utc))
        assert clock.monotonic() == 90
