# SPDX-License-Identifier: MIT
from __future__ import annotations

import asyncio

import pytest

from core.utils.scheduling import TaskState
from domain.order import OrderRequest, OrderSide
from execution.advanced_orders import (
    AdvancedOrderManager,
    IcebergOrderTask,
    TwapOrderTask,
    iceberg_slices,
    twap_slices,
)


class RecordingSleep:
    def __init__(self, on_sleep=None) -> None:
        self.delays: list[float] = []
        self._on_sleep = on_sleep

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self._on_sleep is not None:
            self._on_sleep(len(self.delays))


def _parent(size: float, client_order_id: str | None = "parent") -> OrderRequest:
    return OrderRequest(
        size=size,
        side=OrderSide.BUY,
        product_symbol="BTCUSD",
        limit_price=45_000,
        client_order_id=client_order_id,
    )


class TestSlicing:
    def test_iceberg_remainder_goes_last(self) -> None:
        slices = iceberg_slices(25, 10, 2)

        assert [s.size for s in slices] == [10, 10, 5]
        assert [s.delay for s in slices] == [0.0, 2, 2]

    def test_iceberg_exact_multiple(self) -> None:
        assert len(iceberg_slices(30, 10, 1)) == 3

    def test_twap_even_split(self) -> None:
        slices = twap_slices(1.0, 5, 5)

        assert [s.size for s in slices] == pytest.approx([0.2] * 5)
        assert [s.delay for s in slices] == [0.0, 60.0, 60.0, 60.0, 60.0]

    @pytest.mark.parametrize(("duration", "expected"), [(0.5, 1), (5, 5), (60, 20)])
    def test_twap_default_interval_count(self, order_manager, duration, expected) -> None:
        task = TwapOrderTask(order_manager, _parent(1.0), duration)

        assert task.intervals == expected
        assert len(task.slices) == expected

    def test_iceberg_default_display(self, order_manager) -> None:
        small = IcebergOrderTask(order_manager, _parent(5))
        large = IcebergOrderTask(order_manager, _parent(50_000))

        assert small.display_quantity == pytest.approx(0.5)
        assert len(small.slices) == 10
        assert large.display_quantity == 1000.0
        assert small.task_id.startswith("iceberg-")

    @pytest.mark.parametrize(
        "build",
        [
            lambda m: IcebergOrderTask(m, _parent(1), display_quantity=0),
            lambda m: IcebergOrderTask(m, _parent(1), interval=-1),
            lambda m: TwapOrderTask(m, _parent(1), 0),
            lambda m: TwapOrderTask(m, _parent(1), 5, intervals=0),
        ],
    )
    def test_invalid_parameters(self, order_manager, build) -> None:
        with pytest.raises(ValueError):
            build(order_manager)


class TestExecution:
    @pytest.mark.asyncio
    async def test_iceberg_places_every_slice(self, order_manager, metrics, registry) -> None:
        sleep = RecordingSleep()
        advanced = AdvancedOrderManager(order_manager, metrics=metrics, sleep=sleep)

        task = advanced.submit_iceberg(_parent(25), display_quantity=10, interval=2)
        state = await task.wait()

        assert state is TaskState.COMPLETED
        assert sleep.delays == [2, 2]
        assert [o.client_order_id for o in order_manager.get_all_orders()] == ["parent-0", "parent-1", "parent-2"]
        assert [o.size for o in order_manager.get_all_orders()] == [10, 10, 5]
        assert task.executed_size == 25
        assert task.progress == 1.0
        assert advanced.active_tasks() == []
        assert advanced.get_task(task.task_id) is task
        assert (
            registry.get_sample_value(
                "deltadesk_advanced_order_slices_total", {"algorithm": "iceberg", "status": "placed"}
            )
            == 3.0
        )

    @pytest.mark.asyncio
    async def test_twap_spacing(self, order_manager, metrics) -> None:
        sleep = RecordingSleep()
        advanced = AdvancedOrderManager(order_manager, metrics=metrics, sleep=sleep)

        task = advanced.submit_twap(_parent(1.0, client_order_id=None), duration_minutes=3)
        await task.wait()

        assert task.state is TaskState.COMPLETED
        assert sleep.delays == [60.0, 60.0]
        assert len(order_manager.get_all_orders()) == 3
        assert all(o.client_order_id is None for o in order_manager.get_all_orders())
        assert task.executed_size == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_rejected_slice_stops_task(self, order_manager, client, metrics, registry) -> None:
        sleep = RecordingSleep(on_sleep=lambda count: client.schedule_failures("reject"))
        advanced = AdvancedOrderManager(order_manager, metrics=metrics, sleep=sleep)

        task = advanced.submit_iceberg(_parent(30), display_quantity=10, interval=1)
        state = await task.wait()

        assert state is TaskState.FAILED
        assert task.error == "slice 1 rejected: simulated rejection"
        assert len(task.placed) == 2
        assert task.executed_size == 10
        assert task.progress == pytest.approx(1 / 3)
        assert len(order_manager.get_all_orders()) == 1
        assert (
            registry.get_sample_value(
                "deltadesk_advanced_order_slices_total", {"algorithm": "iceberg", "status": "failed"}
            )
            == 1.0
        )

    @pytest.mark.asyncio
    async def test_cancel_between_slices(self, order_manager, metrics) -> None:
        advanced = AdvancedOrderManager(order_manager, metrics=metrics)

        task = advanced.submit_iceberg(_parent(30), display_quantity=10, interval=30)
        await asyncio.sleep(0)
        assert len(task.placed) == 1

        assert advanced.cancel(task.task_id)
        assert await task.wait() is TaskState.CANCELLED
        assert not advanced.cancel(task.task_id)
        assert not advanced.cancel("unknown")
        assert len(order_manager.get_all_orders()) == 1

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_tasks(self, order_manager, metrics) -> None:
        advanced = AdvancedOrderManager(order_manager, metrics=metrics)
        first = advanced.submit_twap(_parent(1.0, "a"), duration_minutes=10)
        second = advanced.submit_iceberg(_parent(5, "b"), display_quantity=1, interval=60)

        await advanced.shutdown()

        assert first.state is TaskState.CANCELLED
        assert second.state is TaskState.CANCELLED
        assert advanced.active_tasks() == []
