# SPDX-License-Identifier: MIT
"""Iceberg and TWAP parent orders executed as sequences of child orders."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, List, TypeVar
from uuid import uuid4

from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from core.utils.scheduling import ScheduledTask
from domain.order import OrderPlacementResult, OrderRequest
from execution.order_manager import HybridOrderManager

ICEBERG_DISPLAY_FRACTION = 0.1
ICEBERG_MAX_DISPLAY = 1000.0
DEFAULT_ICEBERG_INTERVAL = 2.0
MAX_TWAP_SLICES = 20

Sleep = Callable[[float], Awaitable[None]]
_TaskT = TypeVar("_TaskT", bound="SlicedOrderTask")


@dataclass(frozen=True, slots=True)
class ChildSlice:
    """A child order of ``size`` submitted ``delay`` seconds after the previous one."""

    index: int
    size: float
    delay: float


class SlicedOrderTask(ScheduledTask):
    """Submit a precomputed list of child slices through the order manager.

    The first rejected slice marks the task failed and stops it. Child client
    order ids are derived from the parent's as ``<parent>-<index>``.
    """

    algorithm = "sliced"

    def __init__(
        self,
        task_id: str,
        manager: HybridOrderManager,
        request: OrderRequest,
        slices: List[ChildSlice],
        *,
        metrics: MetricsCollector | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        super().__init__(task_id, logger=get_logger(__name__).bind(algorithm=self.algorithm))
        self.request = request
        self.slices = slices
        self.placed: List[OrderPlacementResult] = []
        self._manager = manager
        self._metrics = metrics or get_metrics_collector()
        self._sleep = sleep or asyncio.sleep

    @property
    def total_size(self) -> float:
        return self.request.size

    @property
    def executed_size(self) -> float:
        """Size accepted by the exchange across all submitted slices."""

        return sum(
            child.size
            for child, result in zip(self.slices, self.placed)
            if result.success
        )

    @property
    def progress(self) -> float:
        return self.executed_size / self.total_size if self.total_size else 0.0

    def child_request(self, child: ChildSlice) -> OrderRequest:
        parent_id = self.request.client_order_id
        return replace(
            self.request,
            size=child.size,
            client_order_id=f"{parent_id}-{child.index}" if parent_id else None,
        )

    async def run(self) -> None:
        self._logger.info(
            "Sliced order started",
            task_id=self.task_id,
            slices=len(self.slices),
            total_size=self.total_size,
        )
        for child in self.slices:
            if child.delay > 0:
                await self._sleep(child.delay)
            result = await self._manager.place_order(self.child_request(child))
            self.placed.append(result)
            if not result.success:
                self._metrics.record_advanced_order_slice(self.algorithm, "failed")
                self._fail(f"slice {child.index} rejected: {result.error}")
                self._logger.warning(
                    "Sliced order stopped after rejected slice",
                    task_id=self.task_id,
                    slice=child.index,
                    error=result.error,
                )
                return
            self._metrics.record_advanced_order_slice(self.algorithm, "placed")
        self._logger.info("Sliced order completed", task_id=self.task_id, executed_size=self.executed_size)


class IcebergOrderTask(SlicedOrderTask):
    """Show only ``display_quantity`` of the parent at a time."""

    algorithm = "iceberg"

    def __init__(
        self,
        manager: HybridOrderManager,
        request: OrderRequest,
        display_quantity: float | None = None,
        interval: float = DEFAULT_ICEBERG_INTERVAL,
        *,
        task_id: str | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        if display_quantity is not None and display_quantity <= 0:
            raise ValueError("display_quantity must be positive")
        if interval < 0:
            raise ValueError("interval cannot be negative")
        display = display_quantity or min(request.size * ICEBERG_DISPLAY_FRACTION, ICEBERG_MAX_DISPLAY)
        self.display_quantity = display
        self.interval = float(interval)
        super().__init__(
            task_id or f"iceberg-{uuid4().hex[:12]}",
            manager,
            request,
            iceberg_slices(request.size, display, interval),
            metrics=metrics,
            sleep=sleep,
        )


class TwapOrderTask(SlicedOrderTask):
    """Spread the parent evenly over ``duration_minutes``."""

    algorithm = "twap"

    def __init__(
        self,
        manager: HybridOrderManager,
        request: OrderRequest,
        duration_minutes: float,
        intervals: int | None = None,
        *,
        task_id: str | None = None,
        metrics: MetricsCollector | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        if intervals is not None and intervals <= 0:
            raise ValueError("intervals must be positive")
        self.duration_minutes = float(duration_minutes)
        self.intervals = intervals or max(1, min(int(duration_minutes), MAX_TWAP_SLICES))
        super().__init__(
            task_id or f"twap-{uuid4().hex[:12]}",
            manager,
            request,
            twap_slices(request.size, self.duration_minutes, self.intervals),
            metrics=metrics,
            sleep=sleep,
        )


def iceberg_slices(total: float, display: float, interval: float) -> List[ChildSlice]:
    count = math.ceil(total / display - 1e-9)
    slices = []
    for index in range(count):
        size = min(display, total - index * display)
        slices.append(ChildSlice(index=index, size=size, delay=interval if index else 0.0))
    return slices


def twap_slices(total: float, duration_minutes: float, intervals: int) -> List[ChildSlice]:
    spacing = duration_minutes * 60.0 / intervals
    size = total / intervals
    return [
        ChildSlice(index=index, size=size, delay=spacing if index else 0.0)
        for index in range(intervals)
    ]


class AdvancedOrderManager:
    """Registry of running iceberg and TWAP tasks."""

    def __init__(
        self,
        order_manager: HybridOrderManager,
        *,
        metrics: MetricsCollector | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._order_manager = order_manager
        self._metrics = metrics or get_metrics_collector()
        self._sleep = sleep
        self._tasks: Dict[str, SlicedOrderTask] = {}
        self._logger = get_logger(__name__)

    def submit_iceberg(
        self,
        request: OrderRequest,
        display_quantity: float | None = None,
        interval: float = DEFAULT_ICEBERG_INTERVAL,
    ) -> IcebergOrderTask:
        task = IcebergOrderTask(
            self._order_manager,
            request,
            display_quantity,
            interval,
            metrics=self._metrics,
            sleep=self._sleep,
        )
        return self._register(task)

    def submit_twap(
        self,
        request: OrderRequest,
        duration_minutes: float,
        intervals: int | None = None,
    ) -> TwapOrderTask:
        task = TwapOrderTask(
            self._order_manager,
            request,
            duration_minutes,
            intervals,
            metrics=self._metrics,
            sleep=self._sleep,
        )
        return self._register(task)

    def _register(self, task: _TaskT) -> _TaskT:
        self._tasks[task.task_id] = task
        task.start()
        return task

    def cancel(self, task_id: str) -> bool:
        task = self._tasks.get(task_id)
        if task is None:
            return False
        cancelled = task.cancel()
        if cancelled:
            self._logger.info("Advanced order cancelled", task_id=task_id)
        return cancelled

    def get_task(self, task_id: str) -> SlicedOrderTask | None:
        return self._tasks.get(task_id)

    def active_tasks(self) -> List[SlicedOrderTask]:
        return [task for task in self._tasks.values() if not task.done]

    async def shutdown(self) -> None:
        """Cancel every unfinished task and wait for them to unwind."""

        for task in self.active_tasks():
            task.cancel()
        for task in list(self._tasks.values()):
            await task.wait()


__all__ = [
    "AdvancedOrderManager",
    "ChildSlice",
    "IcebergOrderTask",
    "SlicedOrderTask",
    "TwapOrderTask",
    "iceberg_slices",
    "twap_slices",
]
