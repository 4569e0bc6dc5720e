# SPDX-License-Identifier: MIT
"""Cancellable asyncio task handles for periodic and multi-step jobs."""
from __future__ import annotations

import asyncio
import contextlib
import inspect
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable

from core.utils.logging import StructuredLogger, get_logger

TickCallback = Callable[[], Awaitable[Any] | Any]


class TaskState(str, Enum):
    """Lifecycle of a scheduled task handle."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


async def _maybe_await(result: Any) -> Any:
    if inspect.isawaitable(result):
        return await result
    return result


class PeriodicTask:
    """Invoke ``callback`` every ``interval`` seconds on the running event loop.

    Exceptions raised by the callback are logged and the schedule continues.
    :meth:`cancel` may be called from inside the callback itself; the loop then
    exits once the current invocation returns.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: TickCallback,
        *,
        run_immediately: bool = False,
        logger: StructuredLogger | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = float(interval)
        self._callback = callback
        self._run_immediately = run_immediately
        self._logger = logger or get_logger(__name__)
        self._task: asyncio.Task[None] | None = None
        self._state = TaskState.PENDING
        self._stop_requested = False
        self.iterations = 0

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is TaskState.RUNNING

    def start(self) -> None:
        """Schedule the loop; a no-op when already running."""

        if self.running:
            return
        self._stop_requested = False
        self._state = TaskState.RUNNING
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        """Stop scheduling further invocations."""

        task = self._task
        if task is None or task.done():
            self._state = TaskState.CANCELLED
            return
        self._state = TaskState.CANCELLED
        if task is asyncio.current_task():
            self._stop_requested = True
            return
        task.cancel()

    async def stop(self) -> None:
        """Cancel the loop and wait for it to unwind."""

        task = self._task
        self.cancel()
        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._task = None

    async def _run(self) -> None:
        if self._run_immediately:
            await self._invoke()
        while not self._stop_requested:
            await asyncio.sleep(self.interval)
            if self._stop_requested:
                break
            await self._invoke()

    async def _invoke(self) -> None:
        self.iterations += 1
        try:
            await _maybe_await(self._callback())
        except asyncio.CancelledError:
            raise
        except Exception:
            self._logger.exception("Periodic task callback failed", task=self.name)


class ScheduledTask(ABC):
    """Base class for one-shot, multi-step jobs with an explicit state.

    Subclasses implement :meth:`run`. The handle is started with :meth:`start`
    and may be cancelled at any suspension point with :meth:`cancel`.
    """

    def __init__(self, task_id: str, *, logger: StructuredLogger | None = None) -> None:
        self.task_id = task_id
        self._logger = logger or get_logger(__name__)
        self._task: asyncio.Task[None] | None = None
        self._state = TaskState.PENDING
        self.error: str | None = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def done(self) -> bool:
        return self._state in {TaskState.COMPLETED, TaskState.CANCELLED, TaskState.FAILED}

    @abstractmethod
    async def run(self) -> None:
        """Execute the job body."""

    def start(self) -> "ScheduledTask":
        if self._task is not None or self.done:
            raise RuntimeError(f"task {self.task_id} already started")
        self._task = asyncio.get_running_loop().create_task(
            self._run_guarded(), name=f"scheduled-{self.task_id}"
        )
        return self

    def cancel(self) -> bool:
        """Request cancellation; returns ``False`` if the task already finished."""

        if self.done:
            return False
        if self._task is None:
            self._state = TaskState.CANCELLED
            return True
        self._task.cancel()
        if self._state is TaskState.PENDING:
            self._state = TaskState.CANCELLED
        return True

    async def wait(self) -> TaskState:
        """Wait for the task to finish and return its final state."""

        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        return self._state

    async def _run_guarded(self) -> None:
        self._state = TaskState.RUNNING
        try:
            await self.run()
        except asyncio.CancelledError:
            self._state = TaskState.CANCELLED
            self._logger.info("Scheduled task cancelled", task_id=self.task_id)
            raise
        except Exception as exc:
            self._state = TaskState.FAILED
            self.error = str(exc)
            self._logger.exception("Scheduled task failed", task_id=self.task_id)
        else:
            if self._state is TaskState.RUNNING:
                self._state = TaskState.COMPLETED

    def _fail(self, reason: str) -> None:
        """Mark the task failed from inside :meth:`run` without raising."""

        self._state = TaskState.FAILED
        self.error = reason


__all__ = ["PeriodicTask", "ScheduledTask", "TaskState"]
