# SPDX-License-Identifier: MIT
"""Hybrid REST + event-stream order manager.

Orders are submitted through an :class:`~interfaces.execution.OrderCommandClient`
whose responses only acknowledge *submission*. What actually happened to an
order is learned exclusively from the private event stream: every inbound
:class:`~execution.events.OrderEvent` overwrites the cached
:class:`~domain.order.ConfirmedOrder` for its exchange id and client order id.

Stream handlers are synchronous and never await between reading and writing
the cache, so on a single event loop no interleaving can corrupt it. Events
are applied in arrival order; there is no sequence-number protection against
a transport that reorders messages.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Sequence

from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from core.utils.signals import Signal
from domain.errors import EventParseError, OrderCommandError, OrderError, OrderTimeoutError
from domain.order import (
    BracketOrderRequest,
    ConfirmedOrder,
    OrderCommandResult,
    OrderPlacementResult,
    OrderRequest,
    OrderState,
    SubmittedOrder,
)
from interfaces.execution import CommandResponse, OrderCommandClient

from .events import ConnectionEvent, OrderEvent, TradeEvent, parse_stream_message

StreamEvent = OrderEvent | TradeEvent | ConnectionEvent


@dataclass(slots=True)
class OrderManagerConfig:
    """Runtime configuration for :class:`HybridOrderManager`."""

    default_timeout: float = 30.0
    max_trade_history: int = 1000

    def __post_init__(self) -> None:
        object.__setattr__(self, "default_timeout", max(0.001, float(self.default_timeout)))
        object.__setattr__(self, "max_trade_history", max(1, int(self.max_trade_history)))


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


class HybridOrderManager:
    """Issue order commands and reconcile them with stream confirmations."""

    def __init__(
        self,
        client: OrderCommandClient,
        config: OrderManagerConfig | None = None,
        *,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._client = client
        self._config = config or OrderManagerConfig()
        self._logger = get_logger(__name__)
        self._metrics = metrics or get_metrics_collector()
        self._orders_by_id: Dict[str, ConfirmedOrder] = {}
        self._orders_by_client_id: Dict[str, ConfirmedOrder] = {}
        self._pending: Dict[str, asyncio.Future[ConfirmedOrder]] = {}
        self._pending_expiry: Dict[str, asyncio.TimerHandle] = {}
        self._waiters: Dict[str, List[asyncio.Future[ConfirmedOrder]]] = {}
        self._trades: Deque[TradeEvent] = deque(maxlen=self._config.max_trade_history)
        self._connected = False
        self._closed = False
        self.order_updated = Signal("order_updated")
        self.trade_executed = Signal("trade_executed")
        self.connection_changed = Signal("connection_changed")
        self._state_signals: Dict[OrderState, Signal] = {
            state: Signal(f"order_state.{state.value}") for state in OrderState
        }

    @property
    def config(self) -> OrderManagerConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def pending_count(self) -> int:
        """Client order ids still awaiting their first stream confirmation."""

        return len(self._pending)

    @property
    def waiter_count(self) -> int:
        return sum(len(waiters) for waiters in self._waiters.values())

    # ------------------------------------------------------------------
    # Commands
    async def place_order(self, request: OrderRequest | Mapping[str, Any]) -> OrderPlacementResult:
        """Submit an order.

        Success means the exchange accepted the order, not that it filled. When
        the request carries a ``client_order_id`` the first stream event for
        that id resolves anyone waiting on it via :meth:`wait_for_order_update`.
        That correlation is consumed once: if the event arrives before this
        call returns, a later ``wait_for_order_update(client_order_id)`` waits
        for the next event, so read :meth:`get_order` first. An entry that is
        never confirmed expires after ``config.default_timeout`` seconds.
        """

        try:
            order_request = request if isinstance(request, OrderRequest) else OrderRequest(**request)
        except (TypeError, ValueError) as exc:
            self._metrics.record_order_command("place_order", "invalid")
            return OrderPlacementResult(success=False, error=f"invalid order request: {exc}")

        client_id = order_request.client_order_id
        if client_id and client_id not in self._pending:
            self._pending[client_id] = asyncio.get_running_loop().create_future()

        response = await self._execute(
            "place_order", self._client.place_order, order_request.to_payload()
        )
        if not response.success:
            if client_id:
                self._fail_pending(client_id, OrderCommandError(response.error or "order rejected"))
            self._logger.warning(
                "Order placement failed",
                instrument=order_request.instrument,
                client_order_id=client_id,
                error=response.error,
            )
            return OrderPlacementResult(success=False, client_order_id=client_id, error=response.error)

        submitted = self._submitted_from(response, client_id, order_request.instrument)
        if client_id and client_id in self._pending:
            self._expire_later(client_id)
        self._logger.info(
            "Order submitted",
            order_id=submitted.order_id,
            client_order_id=client_id,
            instrument=order_request.instrument,
            side=order_request.side.value,
            size=order_request.size,
        )
        return OrderPlacementResult(
            success=True,
            order=submitted,
            order_id=submitted.order_id,
            client_order_id=client_id,
        )

    async def place_bracket_order(self, request: BracketOrderRequest) -> OrderPlacementResult:
        response = await self._execute(
            "place_bracket_order", self._client.place_bracket_order, request.to_payload()
        )
        if not response.success:
            return OrderPlacementResult(success=False, error=response.error)
        submitted = self._submitted_from(response, None, request.instrument)
        return OrderPlacementResult(success=True, order=submitted, order_id=submitted.order_id)

    async def cancel_order(self, order_id: str) -> OrderCommandResult:
        response = await self._execute("cancel_order", self._client.cancel_order, order_id)
        return self._command_result(order_id, response)

    async def cancel_batch_orders(self, order_ids: Sequence[str]) -> List[OrderCommandResult]:
        """Cancel several orders, reporting one result per requested id."""

        ids = [str(order_id) for order_id in order_ids]
        if not ids:
            return []
        response = await self._execute("cancel_batch_orders", self._client.cancel_batch_orders, ids)
        if not response.success:
            return [OrderCommandResult(success=False, order_id=order_id, error=response.error) for order_id in ids]

        outcomes: Dict[str, Mapping[str, Any]] = {}
        if isinstance(response.result, Sequence):
            for item in response.result:
                if isinstance(item, Mapping) and item.get("id") is not None:
                    outcomes[str(item["id"])] = item
        results: List[OrderCommandResult] = []
        for order_id in ids:
            item = outcomes.get(order_id)
            if item is not None and item.get("success") is False:
                results.append(
                    OrderCommandResult(
                        success=False, order_id=order_id, data=item, error=str(item.get("error") or "cancel failed")
                    )
                )
            else:
                results.append(OrderCommandResult(success=True, order_id=order_id, data=item))
        return results

    async def cancel_all_orders(self, filters: Mapping[str, Any] | None = None) -> OrderCommandResult:
        response = await self._execute("cancel_all_orders", self._client.cancel_all_orders, dict(filters or {}))
        return self._command_result(None, response)

    async def edit_order(self, order_id: str, updates: Mapping[str, Any]) -> OrderCommandResult:
        if not updates:
            return OrderCommandResult(success=False, order_id=order_id, error="no updates supplied")
        response = await self._execute("edit_order", self._client.edit_order, order_id, dict(updates))
        return self._command_result(order_id, response)

    async def _execute(
        self,
        command: str,
        call: Callable[..., Awaitable[CommandResponse]],
        *args: Any,
    ) -> CommandResponse:
        with self._metrics.measure_order_command(command) as ctx:
            try:
                response = await call(*args)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._logger.exception("Order command raised", command=command)
                response = CommandResponse.failed(f"{type(exc).__name__}: {exc}")
            ctx["status"] = "success" if response.success else "failed"
        return response

    @staticmethod
    def _submitted_from(response: CommandResponse, client_id: str | None, instrument: str) -> SubmittedOrder:
        raw = response.result if isinstance(response.result, Mapping) else {}
        order_id = raw.get("id")
        return SubmittedOrder(
            order_id=str(order_id) if order_id is not None else None,
            client_order_id=client_id or raw.get("client_order_id"),
            instrument=instrument,
            raw=dict(raw),
        )

    @staticmethod
    def _command_result(order_id: str | None, response: CommandResponse) -> OrderCommandResult:
        data = response.result if isinstance(response.result, Mapping) else None
        if isinstance(response.result, Sequence) and not isinstance(response.result, (str, bytes)):
            data = {"items": list(response.result)}
        return OrderCommandResult(
            success=response.success, order_id=order_id, data=data, error=response.error
        )

    # ------------------------------------------------------------------
    # Event stream
    def handle_stream_message(self, payload: Mapping[str, Any] | str | bytes) -> StreamEvent | None:
        """Parse and apply one raw stream payload; undecodable payloads are dropped."""

        try:
            event = parse_stream_message(payload)
        except EventParseError as exc:
            self._metrics.record_order_event("unparsable")
            self._logger.warning("Dropping undecodable stream payload", error=str(exc))
            return None
        self.handle_event(event)
        return event

    def handle_event(self, event: StreamEvent) -> None:
        if isinstance(event, OrderEvent):
            self._apply_order_event(event)
        elif isinstance(event, TradeEvent):
            self._apply_trade_event(event)
        elif isinstance(event, ConnectionEvent):
            self._apply_connection_event(event)

    def _apply_order_event(self, event: OrderEvent) -> ConfirmedOrder:
        order = event.to_confirmed()
        self._orders_by_id[order.id] = order
        if order.client_order_id:
            self._orders_by_client_id[order.client_order_id] = order

        for key in (order.id, order.client_order_id):
            if not key:
                continue
            pending = self._pop_pending(key)
            if pending is not None and not pending.done():
                pending.set_result(order)
            for waiter in self._waiters.pop(key, []):
                if not waiter.done():
                    waiter.set_result(order)

        self._metrics.record_order_event(order.state.value)
        self._logger.debug(
            "Order update applied",
            order_id=order.id,
            client_order_id=order.client_order_id,
            state=order.state.value,
            unfilled_size=order.unfilled_size,
        )
        self.order_updated.emit(order)
        self._state_signals[order.state].emit(order)
        return order

    def _apply_trade_event(self, event: TradeEvent) -> None:
        self._trades.appendleft(event)
        self._metrics.record_trade_event(event.side.value)
        self._logger.info(
            "Trade executed",
            order_id=event.order_id,
            client_order_id=event.client_order_id,
            side=event.side.value,
            size=event.size,
            price=event.price,
        )
        self.trade_executed.emit(event)

    def _apply_connection_event(self, event: ConnectionEvent) -> None:
        self._connected = event.connected
        if event.connected:
            self._logger.info("Order stream connected")
        else:
            self._logger.warning("Order stream not connected", status=event.status, reason=event.reason)
        self.connection_changed.emit(event)

    # ------------------------------------------------------------------
    # Awaiting confirmations
    async def wait_for_order_update(self, order_id: str, timeout: float | None = None) -> ConfirmedOrder:
        """Wait for the next stream update for ``order_id`` (exchange or client id).

        Raises:
            OrderTimeoutError: When nothing arrives within ``timeout`` seconds.
            OrderCommandError: When the awaited placement was rejected.
            OrderError: When the manager is closed while waiting.
        """

        if self._closed:
            raise OrderError("order manager closed")
        limit = self._config.default_timeout if timeout is None else max(float(timeout), 0.0)

        pending = self._pending.get(order_id)
        if pending is not None and not pending.done():
            try:
                return await asyncio.wait_for(asyncio.shield(pending), limit)
            except TimeoutError:
                raise OrderTimeoutError(order_id, limit) from None

        waiter: asyncio.Future[ConfirmedOrder] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(order_id, []).append(waiter)
        try:
            return await asyncio.wait_for(waiter, limit)
        except TimeoutError:
            raise OrderTimeoutError(order_id, limit) from None
        finally:
            self._discard_waiter(order_id, waiter)

    def _discard_waiter(self, key: str, waiter: asyncio.Future[ConfirmedOrder]) -> None:
        waiters = self._waiters.get(key)
        if not waiters:
            return
        with contextlib.suppress(ValueError):
            waiters.remove(waiter)
        if not waiters:
            del self._waiters[key]

    def _pop_pending(self, key: str) -> asyncio.Future[ConfirmedOrder] | None:
        handle = self._pending_expiry.pop(key, None)
        if handle is not None:
            handle.cancel()
        return self._pending.pop(key, None)

    def _expire_later(self, key: str) -> None:
        previous = self._pending_expiry.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._pending_expiry[key] = asyncio.get_running_loop().call_later(
            self._config.default_timeout, self._expire_pending, key
        )

    def _expire_pending(self, key: str) -> None:
        self._pending_expiry.pop(key, None)
        if key not in self._pending:
            return
        self._logger.warning(
            "Order confirmation not received", client_order_id=key, timeout=self._config.default_timeout
        )
        self._fail_pending(key, OrderTimeoutError(key, self._config.default_timeout))

    def _fail_pending(self, key: str, error: Exception) -> None:
        pending = self._pop_pending(key)
        if pending is not None and not pending.done():
            pending.set_exception(error)
            _mark_retrieved(pending)

    # ------------------------------------------------------------------
    # Queries
    def get_order(self, order_id: str) -> ConfirmedOrder | None:
        """Look up by exchange id, falling back to client order id."""

        return self._orders_by_id.get(order_id) or self._orders_by_client_id.get(order_id)

    def get_order_by_client_id(self, client_order_id: str) -> ConfirmedOrder | None:
        return self._orders_by_client_id.get(client_order_id)

    def get_all_orders(self) -> List[ConfirmedOrder]:
        return list(self._orders_by_id.values())

    def get_orders_by_state(self, state: OrderState | str) -> List[ConfirmedOrder]:
        resolved = OrderState(state)
        return [order for order in self._orders_by_id.values() if order.state is resolved]

    def get_open_orders(self) -> List[ConfirmedOrder]:
        return [order for order in self._orders_by_id.values() if order.is_open]

    def get_trades(self, limit: int | None = None) -> List[TradeEvent]:
        """Return recent trade executions, newest first."""

        trades = list(self._trades)
        if limit is not None:
            return trades[: max(int(limit), 0)]
        return trades

    # ------------------------------------------------------------------
    # Listeners
    def on_order_update(self, callback: Callable[[ConfirmedOrder], Any]) -> Callable[[], None]:
        return self.order_updated.connect(callback)

    def on_order_state(
        self, state: OrderState | str, callback: Callable[[ConfirmedOrder], Any]
    ) -> Callable[[], None]:
        return self._state_signals[OrderState(state)].connect(callback)

    def on_trade(self, callback: Callable[[TradeEvent], Any]) -> Callable[[], None]:
        return self.trade_executed.connect(callback)

    def on_connection_change(self, callback: Callable[[ConnectionEvent], Any]) -> Callable[[], None]:
        return self.connection_changed.connect(callback)

    def close(self) -> None:
        """Fail every outstanding waiter and drop all listeners."""

        self._closed = True
        error = OrderError("order manager closed")
        for key in list(self._pending):
            self._fail_pending(key, error)
        for waiters in self._waiters.values():
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(error)
        self._waiters.clear()
        for signal in (self.order_updated, self.trade_executed, self.connection_changed, *self._state_signals.values()):
            signal.clear()
        self._logger.info("Order manager closed")


__all__ = ["HybridOrderManager", "OrderManagerConfig"]
