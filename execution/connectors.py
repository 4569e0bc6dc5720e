# SPDX-License-Identifier: MIT
"""In-memory order command client for tests and paper sessions."""

from __future__ import annotations

import asyncio
from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Sequence

from interfaces.execution import CommandResponse, OrderCommandClient

EventSink = Callable[[Mapping[str, Any]], Any]

_FAILURE_TOKENS = {
    "reject": ("simulated rejection", 400),
    "timeout": ("simulated timeout", None),
    "429": ("HTTP 429: rate limited", 429),
    "500": ("HTTP 500: transient server error", 500),
}


def _now_us() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1_000_000)


class SimulatedCommandClient(OrderCommandClient):
    """Deterministic exchange stand-in.

    Orders are acknowledged with sequential identifiers. When an ``event_sink``
    is supplied the client publishes the stream payloads the real exchange
    would emit (``orders`` and ``v2/user_trades``), synchronously and before
    returning the command response, so fills may be observed before the
    placement call completes.

    ``failure_plan`` entries are consumed one per command. String tokens
    (``"reject"``, ``"timeout"``, ``"429"``, ``"500"``) produce failed
    responses; exception instances are raised to emulate a misbehaving client.
    """

    def __init__(
        self,
        *,
        event_sink: EventSink | None = None,
        failure_plan: Iterable[Exception | str] | None = None,
        auto_fill: bool = False,
        latency: float = 0.0,
        id_start: int = 1,
    ) -> None:
        self._event_sink = event_sink
        self._failures: Deque[Exception | str] = deque(failure_plan or [])
        self._auto_fill = auto_fill
        self._latency = max(0.0, float(latency))
        self._next_id = int(id_start)
        self._next_fill_id = 1
        self._orders: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple[str, Any]] = []

    def attach_event_sink(self, sink: EventSink | None) -> None:
        self._event_sink = sink

    def schedule_failures(self, *failures: Exception | str) -> None:
        """Queue failures for subsequent commands."""

        self._failures.extend(failures)

    def order(self, order_id: str) -> Dict[str, Any] | None:
        stored = self._orders.get(order_id)
        return dict(stored) if stored is not None else None

    # ------------------------------------------------------------------
    # OrderCommandClient API
    async def place_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        failure = await self._begin("place_order", dict(payload))
        if failure is not None:
            return failure
        order_id = self._generate_id()
        size = float(payload.get("size", 0))
        order = {
            "id": order_id,
            "client_order_id": payload.get("client_order_id"),
            "product_id": payload.get("product_id"),
            "product_symbol": payload.get("product_symbol"),
            "side": payload.get("side"),
            "order_type": payload.get("order_type", "limit_order"),
            "limit_price": payload.get("limit_price"),
            "size": size,
            "unfilled_size": size,
            "state": "open",
            "created_at": _now_us(),
        }
        self._orders[order_id] = order
        self._publish_order(order)
        if self._auto_fill:
            self.fill(order_id)
        return CommandResponse.ok(dict(self._orders[order_id]))

    async def place_bracket_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        failure = await self._begin("place_bracket_order", dict(payload))
        if failure is not None:
            return failure
        bracket_id = self._generate_id()
        return CommandResponse.ok({"id": bracket_id, **dict(payload)})

    async def cancel_order(self, order_id: str) -> CommandResponse:
        failure = await self._begin("cancel_order", order_id)
        if failure is not None:
            return failure
        return self._cancel(order_id)

    async def cancel_batch_orders(self, order_ids: Sequence[str]) -> CommandResponse:
        failure = await self._begin("cancel_batch_orders", list(order_ids))
        if failure is not None:
            return failure
        results = []
        for order_id in order_ids:
            response = self._cancel(order_id)
            results.append({"id": order_id, "success": response.success, "error": response.error})
        return CommandResponse.ok(results)

    async def cancel_all_orders(self, filters: Mapping[str, Any] | None = None) -> CommandResponse:
        failure = await self._begin("cancel_all_orders", dict(filters or {}))
        if failure is not None:
            return failure
        criteria = dict(filters or {})
        cancelled = []
        for order_id, order in list(self._orders.items()):
            if order["state"] not in {"open", "pending"}:
                continue
            if any(order.get(key) != value for key, value in criteria.items()):
                continue
            self._cancel(order_id)
            cancelled.append(order_id)
        return CommandResponse.ok({"cancelled": cancelled})

    async def edit_order(self, order_id: str, updates: Mapping[str, Any]) -> CommandResponse:
        failure = await self._begin("edit_order", (order_id, dict(updates)))
        if failure is not None:
            return failure
        order = self._orders.get(order_id)
        if order is None:
            return CommandResponse.failed(f"order {order_id} not found", status_code=404)
        if order["state"] not in {"open", "pending"}:
            return CommandResponse.failed(f"order {order_id} is {order['state']}", status_code=400)
        if "limit_price" in updates:
            order["limit_price"] = updates["limit_price"]
        if "size" in updates:
            new_size = float(updates["size"])
            filled = order["size"] - order["unfilled_size"]
            order["size"] = new_size
            order["unfilled_size"] = max(new_size - filled, 0.0)
        self._publish_order(order)
        return CommandResponse.ok(dict(order))

    # ------------------------------------------------------------------
    # Simulation controls
    def fill(self, order_id: str, *, size: float | None = None, price: float | None = None) -> bool:
        """Fill ``size`` (default: all remaining) of an open order and publish the events."""

        order = self._orders.get(order_id)
        if order is None or order["state"] not in {"open", "pending"}:
            return False
        remaining = float(order["unfilled_size"])
        fill_size = remaining if size is None else min(float(size), remaining)
        if fill_size <= 0:
            return False
        fill_price = float(price if price is not None else order.get("limit_price") or 0.0)
        order["unfilled_size"] = remaining - fill_size
        if order["unfilled_size"] <= 1e-12:
            order["unfilled_size"] = 0.0
            order["state"] = "closed"
        order["average_fill_price"] = fill_price or None
        if fill_price > 0:
            self._publish(
                {
                    "type": "v2/user_trades",
                    "fill_id": f"fill-{self._next_fill_id}",
                    "order_id": order_id,
                    "client_order_id": order.get("client_order_id"),
                    "symbol": order.get("product_symbol"),
                    "product_id": order.get("product_id"),
                    "side": order.get("side"),
                    "size": fill_size,
                    "price": fill_price,
                    "timestamp": _now_us(),
                }
            )
            self._next_fill_id += 1
        self._publish_order(order)
        return True

    async def _begin(self, command: str, argument: Any) -> CommandResponse | None:
        self.calls.append((command, argument))
        if self._latency:
            await asyncio.sleep(self._latency)
        if not self._failures:
            return None
        outcome = self._failures.popleft()
        if isinstance(outcome, Exception):
            raise outcome
        if outcome not in _FAILURE_TOKENS:
            raise ValueError(f"Unknown failure token: {outcome}")
        message, status_code = _FAILURE_TOKENS[outcome]
        return CommandResponse.failed(message, status_code=status_code)

    def _cancel(self, order_id: str) -> CommandResponse:
        order = self._orders.get(order_id)
        if order is None:
            return CommandResponse.failed(f"order {order_id} not found", status_code=404)
        if order["state"] not in {"open", "pending"}:
            return CommandResponse.failed(f"order {order_id} is {order['state']}", status_code=400)
        order["state"] = "cancelled"
        self._publish_order(order)
        return CommandResponse.ok(dict(order))

    def _generate_id(self) -> str:
        order_id = str(self._next_id)
        self._next_id += 1
        return order_id

    def _publish_order(self, order: Mapping[str, Any]) -> None:
        self._publish({"type": "orders", **order, "updated_at": _now_us()})

    def _publish(self, payload: Mapping[str, Any]) -> None:
        if self._event_sink is not None:
            self._event_sink(payload)


__all__ = ["EventSink", "SimulatedCommandClient"]
