# SPDX-License-Identifier: MIT
"""Delta Exchange REST command client."""

from __future__ import annotations

import hashlib
import hmac
import json
import os
import time
from typing import Any, Callable, Dict, Mapping, Sequence
from urllib.parse import urlencode

import httpx

from core.utils.logging import get_logger
from core.utils.metrics import MetricsCollector, get_metrics_collector
from interfaces.execution import CommandResponse, OrderCommandClient

DELTA_BASE_URL = "https://api.delta.exchange"
DELTA_TESTNET_URL = "https://cdn-ind.testnet.deltaex.org"


def sign_request(
    secret: str, method: str, timestamp: str, path: str, query: str = "", body: str = ""
) -> str:
    """HMAC-SHA256 over ``method + timestamp + path + query + body``.

    ``query`` is the encoded query string without its leading ``?``.
    """

    message = f"{method.upper()}{timestamp}{path}{query}{body}"
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


class DeltaRESTCommandClient(OrderCommandClient):
    """Signed order commands against the Delta Exchange v2 REST API.

    Transport and HTTP failures are returned as failed
    :class:`CommandResponse` objects; nothing is raised past the public
    methods.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_secret: str | None = None,
        *,
        base_url: str = DELTA_BASE_URL,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        user_agent: str = "deltadesk/0.1",
        time_source: Callable[[], float] | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        api_key = api_key or os.getenv("DELTA_API_KEY")
        api_secret = api_secret or os.getenv("DELTA_API_SECRET")
        if not api_key or not api_secret:
            raise ValueError("Delta credentials must provide api_key and api_secret")
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = http_client is None
        self._timeout = timeout
        self._user_agent = user_agent
        self._time = time_source or time.time
        self._logger = get_logger(__name__)
        self._metrics = metrics or get_metrics_collector()

    async def __aenter__(self) -> "DeltaRESTCommandClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url, timeout=httpx.Timeout(self._timeout)
            )
        return self._http_client

    def _signed_headers(self, method: str, path: str, query: str, body: str) -> Dict[str, str]:
        timestamp = str(int(self._time()))
        return {
            "api-key": self._api_key,
            "timestamp": timestamp,
            "signature": sign_request(self._api_secret, method, timestamp, path, query, body),
            "User-Agent": self._user_agent,
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json_payload: Any = None,
    ) -> CommandResponse:
        query = urlencode(sorted((params or {}).items()))
        body = json.dumps(json_payload, separators=(",", ":")) if json_payload is not None else ""
        headers = self._signed_headers(method, path, query, body)
        url = f"{path}?{query}" if query else path
        try:
            response = await self._client().request(
                method, url, content=body.encode("utf-8") if body else None, headers=headers
            )
        except httpx.HTTPError as exc:
            self._logger.warning("Delta request failed", method=method, path=path, error=str(exc))
            return CommandResponse.failed(f"transport error: {exc}")

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.is_error or not isinstance(payload, Mapping) or payload.get("success") is False:
            error = self._describe_error(response.status_code, payload, response.text)
            self._logger.warning(
                "Delta command rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                error=error,
            )
            return CommandResponse.failed(error, status_code=response.status_code)
        return CommandResponse.ok(payload.get("result"), status_code=response.status_code)

    @staticmethod
    def _describe_error(status_code: int, payload: Any, text: str) -> str:
        if isinstance(payload, Mapping):
            error = payload.get("error")
            if isinstance(error, Mapping):
                code = error.get("code") or "unknown_error"
                context = error.get("context")
                return f"HTTP {status_code}: {code}" + (f" ({context})" if context else "")
            if error:
                return f"HTTP {status_code}: {error}"
        return f"HTTP {status_code}: {text[:200]}"

    async def _timed(self, command: str, method: str, path: str, **kwargs: Any) -> CommandResponse:
        with self._metrics.measure_order_command(f"rest_{command}") as ctx:
            response = await self._request(method, path, **kwargs)
            ctx["status"] = "success" if response.success else "rejected"
        return response

    async def place_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        return await self._timed("place_order", "POST", "/v2/orders", json_payload=dict(payload))

    async def place_bracket_order(self, payload: Mapping[str, Any]) -> CommandResponse:
        return await self._timed(
            "place_bracket_order", "POST", "/v2/orders/bracket", json_payload=dict(payload)
        )

    async def cancel_order(self, order_id: str) -> CommandResponse:
        return await self._timed("cancel_order", "DELETE", f"/v2/orders/{order_id}")

    async def cancel_batch_orders(self, order_ids: Sequence[str]) -> CommandResponse:
        orders = [{"id": _as_id(order_id)} for order_id in order_ids]
        return await self._timed(
            "cancel_batch_orders", "DELETE", "/v2/orders/batch", json_payload={"orders": orders}
        )

    async def cancel_all_orders(self, filters: Mapping[str, Any] | None = None) -> CommandResponse:
        return await self._timed(
            "cancel_all_orders", "DELETE", "/v2/orders/all", json_payload=dict(filters or {})
        )

    async def edit_order(self, order_id: str, updates: Mapping[str, Any]) -> CommandResponse:
        return await self._timed(
            "edit_order", "PUT", f"/v2/orders/{order_id}", json_payload=dict(updates)
        )


def _as_id(order_id: str) -> int | str:
    return int(order_id) if str(order_id).isdigit() else order_id


__all__ = ["DELTA_BASE_URL", "DELTA_TESTNET_URL", "DeltaRESTCommandClient", "sign_request"]
