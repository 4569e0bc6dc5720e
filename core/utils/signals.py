# SPDX-License-Identifier: MIT
"""Observer primitive used to publish lifecycle events to subscribers."""
from __future__ import annotations

from typing import Any, Callable

from core.utils.logging import get_logger

Handler = Callable[..., Any]

_logger = get_logger(__name__)


class Signal:
    """Synchronous fan-out of events to registered handlers.

    A failing handler is logged and skipped; it never prevents the remaining
    handlers from running nor propagates to the emitter.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._subscribers: list[Handler] = []

    def connect(self, handler: Handler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unregisters it."""

        self._subscribers.append(handler)

        def _disconnect() -> None:
            self.disconnect(handler)

        return _disconnect

    def disconnect(self, handler: Handler) -> None:
        try:
            self._subscribers.remove(handler)
        except ValueError:
            pass

    def emit(self, *args: Any, **kwargs: Any) -> None:
        for handler in list(self._subscribers):
            try:
                handler(*args, **kwargs)
            except Exception:
                _logger.exception("Signal handler failed", signal=self.name)

    def clear(self) -> None:
        self._subscribers.clear()

    def __len__(self) -> int:
        return len(self._subscribers)


__all__ = ["Signal"]
