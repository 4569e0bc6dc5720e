# SPDX-License-Identifier: MIT
"""Structured JSON logging for the trading desk.

Every component logs through :func:`get_logger`, passing contextual fields as
keyword arguments. Records are rendered as single-line JSON documents carrying
the active correlation identifier so that all lines produced by one agent cycle
or one order round-trip can be stitched together.
"""
from __future__ import annotations

import json
import logging
import sys
import time
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, Mapping, Optional
from uuid import uuid4


_CORRELATION_ID_VAR: ContextVar[Optional[str]] = ContextVar(
    "deltadesk_correlation_id", default=None
)


def generate_correlation_id() -> str:
    """Generate a new correlation identifier."""

    return uuid4().hex


def get_correlation_id() -> Optional[str]:
    """Return the currently bound correlation identifier, if any."""

    return _CORRELATION_ID_VAR.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    """Bind ``correlation_id`` (or a fresh one) for the duration of the block."""

    resolved = correlation_id or generate_correlation_id()
    token = _CORRELATION_ID_VAR.set(resolved)
    try:
        yield resolved
    finally:
        _CORRELATION_ID_VAR.reset(token)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class JSONFormatter(logging.Formatter):
    """Render log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            payload["correlation_id"] = correlation_id
        fields = getattr(record, "extra_fields", None)
        if fields:
            payload.update(fields)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


class StructuredLogger:
    """Thin wrapper over :mod:`logging` accepting structured keyword fields."""

    def __init__(
        self,
        name: str,
        correlation_id: Optional[str] = None,
        *,
        static_fields: Mapping[str, Any] | None = None,
    ) -> None:
        self.logger = logging.getLogger(name)
        self._correlation_id = correlation_id
        self._static_fields: Dict[str, Any] = dict(static_fields or {})

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a child logger that attaches ``fields`` to every record."""

        merged = {**self._static_fields, **fields}
        return StructuredLogger(
            self.logger.name, self._correlation_id, static_fields=merged
        )

    def _resolve_correlation_id(self, explicit: Optional[str] = None) -> Optional[str]:
        if explicit:
            return explicit
        return get_correlation_id() or self._correlation_id

    def _log(self, level: int, msg: str, exc_info: Any = None, **kwargs: Any) -> None:
        if not self.logger.isEnabledFor(level):
            return
        correlation_id = self._resolve_correlation_id(kwargs.pop("correlation_id", None))
        fields = {**self._static_fields, **kwargs}
        extra: Dict[str, Any] = {"correlation_id": correlation_id}
        if fields:
            extra["extra_fields"] = fields
        self.logger.log(level, msg, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, **kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, **kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, **kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, **kwargs)

    def exception(self, msg: str, **kwargs: Any) -> None:
        """Log at error level including the active exception traceback."""

        self._log(logging.ERROR, msg, exc_info=True, **kwargs)

    def critical(self, msg: str, **kwargs: Any) -> None:
        self._log(logging.CRITICAL, msg, **kwargs)

    @contextmanager
    def operation(
        self, operation_name: str, *, correlation_id: Optional[str] = None, **context: Any
    ) -> Iterator[Dict[str, Any]]:
        """Time a block of work and log its start, completion or failure.

        The yielded dictionary may be populated by the caller; its contents are
        included in the completion record. Setting ``status`` overrides the
        default ``success``/``failure`` outcome.

        Example:
            >>> logger = get_logger("deltadesk.agent")
            >>> with logger.operation("agent_cycle", symbol="BTCUSD") as op:
            ...     op["decision"] = "HOLD"
        """

        started = time.perf_counter()
        op_context: Dict[str, Any] = {"operation": operation_name, **context}
        with correlation_context(correlation_id or get_correlation_id()):
            self.debug(f"Starting operation: {operation_name}", **op_context)
            try:
                yield op_context
            except Exception as exc:
                op_context.setdefault("status", "failure")
                self.error(
                    f"Failed operation: {operation_name}",
                    **op_context,
                    duration_seconds=time.perf_counter() - started,
                    error_type=type(exc).__name__,
                    error_message=str(exc),
                )
                raise
            op_context.setdefault("status", "success")
            self.info(
                f"Completed operation: {operation_name}",
                **op_context,
                duration_seconds=time.perf_counter() - started,
            )


def configure_logging(level: str = "INFO", use_json: bool = True, stream: Any = None) -> None:
    """Configure the root logger.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        use_json: Emit JSON documents instead of the plain text format.
        stream: Output stream, defaults to ``sys.stdout``.
    """

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    if use_json:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    root_logger.addHandler(handler)


def get_logger(name: str, correlation_id: Optional[str] = None) -> StructuredLogger:
    """Return a :class:`StructuredLogger` for ``name`` (typically ``__name__``)."""

    return StructuredLogger(name, correlation_id)


__all__ = [
    "JSONFormatter",
    "StructuredLogger",
    "configure_logging",
    "correlation_context",
    "generate_correlation_id",
    "get_correlation_id",
    "get_logger",
]
