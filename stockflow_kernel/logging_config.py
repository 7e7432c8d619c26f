"""
Structured JSON logging for stockflow.

Every record under the ``stockflow`` logger is rendered as one JSON object
per line.  Three sources feed a record:

    envelope    ts, level, logger, message
    context     order / actor / courier fields bound by the running operation
    extras      the ``extra={...}`` mapping passed at the call site

Services log snake_case event names (``batch_created``,
``customer_order_prepared``) and put every detail in ``extra``.  Operations
that touch one order bind it once::

    with LogContext.bind(order_type="customer", order_id=order.id, actor_id=worker_id):
        ...  # every record logged in here carries the three fields
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import dataclasses
import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "order_type",
    "order_id",
    "actor_id",
    "courier_id",
    "trace_id",
)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"stockflow_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Per-thread, per-task fields merged into every stockflow log record.

    Values are stored as strings so order ids, UUIDs and enum members all
    render the same way.  Worker threads start with an empty context.
    """

    FIELDS = _CONTEXT_FIELDS

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields.  ``None`` values are ignored."""
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        for name, value in fields.items():
            if value is not None:
                _CONTEXT_VARS[name].set(_context_str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Non-empty fields, in declaration order."""
        return {
            name: value
            for name, var in _CONTEXT_VARS.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """
        Scope fields to a ``with`` block, restoring the previous values on exit.

        Names outside ``FIELDS`` and ``None`` values are skipped, so callers
        can pass optional identifiers straight through.
        """
        return _BoundContext(fields)


def _context_str(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class _BoundContext:

    def __init__(self, fields: dict[str, Any]):
        self._fields = {
            name: value
            for name, value in fields.items()
            if name in _CONTEXT_VARS and value is not None
        }
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _CONTEXT_VARS[name]
            self._tokens.append((var, var.set(_context_str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON rendering
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def to_log_value(value: Any) -> Any:
    """
    Convert a value from ``extra`` into something ``json.dumps`` accepts.

    Money stays exact (Decimal -> str).  Frozen value objects such as
    allocation lines become dicts, role sets become sorted lists.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_log_value(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {str(k): to_log_value(v) for k, v in value.items()}
    if isinstance(value, (set, frozenset)):
        return sorted(to_log_value(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [to_log_value(v) for v in value]
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, then context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _RESERVED_ATTRS or key in payload:
                continue
            payload[key] = to_log_value(value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record))

        return json.dumps(payload)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, Any]:
        exc = record.exc_info[1]
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # StockflowError subclasses keep their details as instance attributes
        for name, value in vars(exc).items():
            if not name.startswith("_") and name != "code":
                fields[f"exc_{name}"] = to_log_value(value)
        fields["traceback"] = self.formatException(record.exc_info)
        return fields


# ---------------------------------------------------------------------------
# Logger factory and setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "stockflow"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger for a stockflow component, e.g. ``get_logger("services.batch_ledger")``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``stockflow`` logger.  Only the first call
    has any effect until ``reset_logging()``.

    ``level`` accepts a level number or name (``"DEBUG"``).  Records do not
    propagate to the root logger.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root_logger.addHandler(target)


def reset_logging() -> None:
    """Detach handlers and allow ``configure_logging`` to run again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)
