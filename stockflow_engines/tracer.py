"""
stockflow_engines.tracer -- one structured log record per engine call.

``@traced_engine`` wraps a pure engine and, after it returns, logs
``STOCKFLOW_ENGINE_TRACE`` with:

    engine_name / engine_version   what ran
    input_fingerprint              16 hex chars of SHA-256 over chosen kwargs
    duration_ms                    wall time of the call
    outcome fields                 whatever ``summarize(result)`` returns

Two allocations with the same fingerprint saw the same product, demand,
date and lot snapshots, so a surprising pick can be replayed from the log.
A call that raises logs nothing; the exception propagates unchanged.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from stockflow_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_MESSAGE = "STOCKFLOW_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return _canonicalize(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int)):
        return str(value)
    if isinstance(value, Decimal):
        # 2.50 and 2.5 are the same price
        return format(value.normalize(), "f")
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize({f.name: getattr(value, f.name) for f in dataclasses.fields(value)})
    if isinstance(value, Mapping):
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in sorted(value.items())) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return repr(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix of the named kwargs; missing ones count as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """
    Decorate an engine entry point.

    Args:
        engine_name: Engine identifier, e.g. ``"fifo_allocator"``.
        engine_version: Bumped when the engine's output for a given input changes.
        fingerprint_fields: Keyword arguments hashed into ``input_fingerprint``.
            Engines are called with keywords, so positional arguments are
            never fingerprinted.
        summarize: Maps the result to extra log fields.  Must not raise.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            )

            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 2)

            fields: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "duration_ms": elapsed_ms,
                "function": func.__qualname__,
            }
            if summarize is not None:
                fields.update(summarize(result))
            _logger.info(TRACE_MESSAGE, extra=fields)
            return result

        return wrapper

    return decorator
