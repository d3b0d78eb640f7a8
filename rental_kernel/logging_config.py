"""
Structured JSON logging for the rental kernel.

Every record is one JSON object.  Request-scoped fields (the correlation id
of a RentalEngine call, the acting user, the order or invoice being worked
on, the scan job) are bound with ``LogContext.bind`` and appear at the top
level of each record emitted inside the block.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, datetime
from enum import Enum
from typing import Any

_LOGGER_PREFIX = "rental_kernel"

CONTEXT_FIELDS: frozenset[str] = frozenset({
    "correlation_id",
    "actor_id",
    "order_id",
    "invoice_id",
    "product_id",
    "job_name",
})

_context: ContextVar[dict[str, str]] = ContextVar("rental_log_context", default={})


# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """Context-local log fields, safe across threads and tasks."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set({})

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """
        Add fields for the duration of a ``with`` block.

        None values are skipped; other values are stored as strings.

        Raises:
            ValueError: a field name outside CONTEXT_FIELDS.
        """
        unknown = set(fields) - CONTEXT_FIELDS
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        return _Binding({k: str(v) for k, v in fields.items() if v is not None})


class _Binding:
    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        self._token = _context.set({**_context.get(), **self._fields})
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    # Money, UUID and Decimal all log as their str()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # RentalEngineError subclasses carry their details as attributes
    for key, value in vars(exc).items():
        if not key.startswith("_") and key not in ("args", "code"):
            fields[f"exc_{key}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the rental_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(str(level).strip().upper())
    if resolved is None:
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Configure the rental_kernel logger hierarchy.

    Only the first call has an effect until ``reset_logging``.  ``level``
    accepts a number or a level name such as ``"DEBUG"``.
    """
    global _configured
    resolved = _resolve_level(level)
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(resolved)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
