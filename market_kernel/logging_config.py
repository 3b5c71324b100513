"""
market_kernel.logging_config -- JSON log lines with request-scoped context.

Every logger lives under the ``market_kernel`` namespace.  A log line is
one JSON object:

    {"ts": ..., "level": "INFO", "logger": "market_kernel.services.x",
     "message": "wallet_debited", "operation": "wallet.withdraw",
     "actor_id": "...", "amount": 1000, ...}

Context fields come from ``LogContext`` (bound by the TransactionRunner
for the duration of a unit of work); everything passed via ``extra``
is merged in after them.  A logged MarketKernelError contributes its
``code`` and public attributes as ``exc_*`` keys.
"""

__all__ = [
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
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

LOGGER_NAMESPACE = "market_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "actor_role",
    "operation",
    "order_id",
    "transaction_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"market_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields, one ContextVar per field.

    ``set`` is strict and rejects unknown names.  ``bind`` is lenient so
    callers can pass a caller's ``log_fields()`` plus ad-hoc ids without
    filtering them first.
    """

    @classmethod
    def set(cls, **fields: Any) -> None:
        for name, value in fields.items():
            if name not in _context_vars:
                raise KeyError(f"Unknown log context field: {name}")
            if value is not None:
                _context_vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        values = {name: var.get() for name, var in _context_vars.items()}
        return {name: value for name, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """``with LogContext.bind(operation="order.place", order_id=oid): ...``"""
        return _Binding(fields)


class _Binding:

    def __init__(self, fields: dict[str, Any]):
        self._fields = {
            name: str(value)
            for name, value in fields.items()
            if name in _context_vars and value is not None
        }
        self._tokens: list[tuple[str, Token]] = []

    def __enter__(self) -> type[LogContext]:
        self._tokens = [
            (name, _context_vars[name].set(value)) for name, value in self._fields.items()
        ]
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for name, token in reversed(self._tokens):
            _context_vars[name].reset(token)
        self._tokens = []


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.ledger_store")`` -> ``market_kernel.services.ledger_store``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``market_kernel`` logger.

    Only the first call has an effect; later calls (for instance from
    ``init_engine_from_url``) leave an existing configuration alone.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

        root = logging.getLogger(LOGGER_NAMESPACE)
        root.setLevel(level)
        root.propagate = False
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` to run again (tests)."""
    global _configured
    with _lock:
        _configured = False
        root = logging.getLogger(LOGGER_NAMESPACE)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
