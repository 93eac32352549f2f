"""
Structured JSON logging for the POS kernel.

Every record is one JSON line.  Fields bound with ``LogContext`` (which
terminal request, which drawer, which employee, who acted) are merged into
every line logged while they are bound, so a close rejection can be traced
back to the cashier and session without parsing messages.

    logger = get_logger("cash.service")
    with LogContext.bind(session_id=session.id, actor_id=employee_id):
        logger.warning("cash_close_rejected", extra={"violations": codes})
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
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Request-scoped fields
# ---------------------------------------------------------------------------

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"pos_log_{name}", default=None)
    for name in ("correlation_id", "session_id", "employee_id", "actor_id")
}


class LogContext:
    """Context-variable holder for the fields stamped on every log line."""

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set fields; ``None`` values leave the current value alone."""
        for name, value in fields.items():
            if value is not None:
                _var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
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
    def bind(cls, **fields: Any) -> "_Binding":
        """Set fields for the duration of a ``with`` block."""
        return _Binding(fields)


def _var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_VARS[name]
    except KeyError:
        raise ValueError(f"unknown log context field {name!r}") from None


class _Binding:

    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = _var(name)
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        # Reverse order so a field bound twice unwinds correctly
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # Money keeps its exact digits: "150.00", never 150.0
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    # UUID and anything else
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: fixed keys, bound context, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # PosKernelError subclasses carry session_id, reason, report, ...
        for key, value in vars(exc).items():
            if not key.startswith("_"):
                fields[f"exc_{key}"] = value
        return fields


# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------

_ROOT_NAME = "pos_kernel"

_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``pos_kernel`` namespace, e.g. ``pos_kernel.cash.ledger``."""
    return logging.getLogger(f"{_ROOT_NAME}.{name}")


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ``pos_kernel`` root. Only the first call counts."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_ROOT_NAME)
    root.setLevel(level)
    root.propagate = False
    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_ROOT_NAME)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
