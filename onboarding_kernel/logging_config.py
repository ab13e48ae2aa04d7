"""
Structured JSON logging for the onboarding pipeline.

Every record under the ``onboarding`` logger is written as one JSON line
carrying the request context bound through ``LogContext`` (correlation
id, operation, client and actor) plus whatever the call site passed in
``extra``. Keys that could carry a confirmation secret are masked by the
formatter, whatever the call site sends.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "REDACTED_KEYS",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TextIO
from uuid import UUID

LOGGER_ROOT = "onboarding"

REDACTED_KEYS: frozenset[str] = frozenset({"token", "raw_token", "secret", "api_key"})
_MASK = "***"


# ---------------------------------------------------------------------------
# Request context
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    field: ContextVar(f"onboarding_log_{field}", default=None)
    for field in ("correlation_id", "operation", "client_id", "actor_id")
}


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Set known fields; None values and unknown names are ignored."""
        for name, value in fields.items():
            var = _CONTEXT_FIELDS.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _CONTEXT_FIELDS.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @staticmethod
    def bind(**fields: Any) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block."""
        return _BoundContext(fields)


class _BoundContext:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _CONTEXT_FIELDS.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _to_json(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _mask(key: str, value: Any) -> Any:
    return _MASK if key in REDACTED_KEYS and value is not None else value


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        out: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key not in _RESERVED and key not in out:
                out[key] = _mask(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            error = record.exc_info[1]
            out["exc_type"] = type(error).__name__
            out["exc_message"] = str(error)
            code = getattr(error, "code", None)
            if code is not None:
                out["exc_code"] = code
            # OnboardingError subclasses keep their context as attributes
            for key, value in vars(error).items():
                if not key.startswith("_") and key not in ("args", "code", "message"):
                    out[f"exc_{key}"] = _mask(key, value)
            out["traceback"] = self.formatException(record.exc_info)

        return json.dumps(out, default=_to_json)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_setup_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach the JSON handler to the ``onboarding`` logger.

    Only the first call installs a handler; later calls are no-ops until
    ``reset_logging()``. ``level`` accepts a number or a level name.
    """
    global _installed
    with _setup_lock:
        if _installed is not None:
            return
        _installed = handler or logging.StreamHandler(stream or sys.stderr)

    _installed.setFormatter(StructuredFormatter())
    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    root.addHandler(_installed)


def reset_logging() -> None:
    """Remove the installed handler. Test use only."""
    global _installed
    with _setup_lock:
        _installed = None
    root = logging.getLogger(LOGGER_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    root.propagate = True
