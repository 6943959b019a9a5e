"""
Structured JSON logging for the fee kernel.

Every line is one JSON object: timestamp, level, logger and message, then
the tenant, actor and record the current call is working on, then any
``extra`` fields. Exceptions contribute their type, message, kernel error
code and public attributes.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from typing import Any, Iterator, TextIO

LOGGER_NAMESPACE = "fee_kernel"

_CONTEXT_FIELDS = ("correlation_id", "coaching_id", "actor_id", "record_id")
_context_vars: dict[str, ContextVar[str | None]] = {
    field: ContextVar(f"fee_log_{field}", default=None) for field in _CONTEXT_FIELDS
}


class LogContext:
    """Per-call log fields, carried in context variables so threads and tasks stay apart."""

    @classmethod
    def set(
        cls,
        *,
        correlation_id: str | None = None,
        coaching_id: str | None = None,
        actor_id: str | None = None,
        record_id: str | None = None,
    ) -> None:
        """Update the given fields; ``None`` leaves a field as it is."""
        given = {
            "correlation_id": correlation_id,
            "coaching_id": coaching_id,
            "actor_id": actor_id,
            "record_id": record_id,
        }
        for field, value in given.items():
            if value is not None:
                _context_vars[field].set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            field: var.get()
            for field, var in _context_vars.items()
            if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a block, then restore the previous values.

        Names outside the known context fields are ignored.
        """
        tokens = [
            (_context_vars[name], _context_vars[name].set(str(value)))
            for name, value in fields.items()
            if value is not None and name in _context_vars
        ]
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord carries; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _encode(value: Any) -> str:
    """JSON fallback: dates as ISO 8601, UUIDs, Decimals and the rest as text."""
    if isinstance(value, (datetime, date)):
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
    for name, value in vars(exc).items():
        if name != "code" and not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                line.setdefault(name, value)

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            line.update(_exception_fields(exc))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_encode)


def get_logger(name: str) -> logging.Logger:
    """Return ``fee_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_install_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``fee_kernel`` logger.

    Only the first call installs anything; later calls keep the existing
    handler and level.
    """
    global _installed_handler
    with _install_lock:
        if _installed_handler is not None:
            return
        _installed_handler = (
            handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        )
        _installed_handler.setFormatter(StructuredFormatter())

        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        kernel_logger.setLevel(level)
        kernel_logger.propagate = False
        kernel_logger.addHandler(_installed_handler)


def reset_logging() -> None:
    """Remove every handler from the ``fee_kernel`` logger so tests can reinstall one."""
    global _installed_handler
    with _install_lock:
        _installed_handler = None
        kernel_logger = logging.getLogger(LOGGER_NAMESPACE)
        kernel_logger.handlers.clear()
        kernel_logger.setLevel(logging.WARNING)
