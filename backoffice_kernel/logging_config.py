"""
Structured logging for back-office runs.

Every record leaves the ``backoffice`` logger tree as one JSON object per
line.  Run-scoped fields (run id, run type, company, actor, correlation id)
are bound once through ``LogContext`` and stamped on every record emitted
while the binding is active, so executor, task and service logs of a single
run can be joined without threading ids through every call.

    configure_logging()                        # once, at process start
    logger = get_logger("modules.alloc")       # -> "backoffice.modules.alloc"
    with LogContext.bind(run_id=str(run_id)):
        logger.info("alloc_rule_allocated", extra={"rule_code": "R1"})
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

ROOT_LOGGER_NAME = "backoffice"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "run_id",
    "run_type",
    "company",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("backoffice_log_context", default=_EMPTY)


def _merged(current: Mapping[str, str], fields: Mapping[str, Any]) -> Mapping[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise KeyError(f"Unknown log context field: {sorted(unknown)[0]}")
    merged = dict(current)
    merged.update({k: str(v) for k, v in fields.items() if v is not None})
    return MappingProxyType(merged)


class LogContext:
    """Run-scoped fields attached to every record (contextvar backed)."""

    @staticmethod
    def set(**fields: Any) -> None:
        """Bind fields until cleared.  None values leave the field untouched."""
        _context.set(_merged(_context.get(), fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Bind fields for a ``with`` block; the previous binding is restored on exit."""
        token = _context.set(_merged(_context.get(), fields))
        try:
            yield
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # BackofficeError subclasses keep their context as public attributes.
    fields.update(
        (f"exc_{name}", value)
        for name, value in vars(exc).items()
        if not name.startswith("_") and name != "code"
    )
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                entry.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger ``backoffice.<name>``; inherits the handler installed by configure_logging."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ``backoffice`` logger.

    Only the first call has an effect; later calls (from engine init, test
    fixtures, CLI entry points) are no-ops until ``reset_logging()``.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(target)
        _installed_handler = target


def reset_logging() -> None:
    """Remove all handlers from the ``backoffice`` tree.  Used by tests."""
    global _installed_handler
    with _setup_lock:
        _installed_handler = None
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
