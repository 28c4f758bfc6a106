"""
Module: market_kernel.logging_config
Responsibility: One-JSON-object-per-line logging for every lifecycle
    component, plus request-scoped context (which entity, which workflow,
    which actor) merged into each record.
Architecture position: Kernel.  Imported by every other layer; imports
    nothing from the project.

Record shape:
    {"ts", "level", "logger", "message"}  envelope, always present
    context fields from LogContext        correlation_id, actor_id, ...
    ``extra=`` fields of the call         skipped if they shadow the above
    exc_type / exc_message / exc_code     when logged with exc_info, plus
    exc_<attr> and traceback              the error's structured attributes

Usage:
    from market_kernel.logging_config import LogContext, get_logger

    logger = get_logger("modules.jobs.service")
    with LogContext.bind(entity_id=job.id, workflow="job"):
        logger.info("job_created", extra={"customer_id": str(customer_id)})
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
from collections.abc import Mapping
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

LOGGER_NAMESPACE = "market_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "entity_id",
    "workflow",
    "trace_id",
)

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_context: ContextVar[Mapping[str, str] | None] = ContextVar("market_log_context", default=None)


def _checked(fields: Mapping[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
    return {k: str(v) for k, v in fields.items() if v is not None}


class LogContext:
    """Request-scoped log fields, isolated per thread and per asyncio task.

    The whole context is one immutable mapping held in a ContextVar;
    ``set`` and ``bind`` replace it with an updated copy.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge non-None ``fields`` into the current context."""
        current = _context.get() or {}
        _context.set({**current, **_checked(fields)})

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get() or {})

    @staticmethod
    def clear() -> None:
        _context.set(None)

    @staticmethod
    def bind(**fields: Any) -> "_Binding":
        """Context manager: add ``fields`` on entry, restore the previous context on exit."""
        return _Binding(_checked(fields))


class _Binding:

    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._token = None

    def __enter__(self) -> type[LogContext]:
        current = _context.get() or {}
        self._token = _context.set({**current, **self._fields})
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        _context.reset(self._token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for attr, value in vars(exc).items():
        if not attr.startswith("_"):
            fields.setdefault(f"exc_{attr}", value)
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
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

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``market_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelNamesMapping().get(level.upper())
    if resolved is None:
        raise ValueError(f"Unknown log level {level!r}")
    return resolved


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one structured handler to the ``market_kernel`` logger.

    ``level`` may be a number or a name such as ``LoggingConfig.level``.
    Only the first call has an effect until ``reset_logging()``.
    """
    global _handler
    resolved = _resolve_level(level)
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())
        root = logging.getLogger(LOGGER_NAMESPACE)
        root.setLevel(resolved)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach the structured handler. FOR TESTING ONLY."""
    global _handler
    with _setup_lock:
        root = logging.getLogger(LOGGER_NAMESPACE)
        if _handler is not None:
            root.removeHandler(_handler)
            _handler = None
        root.setLevel(logging.WARNING)
