"""
Module: agreement_kernel.logging_config
Responsibility: One JSON object per log line for every kernel logger, with
    the acting user and the agreement/entity being changed attached from
    context rather than passed to every call.
Architecture position: Kernel > infrastructure.  Imported by db/, services/
    and selectors/; imports nothing from the kernel.

Invariants enforced:
    - Every kernel logger lives under the ``agreement_kernel`` namespace
      (``get_logger``) and is formatted by StructuredFormatter once
      ``configure_logging`` has run.
    - Context fields bound with ``LogContext.bind`` are restored on exit,
      so a nested bind (a batch response applying single responses) never
      leaks into the caller's log lines.

Audit relevance:
    Exceptions logged with ``exc_info`` carry the kernel error ``code`` and
    its structured attributes (``exc_entity_id``, ``exc_operation``, ...),
    so a log search can follow a rejected transition without a traceback.
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
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "agreement_kernel"


class LogContext:
    """Request-scoped log fields held in context variables."""

    _actor_id: ContextVar[str | None] = ContextVar("log_actor_id", default=None)
    _agreement_id: ContextVar[str | None] = ContextVar("log_agreement_id", default=None)
    _entity_id: ContextVar[str | None] = ContextVar("log_entity_id", default=None)

    FIELDS = ("actor_id", "agreement_id", "entity_id")

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Bound fields only; unset fields are omitted."""
        values = {name: getattr(cls, f"_{name}").get() for name in cls.FIELDS}
        return {name: value for name, value in values.items() if value is not None}

    @classmethod
    def clear(cls) -> None:
        for name in cls.FIELDS:
            getattr(cls, f"_{name}").set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """
        Bind fields for the duration of a ``with`` block.

        Unknown names and None values are ignored.
        """
        return _BoundContext(
            {name: str(value) for name, value in fields.items()
             if name in cls.FIELDS and value is not None}
        )


class _BoundContext:
    def __init__(self, fields: dict[str, str]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = getattr(LogContext, f"_{name}")
            self._tokens.append((var, var.set(value)))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return str(obj)


class StructuredFormatter(logging.Formatter):
    """
    Formats each record as a single JSON line.

    Keys: ``ts``, ``level``, ``logger``, ``message``, the bound LogContext
    fields, every ``extra`` field, and for exceptions ``exc_type``,
    ``exc_message``, ``exc_code`` plus ``exc_<attr>`` for each public
    attribute of the exception.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            for k, v in vars(exc).items():
                if not k.startswith("_") and k not in ("args", "code"):
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the agreement_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the agreement_kernel logger (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Undo configure_logging. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
    logger.propagate = True
