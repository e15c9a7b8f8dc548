"""JSON logging on top of loguru with per-cycle context propagation.

Every record becomes one JSON object carrying ``timestamp``, ``level``,
``message``, ``trace_id``, ``instrument`` and ``error_code``; any other bound
or keyword data is nested under ``context``. A trace id is attached to every
record: the one opened by :func:`log_context`, or a lazily created one.
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Iterator
from uuid import uuid4

from loguru import logger

from metalpulse.core.logging.config import LogConfig

if TYPE_CHECKING:
    from metalpulse.core.config.settings import LoggingSettings

_trace_id: ContextVar[str | None] = ContextVar("metalpulse_trace_id", default=None)
_scope: ContextVar[dict[str, Any]] = ContextVar("metalpulse_log_scope", default={})

PROMOTED_FIELDS = ("instrument", "error_code")


def current_trace_id() -> str:
    """The active trace id, creating one for this context if none is set."""

    trace_id = _trace_id.get()
    if trace_id is None:
        trace_id = uuid4().hex
        _trace_id.set(trace_id)
    return trace_id


def _inject_scope(record: dict[str, Any]) -> None:
    extra = record["extra"]
    extra["trace_id"] = extra.get("trace_id") or current_trace_id()
    for key, value in _scope.get().items():
        if extra.get(key) is None:
            extra[key] = value
    for key in PROMOTED_FIELDS:
        extra.setdefault(key, None)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return format(value, "f")
    return str(value)


def record_to_json(record: dict[str, Any]) -> str:
    """Serialize a loguru record into a single JSON line (without newline)."""

    extra = record["extra"]
    payload: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "trace_id": extra.get("trace_id"),
    }
    for key in PROMOTED_FIELDS:
        payload[key] = extra.get(key)
    context = {key: value for key, value in extra.items() if key != "trace_id" and key not in PROMOTED_FIELDS}
    if context:
        payload["context"] = context
    exception = record["exception"]
    if exception is not None and exception.type is not None:
        payload["exception"] = f"{exception.type.__name__}: {exception.value}"
    return json.dumps(payload, default=_encode, ensure_ascii=False)


class JsonLineSink:
    """Loguru sink writing JSON lines to an open stream or appending to a file."""

    def __init__(self, target: IO[str] | str | Path) -> None:
        if isinstance(target, (str, Path)):
            self.path: Path | None = Path(target).expanduser()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.stream: IO[str] | None = None
        else:
            self.path = None
            self.stream = target

    def __call__(self, message: Any) -> None:
        line = record_to_json(message.record) + "\n"
        if self.stream is not None:
            self.stream.write(line)
            self.stream.flush()
            return
        with self.path.open("a", encoding="utf-8") as handle:  # type: ignore[union-attr]
            handle.write(line)


def _apply(config: LogConfig) -> None:
    level = config.level.upper()
    handlers: list[dict[str, Any]] = []
    if config.console_output:
        handlers.append({"sink": JsonLineSink(config.console_stream or sys.stderr), "level": level})
    if config.file_output and config.file_path:
        handlers.append({"sink": JsonLineSink(config.file_path), "level": level})
    logger.configure(handlers=handlers, patcher=_inject_scope, extra=dict(config.extra))


def configure_logging(level: str = "INFO", **options: Any) -> LogConfig:
    """Install the JSON sinks for ``level``; ``options`` are :class:`LogConfig` fields."""

    config = LogConfig(level=level, **options)
    _apply(config)
    return config


def configure_from_settings(settings: LoggingSettings, *, level: str | None = None) -> LogConfig:
    """Install sinks from the ``[logging]`` section, with an optional level override."""

    return configure_logging(
        level or settings.level,
        file_output=settings.file is not None,
        file_path=settings.file,
    )


class StructuredLogger:
    """Holds a :class:`LogConfig` and keeps the global loguru logger in sync with it."""

    def __init__(self, config: LogConfig | None = None) -> None:
        self.config = config or LogConfig()
        self.logger = logger
        _apply(self.config)

    def configure(self, **changes: Any) -> None:
        self.config = self.config.model_copy(update=changes)
        _apply(self.config)

    def context(self, *, trace_id: str | None = None, **fields: Any):
        return log_context(trace_id=trace_id, **fields)


def get_logger(name: str | None = None):
    """The shared logger, tagged with ``logger_name`` when a name is given."""

    return logger.bind(logger_name=name) if name else logger


@contextmanager
def log_context(*, trace_id: str | None = None, **fields: Any) -> Iterator[str]:
    """Attach a trace id and ``fields`` to every record emitted inside the block."""

    scope_token = _scope.set({**_scope.get(), **fields})
    active = trace_id or uuid4().hex
    trace_token = _trace_id.set(active)
    try:
        yield active
    finally:
        _trace_id.reset(trace_token)
        _scope.reset(scope_token)


__all__ = [
    "JsonLineSink",
    "StructuredLogger",
    "configure_from_settings",
    "configure_logging",
    "current_trace_id",
    "get_logger",
    "log_context",
    "logger",
    "record_to_json",
]
