"""Logging helpers for playback code.

Schedulers and units log through a :class:`PlaybackContextAdapter` so every record
carries where it came from (scheduler description, unit id, ...). Both formatters
render that context: :class:`PlaybackTextFormatter` as a trailing ``[key=value]``
block, :class:`StructuredJSONFormatter` as a ``context`` object.
"""

from __future__ import annotations

import functools
import inspect
import json
import logging
import sys
import time
from collections.abc import Callable, Iterator, MutableMapping
from datetime import UTC, datetime
from typing import Any, TypeVar

F = TypeVar("F", bound=Callable[..., Any])

DEFAULT_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Loggers that are too chatty at DEBUG while a clock is ticking.
_NOISY_LOGGERS = ("asyncio",)

_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extra_fields(record: logging.LogRecord) -> Iterator[tuple[str, Any]]:
    for key, value in vars(record).items():
        if key not in _RECORD_ATTRS and not key.startswith("_"):
            yield key, value


def _error_fields(record: logging.LogRecord, formatter: logging.Formatter) -> dict[str, Any]:
    exc_type, exc, _ = record.exc_info or (None, None, None)
    if exc_type is None:
        return {}
    fields: dict[str, Any] = {
        "error_type": exc_type.__name__,
        "error_message": str(exc) if exc is not None else None,
        "stack_trace": record.exc_text or formatter.formatException(record.exc_info),
    }
    # Playback errors carry a pydantic ErrorContext describing the failing unit.
    error_context = getattr(exc, "context", None)
    if hasattr(error_context, "model_dump"):
        fields["error_context"] = error_context.model_dump(exclude_none=True)
    return fields


class StructuredJSONFormatter(logging.Formatter):
    """One JSON object per record.

    ``{"level", "message", "timestamp", "context": {logger_name, module, function,
    line, task?, error_*?, ...extra}}``
    """

    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, Any] = {
            "logger_name": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        task_name = getattr(record, "taskName", None)
        if task_name:
            context["task"] = task_name
        context.update(_error_fields(record, self))
        context.update(_extra_fields(record))

        return json.dumps(
            {
                "level": record.levelname,
                "message": record.getMessage(),
                "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "context": context,
            },
            default=str,
        )


class PlaybackTextFormatter(logging.Formatter):
    """Plain-text formatter that appends adapter context as ``[key=value ...]``."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        extras = " ".join(f"{key}={value}" for key, value in _extra_fields(record))
        if not extras:
            return text
        head, sep, tail = text.partition("\n")
        return f"{head} [{extras}]{sep}{tail}"


class PlaybackContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter whose context is merged with (not replaced by) per-call ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
    filename: str | None = None,
    structured: bool = False,
) -> None:
    """Install a single root handler for playback logging.

    Safe to call repeatedly; the previous root handlers are replaced.

    Args:
        level: Level name, case-insensitive.
        format_string: Text format; ignored when ``structured`` is set.
        filename: Log file path. Logs go to stdout when omitted.
        structured: Emit JSON lines instead of text.
    """
    handler: logging.Handler = (
        logging.FileHandler(filename) if filename else logging.StreamHandler(sys.stdout)
    )
    if structured:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(PlaybackTextFormatter(format_string or DEFAULT_TEXT_FORMAT))

    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def get_logger(name: str, **context: Any) -> logging.Logger | logging.LoggerAdapter:
    """Return ``logging.getLogger(name)``, wrapped in a context adapter if context is given.

    Example:
        >>> log = get_logger(__name__, scheduler="intro", scheduler_id=3)
        >>> log.debug("Committed")  # record carries scheduler and scheduler_id
    """
    named_logger = logging.getLogger(name)
    if context:
        return PlaybackContextAdapter(named_logger, context)
    return named_logger


def _log_elapsed(func: Callable[..., Any], started: float) -> None:
    elapsed_ms = (time.perf_counter() - started) * 1000
    logging.getLogger(func.__module__).debug("%s took %.3f ms", func.__qualname__, elapsed_ms)


def log_performance(func: F) -> F:
    """Log the wall-clock duration of ``func`` at DEBUG. Coroutine functions are awaited."""
    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                _log_elapsed(func, started)

        return async_wrapper  # type: ignore[return-value]

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        started = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            _log_elapsed(func, started)

    return wrapper  # type: ignore[return-value]
