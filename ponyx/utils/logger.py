"""
PONYX Logger
============

Structured logging for the compiler stages and the command line.

Every stage logs through a named child logger (``ponyx.parser``,
``ponyx.analyzer``, ...). Children share the level and handlers of the
``ponyx`` root, which ``configure_logging`` replaces.

Example:
    logger = get_logger("ponyx.parser")
    logger.debug("Parsed unit", unit="Counter.ponyx", nodes=12)
    # 2024-01-15 10:30:45 [DEBUG] parser: Parsed unit unit=Counter.ponyx nodes=12

    with get_logger("ponyx.cli").timed("Build finished", units=3):
        ...
    # 2024-01-15 10:30:46 [INFO] cli: Build finished units=3 elapsed_ms=41.7
"""

from __future__ import annotations

import json
import logging
import sys
import time
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Dict, Iterator, List, Optional, Union

ROOT_NAME = "ponyx"


class LogLevel(IntEnum):
    """Log levels, numerically equal to the stdlib ``logging`` ones."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR

    @classmethod
    def parse(cls, value: Union[str, int, "LogLevel"]) -> "LogLevel":
        """Accept ``"debug"``, ``"DEBUG"``, ``10`` or a LogLevel."""
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                raise ValueError(f"Unknown log level: {value!r}") from None
        return cls(value)


@dataclass
class LogRecord:
    """
    Structured log record.

    Attributes:
        level: Log level
        message: Fixed event text ("Parsed unit", "Build finished", ...)
        logger_name: Dotted name of the emitting logger
        context: Key-value details of the event
        exception: Exception being reported, if any
    """

    level: LogLevel
    message: str
    logger_name: str = ROOT_NAME
    context: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def stage(self) -> str:
        """Logger name relative to the root: ``parser``, ``cli.build``."""
        prefix = ROOT_NAME + "."
        return self.logger_name[len(prefix):] if self.logger_name.startswith(prefix) else self.logger_name

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.name,
            "logger": self.logger_name,
            "message": self.message,
        }
        if self.context:
            data["context"] = self.context
        if self.exception is not None:
            data["exception"] = {
                "type": type(self.exception).__name__,
                "message": str(self.exception),
            }
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class LogFormatter:
    """Base log formatter."""

    def format(self, record: LogRecord) -> str:
        raise NotImplementedError


class TextFormatter(LogFormatter):
    """
    One line per record, context as ``key=value`` pairs.

    Example output:
        2024-01-15 10:30:45 [INFO] component: Compiled unit unit=Counter.ponyx name=Counter
    """

    COLORS = {
        LogLevel.DEBUG: "\033[36m",    # Cyan
        LogLevel.INFO: "\033[32m",     # Green
        LogLevel.WARNING: "\033[33m",  # Yellow
        LogLevel.ERROR: "\033[31m",    # Red
    }
    RESET = "\033[0m"

    def __init__(self, date_format: str = "%Y-%m-%d %H:%M:%S", colors: bool = True):
        self.date_format = date_format
        self.colors = colors

    def format(self, record: LogRecord) -> str:
        level = record.level.name
        if self.colors:
            level = f"{self.COLORS[record.level]}{level}{self.RESET}"

        parts = [record.timestamp.strftime(self.date_format), f"[{level}]", f"{record.stage}:", record.message]
        parts.extend(f"{key}={value}" for key, value in record.context.items())
        output = " ".join(parts)

        if record.exception is not None:
            output += "\n" + "".join(
                traceback.format_exception(
                    type(record.exception),
                    record.exception,
                    record.exception.__traceback__,
                )
            ).rstrip("\n")
        return output


class JsonFormatter(LogFormatter):
    """
    One JSON object per line.

    Example output:
        {"timestamp": "2024-01-15T10:30:45", "level": "INFO", "logger": "ponyx.component", ...}
    """

    def format(self, record: LogRecord) -> str:
        return record.to_json()


class StreamHandler:
    """Writes formatted records at or above ``level`` to a stream."""

    def __init__(
        self,
        stream: Any = None,
        formatter: Optional[LogFormatter] = None,
        level: LogLevel = LogLevel.DEBUG,
    ):
        self._stream = stream
        self.formatter = formatter or TextFormatter(colors=False)
        self.level = level

    @property
    def stream(self) -> Any:
        # Resolved per write so a redirected stderr is honored
        return self._stream or sys.stderr

    def handle(self, record: LogRecord) -> None:
        if record.level < self.level:
            return
        stream = self.stream
        stream.write(self.formatter.format(record) + "\n")
        stream.flush()


class Logger:
    """
    Structured logger.

    A logger without its own level or handlers defers to its parent,
    so stage loggers follow whatever ``configure_logging`` set up.

    Example:
        logger = get_logger("ponyx.cli.build")
        logger.info("Building units", units=3, format="json")
        logger.error("Cannot write artifact", exception=e)

        # With context
        unit_logger = logger.with_context(unit="Counter.ponyx")
        unit_logger.debug("Wrote artifact", target="out/Counter.json")
    """

    def __init__(
        self,
        name: str = ROOT_NAME,
        level: Optional[LogLevel] = None,
        handlers: Optional[List[StreamHandler]] = None,
        parent: Optional["Logger"] = None,
    ):
        """
        Initialize logger.

        Args:
            name: Logger name
            level: Minimum log level (inherited from parent when None)
            handlers: Handlers (inherited from parent when None)
            parent: Logger to inherit level and handlers from
        """
        self.name = name
        self._level = level
        self._handlers = handlers
        self.parent = parent
        self._context: Dict[str, Any] = {}

    @property
    def level(self) -> LogLevel:
        if self._level is not None:
            return self._level
        if self.parent is not None:
            return self.parent.level
        return LogLevel.WARNING

    @level.setter
    def level(self, value: Optional[LogLevel]) -> None:
        self._level = value

    @property
    def handlers(self) -> List[StreamHandler]:
        if self._handlers is not None:
            return self._handlers
        if self.parent is not None:
            return self.parent.handlers
        return []

    def with_context(self, **context: Any) -> "Logger":
        """Return a logger that adds ``context`` to every record."""
        bound = Logger(self.name, self._level, self._handlers, self.parent)
        bound._context = {**self._context, **context}
        return bound

    def _log(
        self,
        level: LogLevel,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        if level < self.level:
            return

        record = LogRecord(
            level=level,
            message=message,
            logger_name=self.name,
            context={**self._context, **context},
            exception=exception,
        )
        for handler in self.handlers:
            try:
                handler.handle(record)
            except Exception:
                pass  # A broken stream must not fail a build

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, **context)

    def error(
        self,
        message: str,
        exception: Optional[BaseException] = None,
        **context: Any,
    ) -> None:
        self._log(LogLevel.ERROR, message, exception, **context)

    @contextmanager
    def timed(self, message: str, level: LogLevel = LogLevel.INFO, **context: Any) -> Iterator[Dict[str, Any]]:
        """
        Log ``message`` with ``elapsed_ms`` once the block finishes.

        The yielded dict is merged into the record, so the block can report
        results (``failed=2``) discovered while it ran.
        """
        extra: Dict[str, Any] = {}
        started = time.perf_counter()
        yield extra
        elapsed = round((time.perf_counter() - started) * 1000, 1)
        self._log(level, message, **context, **extra, elapsed_ms=elapsed)


_root = Logger(name=ROOT_NAME, level=LogLevel.WARNING, handlers=[StreamHandler()])

# Global logger registry
_loggers: Dict[str, Logger] = {ROOT_NAME: _root}


def get_logger(name: str = ROOT_NAME, level: Optional[LogLevel] = None) -> Logger:
    """
    Get or create a logger.

    Args:
        name: Logger name (children of ``ponyx`` inherit its setup)
        level: Log level override for this logger only
    """
    if name not in _loggers:
        _loggers[name] = Logger(name=name, level=level, parent=_root)
    elif level is not None:
        _loggers[name].level = level
    return _loggers[name]


def configure_logging(
    level: Union[LogLevel, str, int] = LogLevel.WARNING,
    format: str = "text",
    stream: Any = None,
    colors: bool = True,
) -> Logger:
    """
    Configure the root ``ponyx`` logger.

    Args:
        level: Log level
        format: Output format ("text" or "json")
        stream: Output stream (stderr when None)
        colors: Colored level names in text output

    Returns:
        Configured root logger

    Raises:
        ValueError: Unknown level or format
    """
    level = LogLevel.parse(level)

    if format == "json":
        formatter: LogFormatter = JsonFormatter()
    elif format == "text":
        formatter = TextFormatter(colors=colors)
    else:
        raise ValueError(f"Unknown log format: {format!r}")

    _root.level = level
    _root._handlers = [StreamHandler(stream=stream, formatter=formatter, level=level)]
    return _root
