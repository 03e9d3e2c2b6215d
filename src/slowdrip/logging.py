"""
Structured Logging for SlowDrip

Every module logs through get_logger("slowdrip.<module>"). Records carry
keyword fields (logger.info("qos window", path=..., accepted=...)) and the
ambient LogContext of the current thread or asyncio task.

Output goes to stderr as console lines or JSON, optionally mirrored as JSON
to a file. Defaults come from SLOWDRIP_LOG_LEVEL, SLOWDRIP_LOG_FORMAT and
SLOWDRIP_LOG_FILE until configure_logging() is called.
"""

import contextvars
import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

LOGGER_NAME = "slowdrip"

LOG_LEVEL_ENV = "SLOWDRIP_LOG_LEVEL"
LOG_FORMAT_ENV = "SLOWDRIP_LOG_FORMAT"
LOG_FILE_ENV = "SLOWDRIP_LOG_FILE"


class LogFormat(Enum):
    """Output format for logs."""
    CONSOLE = "console"     # One human-readable line per entry
    JSON = "json"           # One JSON object per line
    PRETTY_JSON = "pretty"  # Indented JSON


class LogLevel(Enum):
    """Log levels accepted by configuration."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass(frozen=True)
class LogContext:
    """
    Ambient fields attached to every entry logged inside log_context().

    The session ID is advisory: it only ever appears in logs and is never
    mixed into a signed digest.
    """
    session_id: Optional[str] = None
    path: Optional[str] = None
    module: Optional[str] = None
    operation: Optional[str] = None

    def to_dict(self) -> Dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name)}

    def merge(self, other: "LogContext") -> "LogContext":
        """Fields set on other win"""
        return replace(self, **other.to_dict())


_current_context: contextvars.ContextVar[Optional[LogContext]] = contextvars.ContextVar(
    "slowdrip_log_context", default=None
)


def get_current_log_context() -> LogContext:
    return _current_context.get() or LogContext()


@contextmanager
def log_context(**kwargs):
    """
    Add fields to the logging context for the duration of a block.

    Nested blocks merge into the enclosing context. Each asyncio task sees
    the context it was created with.

    Usage:
        with log_context(session_id="abc123", operation="pump"):
            logger.info("signing receipts")
    """
    new_context = get_current_log_context().merge(LogContext(**kwargs))
    token = _current_context.set(new_context)
    try:
        yield new_context
    finally:
        _current_context.reset(token)


class StructuredFormatter(logging.Formatter):
    """JSON lines: timestamp, level, logger, message, context, then fields"""

    def __init__(self, pretty: bool = False):
        super().__init__()
        self.indent = 2 if pretty else None
        self.separators = None if pretty else (",", ":")

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = get_current_log_context().to_dict()
        if context:
            entry["context"] = context

        entry.update(getattr(record, "extra_fields", {}))

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, indent=self.indent, separators=self.separators, default=str)


class ConsoleFormatter(logging.Formatter):
    """
    One line per entry:

        12:00:01 INFO     qos window path=live/a accepted=3 [session=abc, op=pump]
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    # Context fields shown on the console, with their short labels
    CONTEXT_LABELS = (("session_id", "session"), ("path", "path"), ("operation", "op"))

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stderr.isatty()

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelname in self.COLORS:
            level = f"{self.COLORS[record.levelname]}{level}{self.RESET}"

        parts = [
            datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            level,
            record.getMessage(),
        ]
        parts.extend(f"{k}={v}" for k, v in getattr(record, "extra_fields", {}).items())

        context = get_current_log_context().to_dict()
        shown = [
            f"{label}={context[key][:8] if key == 'session_id' else context[key]}"
            for key, label in self.CONTEXT_LABELS
            if key in context
        ]
        if shown:
            parts.append(f"[{', '.join(shown)}]")

        output = " ".join(parts)
        if record.exc_info:
            output += "\n" + self.formatException(record.exc_info)
        return output


def _make_formatter(format: LogFormat) -> logging.Formatter:
    if format == LogFormat.JSON:
        return StructuredFormatter()
    if format == LogFormat.PRETTY_JSON:
        return StructuredFormatter(pretty=True)
    return ConsoleFormatter()


class SlowDripLogger:
    """
    Thin wrapper over logging.Logger.

    Keyword arguments given to debug/info/warning/error become structured
    fields on the record (record.extra_fields).
    """

    def __init__(self, name: str = LOGGER_NAME):
        self._logger = logging.getLogger(name)
        self._configured = False

    @property
    def name(self) -> str:
        return self._logger.name

    def configure(
        self,
        level: Union[str, LogLevel] = LogLevel.INFO,
        format: Union[str, LogFormat] = LogFormat.CONSOLE,
        log_file: Optional[Path] = None,
        propagate: bool = False,
    ) -> None:
        """
        Replace this logger's handlers.

        Args:
            level: Minimum log level
            format: Console format (console, json, pretty)
            log_file: Optional file that also receives every entry as JSON
            propagate: Whether to hand records to parent loggers too

        Raises:
            OSError: If log_file cannot be opened
        """
        if isinstance(level, str):
            level = LogLevel[level.upper()]
        if isinstance(format, str):
            format = LogFormat(format.lower())

        handlers = []
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(_make_formatter(format))
        handlers.append(console)
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(StructuredFormatter())
            handlers.append(file_handler)

        for old in list(self._logger.handlers):
            self._logger.removeHandler(old)
            old.close()
        for handler in handlers:
            self._logger.addHandler(handler)

        self._logger.setLevel(level.value)
        self._logger.propagate = propagate
        self._configured = True

    def _ensure_configured(self) -> None:
        """Configure the root slowdrip logger from the environment on first use"""
        root = get_logger()
        if root._configured:
            return
        log_file = os.environ.get(LOG_FILE_ENV)
        root.configure(
            level=os.environ.get(LOG_LEVEL_ENV, "INFO"),
            format=os.environ.get(LOG_FORMAT_ENV, "console"),
            log_file=Path(log_file) if log_file else None,
        )

    def _log(self, level: int, msg: str, *args, **kwargs) -> None:
        self._ensure_configured()
        extra = {"extra_fields": kwargs} if kwargs else None
        self._logger.log(level, msg, *args, extra=extra)

    def debug(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs) -> None:
        self._log(logging.ERROR, msg, *args, **kwargs)


_loggers: Dict[str, SlowDripLogger] = {}


def get_logger(name: str = LOGGER_NAME) -> SlowDripLogger:
    """
    Get a SlowDrip logger.

    Child names ("slowdrip.qos") own no handlers and propagate to the root
    "slowdrip" logger.
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = SlowDripLogger(name)
        if name != LOGGER_NAME:
            logger._logger.propagate = True
        _loggers[name] = logger
    return logger


def configure_logging(
    level: Union[str, LogLevel] = LogLevel.INFO,
    format: Union[str, LogFormat] = LogFormat.CONSOLE,
    log_file: Optional[Path] = None,
) -> SlowDripLogger:
    """
    Configure the root SlowDrip logger.

    Example:
        configure_logging(level="debug", format="json", log_file=Path("miner.log"))
    """
    logger = get_logger()
    logger.configure(level=level, format=format, log_file=log_file)
    return logger


__all__ = [
    "LogFormat",
    "LogLevel",
    "LogContext",
    "SlowDripLogger",
    "get_logger",
    "configure_logging",
    "log_context",
    "get_current_log_context",
]
