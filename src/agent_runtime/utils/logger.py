"""
Logging setup for the agent runtime using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/runtime.jsonl: JSON format for all INFO and above records
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import sys

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

from pythonjsonlogger import json as jsonlogger

from agent_runtime.core.constants import get_settings

#: Maximum size of one rotating log file
LOG_MAX_SIZE = 10 * 1024 * 1024

#: Rotated files kept per log
LOG_BACKUP_COUNT = 5

#: Characters of tool output kept in log previews
LOG_PREVIEW_LENGTH = 120

_current_session_id: ContextVar[str | None] = ContextVar("current_session_id", default=None)


def get_current_session_id() -> str | None:
    """Session id bound to the running task, if any."""
    return _current_session_id.get()


@contextmanager
def session_context(session_id: str) -> Iterator[None]:
    """Bind ``session_id`` to every log record emitted inside the block."""
    token = _current_session_id.set(session_id)
    try:
        yield
    finally:
        _current_session_id.reset(token)


class InfoFilter(logging.Filter):
    """Filter to allow all INFO level logs and above"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Filter to only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to log levels and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        level_fmt = f"[{record.levelname}]"
        color = self.LEVEL_COLORS.get(record.levelno)
        if color:
            level_fmt = f"{color}{level_fmt}{self.RESET}"

        record.asctime = self.formatTime(record, "%H:%M:%S")
        message = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(name: str = "agent-runtime", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides the DEBUG setting)

    Returns:
        Configured logger instance
    """
    settings = get_settings()

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = settings.debug

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    if not settings.log_to_file:
        return logger

    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    # --- Runtime Log Handler (JSON) ---
    runtime_handler = logging.handlers.RotatingFileHandler(
        log_dir / "runtime.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    runtime_handler.setLevel(logging.INFO)
    runtime_handler.addFilter(InfoFilter())
    runtime_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s %(session_id)s",
            timestamp=True,
        )
    )
    logger.addHandler(runtime_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class RuntimeLogger:
    """
    High-level logging interface for the agent runtime.
    Wraps standard Python logging; keyword arguments become ``extra`` fields.
    """

    def __init__(self, name: str = "agent-runtime"):
        self.logger = setup_logging(name)

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Attach the session bound to the current task unless one was given."""
        if (session_id := get_current_session_id()) is not None:
            kwargs.setdefault("session_id", session_id)
        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        """Debug level logging"""
        self.logger.debug(message, extra=self._enrich_context(kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Info level logging"""
        self.logger.info(message, extra=self._enrich_context(kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Warning level logging"""
        self.logger.warning(message, extra=self._enrich_context(kwargs))

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        self.logger.error(message, extra=self._enrich_context(kwargs), exc_info=exc_info)

    def log_tool_execution(self, tool_name: str, *, success: bool, duration_ms: float, output: str = "") -> None:
        """Log one tool run with a short output preview."""
        preview = output[:LOG_PREVIEW_LENGTH].replace("\n", " ")
        if len(output) > LOG_PREVIEW_LENGTH:
            preview += "..."
        status = "ok" if success else "failed"
        self.info(
            f"Tool {tool_name} {status} [{duration_ms:.0f}ms] {preview}",
            tool=tool_name,
            success=success,
            ms=int(duration_ms),
        )


# Global logger instance
logger = RuntimeLogger()
