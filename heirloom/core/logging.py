"""Structured logging configuration."""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add extra fields if present
        if hasattr(record, "extra"):
            log_data.update(record.extra)

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ContextFormatter(logging.Formatter):
    """Human-readable formatter that appends context fields as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extra = getattr(record, "extra", None)
        if extra:
            context = " ".join(f"{key}={value}" for key, value in extra.items())
            message = f"{message} | {context}"
        return message


class StructuredLogger:
    """
    Structured logger wrapper for consistent logging.

    Supports both human-readable and JSON formats. Keyword arguments passed
    to the level methods are attached to the record as context fields.
    """

    def __init__(self, name: str, json_format: bool = False, level: int = logging.INFO):
        """Initialize the logger."""
        self.logger = logging.getLogger(name)
        self._setup_handler(json_format, level)

    def _setup_handler(self, json_format: bool, level: int) -> None:
        """Set up the log handler with appropriate formatter."""
        if self.logger.handlers:
            return  # Already configured

        handler = logging.StreamHandler(sys.stdout)

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(
                ContextFormatter(
                    "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )

        self.logger.addHandler(handler)
        self.logger.setLevel(level)

    def _log(self, level: int, message: str, exc_info: bool = False, **extra: Any) -> None:
        """Log with extra context."""
        if not self.logger.isEnabledFor(level):
            return
        record = self.logger.makeRecord(
            self.logger.name,
            level,
            "",
            0,
            message,
            (),
            sys.exc_info() if exc_info else None,
        )
        if extra:
            record.extra = extra
        self.logger.handle(record)

    def info(self, message: str, **extra: Any) -> None:
        """Log info level message."""
        self._log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        """Log warning level message."""
        self._log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        """Log error level message."""
        self._log(logging.ERROR, message, **extra)

    def debug(self, message: str, **extra: Any) -> None:
        """Log debug level message."""
        self._log(logging.DEBUG, message, **extra)

    def exception(self, message: str, **extra: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, message, exc_info=True, **extra)


def get_logger(name: str, json_format: bool = False, debug: bool = False) -> StructuredLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)
        json_format: If True, output JSON formatted logs
        debug: If True, log at DEBUG level

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name, json_format, logging.DEBUG if debug else logging.INFO)
