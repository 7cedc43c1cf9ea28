"""
Structured Logging Configuration for debrid-sync
Provides JSON logging, log rotation and context filtering.
"""

import json
import logging
import logging.handlers
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any


class ContextFilter(logging.Filter):
    """
    Add context fields to log records.
    Allows setting per-torrent or per-operation context. The context lives
    in a ContextVar, so each asyncio task sees its own copy.
    """

    _context: ContextVar[Dict[str, Any]] = ContextVar("debrid_sync_log_context", default={})

    @classmethod
    def set_context(cls, **kwargs) -> Token:
        """Set context fields for subsequent log messages in this task."""
        return cls._context.set({**cls._context.get(), **kwargs})

    @classmethod
    def reset_context(cls, token: Token) -> None:
        """Restore the context a set_context call replaced."""
        cls._context.reset(token)

    @classmethod
    def clear_context(cls, *keys) -> None:
        """Clear specific context fields or all if no keys specified."""
        if keys:
            context = cls._context.get()
            cls._context.set({k: v for k, v in context.items() if k not in keys})
        else:
            cls._context.set({})

    @classmethod
    def get_context(cls) -> Dict[str, Any]:
        """Get current context."""
        return dict(cls._context.get())

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context fields to the log record."""
        for key, value in self.get_context().items():
            setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """
    Format logs as JSON for structured logging.
    Includes timestamp, level, logger name, message, and context fields.
    """

    CONTEXT_FIELDS = [
        "torrent_id",
        "torrent_name",
        "torrent_hash",
        "operation",
        "attempt",
        "path",
        "error",
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_obj[field] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
            log_obj["exception_type"] = record.exc_info[0].__name__ if record.exc_info[0] else None

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """
    Colored console formatter for better readability.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        """Format with optional colors."""
        message = super().format(record)

        if self.use_colors:
            color = self.COLORS.get(record.levelname, "")
            if color:
                message = message.replace(
                    record.levelname,
                    f"{color}{record.levelname}{self.RESET}",
                    1
                )

        context_parts = []
        for field in ["torrent_id", "torrent_name", "attempt"]:
            value = getattr(record, field, None)
            if value is not None and value != "":
                context_parts.append(f"{field}={value}")

        if context_parts:
            message += f" [{', '.join(context_parts)}]"

        return message


# Component-specific log levels
COMPONENT_LOG_LEVELS = {
    "debrid_sync": "INFO",
    "debrid_sync.realdebrid_api": "INFO",
    "debrid_sync.retry": "INFO",
    "aiohttp": "WARNING",
    "aiohttp.client": "WARNING",
}


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: str = "text",
    max_file_size_mb: int = 10,
    backup_count: int = 5,
    use_colors: bool = True,
) -> None:
    """
    Configure logging with optional file rotation and structured output.

    Args:
        log_level: Root log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (enables rotation if set)
        log_format: "text" for human-readable, "json" for structured
        max_file_size_mb: Maximum size of each log file before rotation
        backup_count: Number of rotated log files to keep
        use_colors: Use colored output in console (if terminal supports it)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    context_filter = ContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context_filter)

    if log_format == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.addFilter(context_filter)

        if log_format == "json":
            file_handler.setFormatter(JSONFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))

        root_logger.addHandler(file_handler)

    # A DEBUG root level also opens up our own components
    for logger_name, component_level in COMPONENT_LOG_LEVELS.items():
        if logger_name.startswith("debrid_sync") and level < logging.INFO:
            component_level = log_level.upper()
        logging.getLogger(logger_name).setLevel(getattr(logging, component_level))

    logger = logging.getLogger(__name__)
    logger.info(
        f"Logging configured: level={log_level}, format={log_format}, "
        f"file={log_file or 'none'}"
    )


class LogContext:
    """
    Context manager for setting log context fields.

    Usage:
        with LogContext(torrent_id="ABC123", torrent_name="Movie.mkv"):
            logger.info("Processing torrent")
    """

    def __init__(self, **kwargs):
        self.context = kwargs
        self._token: Optional[Token] = None

    def __enter__(self):
        self._token = ContextFilter.set_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        ContextFilter.reset_context(self._token)
        self._token = None
        return False
