"""
Standardized logging configuration for Certificate Monitor.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Union

# Level names accepted by the remote configuration store
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


class CustomFormatter(logging.Formatter):
    """Custom formatter with colored output for console."""

    # Color codes
    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def __init__(self, use_color: bool = True) -> None:
        self.use_color = use_color
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with optional colors."""
        if self.use_color and record.levelname in self.COLORS:
            color = self.COLORS[record.levelname]
            reset = self.COLORS["RESET"]
            level_name = f"{color}{record.levelname:<8}{reset}"
        else:
            level_name = f"{record.levelname:<8}"

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S %z")
        message = record.getMessage()

        if record.exc_info:
            if not message.endswith("\n"):
                message += "\n"
            message += self.formatException(record.exc_info)

        return f"[{timestamp}] {level_name} | {record.name:<28} | {message}"


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    EXTRA_FIELDS = (
        "identity",
        "source",
        "cert_path",
        "expire_in_days",
        "error_type",
        "check_duration",
        "config_hash",
        "file_path",
        "reload_event",
    )

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        import json
        from datetime import datetime

        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in self.EXTRA_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def to_logging_level(level: Union[str, int]) -> int:
    """
    Convert a configuration level name to a ``logging`` level.

    Accepts the store's names (debug, info, warn, error, fatal) as well as
    the standard library names (WARNING, CRITICAL).

    Args:
        level: Level name or numeric level

    Returns:
        Numeric logging level
    """
    if isinstance(level, int):
        return level

    name = level.strip().lower()
    if name in LOG_LEVELS:
        return LOG_LEVELS[name]
    if name == "warning":
        return logging.WARNING
    if name == "critical":
        return logging.CRITICAL
    raise ValueError(f"Unknown log level: {level}")


def setup_logging(level: Union[str, int] = "info", log_file: Optional[str] = None) -> None:
    """
    Setup logging configuration.

    Args:
        level: Initial log level
        log_file: Optional path of a rotating JSON log file
    """
    numeric_level = to_logging_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)

    # Use colored formatter for console if output is a TTY
    use_color = hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
    console_handler.setFormatter(CustomFormatter(use_color=use_color))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"  # 10MB
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(StructuredFormatter())
        root_logger.addHandler(file_handler)

    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    app_logger = logging.getLogger("cert_monitor")
    app_logger.info(f"Logging initialized - Level: {logging.getLevelName(numeric_level)}")

    if log_file:
        app_logger.info(f"Log file: {log_file}")


def update_log_level(level: Union[str, int]) -> int:
    """
    Propagate a new level to the root logger and every attached handler.

    Args:
        level: New log level

    Returns:
        The numeric level that was applied
    """
    numeric_level = to_logging_level(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers:
        handler.setLevel(numeric_level)

    logging.getLogger("cert_monitor").info(
        f"Log level updated to: {logging.getLevelName(numeric_level)}"
    )
    return numeric_level


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    return logging.getLogger(f"cert_monitor.{name}")


# Logging helpers for certificate operations
def log_cert_checked(
    logger: logging.Logger, identity: str, source: str, expire_in_days: int, is_wildcard: bool
) -> None:
    """Log a successful certificate check."""
    cert_type = "Wildcard" if is_wildcard else "Single Domain"
    logger.debug(
        f"Certificate {identity} ({source}): {expire_in_days} days until expiry ({cert_type})",
        extra={"identity": identity, "source": source, "expire_in_days": expire_in_days},
    )


def log_cert_error(
    logger: logging.Logger, identity: str, source: str, error: Exception, duration: float = 0.0
) -> None:
    """Log a failed certificate check."""
    logger.error(
        f"Failed to check certificate {identity} ({source}): {error}",
        extra={
            "identity": identity,
            "source": source,
            "error_type": type(error).__name__,
            "check_duration": duration,
        },
    )


def log_cycle_complete(
    logger: logging.Logger,
    successful_remote: int,
    total_remote: int,
    successful_local: int,
    total_local: int,
    duration: float,
) -> None:
    """Log check cycle completion."""
    logger.info(
        f"Certificate check completed - Remote: {successful_remote}/{total_remote}, "
        f"Local: {successful_local}/{total_local}, Duration: {duration:.2f}s",
        extra={"check_duration": duration},
    )


def log_config_applied(logger: logging.Logger, config_hash: str, domain_count: int) -> None:
    """Log configuration application."""
    logger.info(
        f"Configuration applied - {domain_count} domains",
        extra={"config_hash": config_hash},
    )


def log_hot_reload(logger: logging.Logger, file_path: str, event_type: str) -> None:
    """Log hot reload events."""
    logger.debug(
        f"Hot reload triggered: {event_type}",
        extra={"file_path": file_path, "reload_event": event_type},
    )
