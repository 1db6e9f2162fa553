"""
mission_control/logging_config.py
Structured logging setup.

All logs are JSON formatted for aggregation into monitoring systems.
Follows: Single Responsibility Principle
"""

import json
import logging
from logging import LogRecord
from pathlib import Path
from typing import Any, Optional

from shared.config import SharedConfig


class StructuredFormatter(logging.Formatter):
    """Format logs as JSON for aggregation systems (ELK, Splunk, etc.)."""

    def format(self, record: LogRecord) -> str:
        """Convert log record to JSON."""
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Engine context fields passed via `extra=`
        for key in ("mission_id", "task_id", "artifact_id", "request_id", "actor"):
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = SharedConfig.LOG_LEVEL, log_file: Optional[Path] = None) -> None:
    """
    Initialize structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: JSON-lines log file (default: SharedConfig.LOG_FILE)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Console handler (JSON formatted, INFO and above)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)

    # File handler (all levels)
    target = log_file or SharedConfig.LOG_FILE
    target.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(target)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(file_handler)

    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with consistent naming.

    Args:
        name: Module name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
