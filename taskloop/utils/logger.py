"""
Process-wide loguru configuration for worker agents.

Configuration via .env file:
- LOG_LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- LOG_MODE: Environment mode (development, production)
- LOG_DIR: Log directory for production (default: logs)
- LOG_ROTATION: Rotation size (e.g., "10 MB", "1 day")
- LOG_RETENTION: Retention time (e.g., "7 days")
- LOG_COMPRESSION: Compression format (e.g., "zip", "gz")

Every record carries a ``name`` extra (the module) and, for records emitted by
a worker, a ``worker_id`` extra so interleaved agents can be told apart.
"""

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_MODE = "development"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_ROTATION = "10 MB"
DEFAULT_LOG_RETENTION = "7 days"
DEFAULT_LOG_COMPRESSION = "zip"

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> <magenta>{extra[worker_id]}</magenta> - "
    "<level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | "
    "{extra[name]} {extra[worker_id]}:{function}:{line} - {message}"
)


class LoggerManager:
    """Global singleton that owns the loguru sinks."""

    _instance: Optional["LoggerManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "LoggerManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if LoggerManager._initialized:
            return
        LoggerManager._initialized = True

        self.log_level = os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
        self.log_mode = os.getenv("LOG_MODE", DEFAULT_LOG_MODE).lower()
        self.log_dir = Path(os.getenv("LOG_DIR", DEFAULT_LOG_DIR))
        self.log_rotation = os.getenv("LOG_ROTATION", DEFAULT_LOG_ROTATION)
        self.log_retention = os.getenv("LOG_RETENTION", DEFAULT_LOG_RETENTION)
        self.log_compression = os.getenv("LOG_COMPRESSION", DEFAULT_LOG_COMPRESSION)

        logger.configure(extra={"name": "root", "worker_id": "-"})
        self._install_sinks()

    def _install_sinks(self) -> None:
        logger.remove()
        if self.log_mode == "production":
            self._configure_production()
        else:
            self._configure_development()

    def _configure_development(self):
        """Colourised console output."""
        logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level=self.log_level,
            colorize=True,
            backtrace=True,
            diagnose=True,
        )

    def _configure_production(self):
        """Rotating log files, with errors duplicated into their own file."""
        self.log_dir.mkdir(parents=True, exist_ok=True)

        for filename, level in (
            ("app_{time:YYYY-MM-DD}.log", self.log_level),
            ("error_{time:YYYY-MM-DD}.log", "ERROR"),
        ):
            logger.add(
                self.log_dir / filename,
                format=FILE_FORMAT,
                level=level,
                rotation=self.log_rotation,
                retention=self.log_retention,
                compression=self.log_compression,
                encoding="utf-8",
                enqueue=True,
            )

    def get_logger(self, name: Optional[str] = None, **extra):
        """
        Get a logger bound to ``name`` plus any extra context.

        Example:
            log = LoggerManager().get_logger(__name__, worker_id="worker-abc")
            log.info("step finished")
        """
        return logger.bind(name=name or "root", **extra)

    def set_level(self, level: str):
        """Change the log level at runtime by reinstalling the sinks."""
        self.log_level = level.upper()
        self._install_sinks()


# ======================================================================
## Convenience Functions
# ======================================================================


def get_logger(name: Optional[str] = None, **extra):
    """
    Get a logger instance. This is the recommended way to use the logger.

    Example:
        from taskloop.utils.logger import get_logger

        log = get_logger(__name__)
        log.info("Worker started")
    """
    return LoggerManager().get_logger(name, **extra)


def set_log_level(level: str):
    """Change log level at runtime (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""
    LoggerManager().set_level(level)


__all__ = ["LoggerManager", "get_logger", "set_log_level", "logger"]
