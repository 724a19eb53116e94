"""
Utility modules for worker agents.

- logger: Structured logging with loguru
"""

from taskloop.utils.logger import get_logger, set_log_level, LoggerManager

__all__ = [
    "get_logger",
    "set_log_level",
    "LoggerManager",
]
