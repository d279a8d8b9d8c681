"""
PONYX Utils Package
===================

Logging and small text helpers.
"""

from __future__ import annotations

from ponyx.utils.logger import Logger, LogLevel, get_logger, configure_logging
from ponyx.utils.helpers import snake_case, pascal_case

__all__ = [
    # Logging
    "Logger",
    "LogLevel",
    "get_logger",
    "configure_logging",
    # Text helpers
    "snake_case",
    "pascal_case",
]
