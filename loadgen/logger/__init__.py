"""Logger module for loadgen

Usage:
    from loadgen.logger import Logger, ConsoleLogger

    logger = ConsoleLogger()
    logger.info("run.start", event="run.start", stages=3)

    # Or implement your own
    class MyCustomLogger(Logger):
        def info(self, message: str, **kwargs):
            # Your custom implementation
            pass
"""

import logging

from .base import Logger
from .console_logger import ConsoleLogger

# Shared logger instance for modules that just need basic console logging
session_logger: Logger = ConsoleLogger(level=logging.INFO)

__all__ = [
    "Logger",
    "ConsoleLogger",
    "session_logger",
]
