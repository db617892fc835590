"""
Logging configuration for the desktop app.

Library modules only call ``logging.getLogger(__name__)``; the entrypoint
calls ``setup_logging`` once.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Literal

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def setup_logging(
    name: str | None = None,
    level: LogLevel | None = None,
    format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure the root logger and return ``name``'s logger.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.
        level: Log level. Defaults to the LOG_LEVEL env var or INFO.
        format: Log format string.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()  # type: ignore[assignment]

    log_level = getattr(logging, str(level), logging.INFO)

    logging.basicConfig(level=log_level, format=format, stream=sys.stdout)

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    return logger
