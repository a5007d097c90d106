"""Logging setup for the agent engine.

Every module logs through ``logging.getLogger(__name__)``; this module only
attaches a handler to the package logger so hosts that do not configure
logging themselves still get readable output.
"""
from __future__ import annotations

import logging
import sys
from typing import Optional

PACKAGE_LOGGER = "agent_engine"


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Attach stderr (and optionally file) handlers to the package logger.

    Calling it more than once only adjusts the level.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)8s] [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
