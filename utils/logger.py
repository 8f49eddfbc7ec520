"""
utils/logger.py
Simple logging wrapper for PortLedger
"""

import logging
import sys
from typing import Union


def get_logger(name: str, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (``portledger.<area>``)
        level: Logging level, int or name such as "DEBUG" (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)

    # Format: HH:MM:SS [LEVEL] name - message
    formatter = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(name)s - %(message)s',
        datefmt='%H:%M:%S'
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    # Children ("portledger.store") already get a handler of their own
    logger.propagate = False

    return logger


def set_level(level: Union[int, str]) -> None:
    """Apply a level to every portledger logger created so far."""
    if isinstance(level, str):
        level = level.upper()
    for name in list(logging.root.manager.loggerDict):
        if name == "portledger" or name.startswith("portledger."):
            lg = logging.getLogger(name)
            lg.setLevel(level)
            for h in lg.handlers:
                h.setLevel(level)


# Default logger instance
log = get_logger("portledger")


__all__ = ["get_logger", "set_level", "log"]
