"""Shared application logger"""

import logging
import sys

from config import settings

LOGGER_NAME = "examprep"


def setup_logger(name: str = LOGGER_NAME, level: str = settings.LOG_LEVEL) -> logging.Logger:
    """Configure the console logger used across the entitlement package"""
    log = logging.getLogger(name)
    log.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Format: time | level | module | message
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(module)s | %(message)s',
        datefmt='%H:%M:%S'
    )
    handler.setFormatter(formatter)

    # Avoid duplicate handlers when the module is reloaded
    if not log.handlers:
        log.addHandler(handler)

    return log


logger = setup_logger()
