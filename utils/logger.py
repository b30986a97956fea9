"""
Application logger

Single named logger shared by every module. The level comes from
settings.LOG_LEVEL and can be overridden with setup_logging().
"""

import logging
import sys
from typing import Optional

from config import settings

LOGGER_NAME = "aac_speech"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s:%(lineno)d - %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """Configure the shared logger (idempotent)"""
    level_name = (level or settings.LOG_LEVEL).upper().strip()
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)

    return logger


setup_logging()
