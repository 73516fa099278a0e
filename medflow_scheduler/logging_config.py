"""
Logging Configuration

Installs the stdout log handler used by applications embedding the scheduler.
Library modules only create named loggers; nothing is configured on import.
"""

import logging
import sys
from typing import Optional

from medflow_scheduler.config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_level: Optional[str] = None) -> None:
    """
    Configure standard library logging for the scheduler.

    Args:
        log_level: Logging level name (DEBUG, INFO, WARNING, ERROR).
            Defaults to the configured ``log_level`` setting.
    """
    level_name = (log_level or settings.log_level).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    logger = logging.getLogger("medflow_scheduler")
    logger.info(f"Logging configured at {level_name}")
    logger.debug(f"Database URL: {settings.database_url_str.split('@')[0]}@***")
