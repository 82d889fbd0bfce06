"""
Logging setup for applications embedding ragpipe.

Library modules only call ``logging.getLogger(__name__)``; handlers and
levels are left to the application, which can use the helpers below.
"""

import logging
import sys
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from .config import LoggingSettings

PACKAGE_LOGGER = "ragpipe"
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def get_logger(name: str) -> logging.Logger:
    """
    Return the named logger with a stderr handler attached.

    The handler is only added when the logger has none, so calling this
    more than once for the same name is safe.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(stderr)
        logger.setLevel(logging.INFO)

    return logger


def set_log_level(level: Union[int, str]) -> None:
    """
    Change the level of the ``ragpipe`` logger and so of all its children.

    Args:
        level: A level number or a name such as "debug" or "WARNING"

    Raises:
        ValueError: If the name is not a known level
    """
    if isinstance(level, str):
        number = logging.getLevelName(level.upper())
        if not isinstance(number, int):
            raise ValueError(f"Unknown log level: {level}")
        level = number

    logging.getLogger(PACKAGE_LOGGER).setLevel(level)


def configure_logging(settings: "LoggingSettings") -> logging.Logger:
    """Send ragpipe output to stderr at the level named in the settings."""
    logger = get_logger(PACKAGE_LOGGER)
    set_log_level(settings.level)
    return logger
