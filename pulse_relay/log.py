"""Logging configuration."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

APP_LOGGER = "pulse_relay"


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the relay.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    level_upper = level.upper()
    invalid_level = None if level_upper in VALID_LEVELS else level
    if invalid_level:
        level_upper = "INFO"

    # bleak and websockets are chatty at INFO, keep them at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(getattr(logging, level_upper))

    if invalid_level:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", invalid_level)
