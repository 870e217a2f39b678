"""Logging configuration."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

APP_LOGGER = "pulse_client"
BLE_LOGGER = "bleak"


def _resolve_level(level: str) -> tuple[int, str | None]:
    """Return the numeric level and, if the name was not recognized, the bad name."""
    level_upper = level.upper()
    if level_upper not in VALID_LEVELS:
        return logging.INFO, level
    return getattr(logging, level_upper), None


def setup_logging(level: str = "INFO", ble_debug: bool = False) -> None:
    """Configure logging for the application.

    Args:
        level: Log level for pulse_client loggers (DEBUG, INFO, WARNING, ERROR)
        ble_debug: Also log bleak's backend traffic at DEBUG
    """
    numeric_level, invalid_level = _resolve_level(level)

    # Root stays at WARNING so bleak/websockets/asyncio don't flood the console
    logging.basicConfig(
        level=logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(numeric_level)

    ble_logger = logging.getLogger(BLE_LOGGER)
    ble_logger.setLevel(logging.DEBUG if ble_debug else logging.NOTSET)

    if invalid_level:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", invalid_level)
