"""Console logging setup for the fluent_client logger hierarchy."""

from __future__ import annotations

import logging
import sys

LOGGER_NAME = "fluent_client"

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

DEFAULT_FORMAT = "[%(asctime)s] - [%(levelname)s]: %(message)s"
VERBOSE_FORMAT = "[%(asctime)s] - [%(levelname)s] %(name)s:%(lineno)d: %(message)s"


def configure_logging(verbose: bool = False, level: str = "info") -> logging.Logger:
    """Attach a stderr handler to the fluent_client logger.

    Debug output needs verbose=True; a "debug" level without it logs at
    info. verbose=True always logs at debug with logger names and line
    numbers. Calling this again replaces the handler it installed before.

    Raises:
        ValueError: If level is not one of debug, info, warn, warning, error.
    """
    key = level.strip().lower()
    if key not in LOG_LEVELS:
        raise ValueError(f"Unknown log level '{level}', expected one of {', '.join(LOG_LEVELS)}")

    if verbose:
        effective = logging.DEBUG
    else:
        effective = max(LOG_LEVELS[key], logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_fluent_client_console", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT))
    handler._fluent_client_console = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.setLevel(effective)
    return logger
