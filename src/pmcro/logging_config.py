# logging_config.py
# Centralized logging for the harness. Modules log through
# logging.getLogger(__name__); this wires the "pmcro" root to a RichHandler.

import logging
import os

from rich.logging import RichHandler

from pmcro.display import console

LOGGER_NAME = "pmcro"


def setup_logging(level: str | None = None) -> logging.Logger:
    """
    Configure the package logger once.

    Level precedence: argument > PMCRO_LOG_LEVEL > INFO.
    """
    level = level or os.getenv("PMCRO_LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
