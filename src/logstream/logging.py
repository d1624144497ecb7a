"""Loguru sink setup for the command line."""

import sys

from loguru import logger


def configure_logging(verbose: bool) -> None:
    """Configure Loguru logging level and sinks.

    Args:
        verbose: Enable DEBUG logging when True, otherwise INFO.
    """
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(sys.stderr, level=level)
