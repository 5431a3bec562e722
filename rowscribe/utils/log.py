"""Logging setup for the command line entry point."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(verbose: bool = False, stream=None) -> logging.Logger:
    """
    Attach a stream handler to the package logger.

    Library modules only create loggers; handlers are installed here so
    embedding applications keep control of their own logging.
    """
    logger = logging.getLogger("rowscribe")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Avoid duplicate handlers when called more than once
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False

    return logger
