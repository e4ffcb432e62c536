"""Structured JSON logging configuration."""

import logging
import sys
from pythonjsonlogger import jsonlogger


PRETTY_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'


def setup_logger(
    name: str = "metadata_agent",
    level: str = "INFO",
    fmt: str = "json"
) -> logging.Logger:
    """
    Configure structured logging.

    Args:
        name: Logger name
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: "json" for one JSON object per line, "pretty" for plain text

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    if fmt == "pretty":
        formatter = logging.Formatter(PRETTY_FORMAT)
    else:
        formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s',
            timestamp=True
        )
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger
