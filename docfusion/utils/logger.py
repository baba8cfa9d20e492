"""Centralized logging setup for the document metadata extraction system.

Log records go to stderr so that command output on stdout (JSON results,
batch summaries) stays machine readable. Chatty third-party loggers are
kept at WARNING or above.
"""

import logging
import sys
from typing import TextIO

_NOISY_LOGGERS = ("pdfminer", "httpx", "httpcore", "PIL")


def setup_logging(level: str = "INFO", stream: TextIO | None = None) -> None:
    """Configure the root logger with a standard format.

    Does nothing when the root logger already has handlers.

    Args:
        level: Logging level string (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Destination of log records, stderr by default.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()

    if root.handlers:
        return

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Get a named logger instance.

    Args:
        name: Logger name, typically ``__name__`` of the calling module.

    Returns:
        Configured logger instance.
    """
    return logging.getLogger(name)
