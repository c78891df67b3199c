"""Logging setup for bookledger.

Modules log through ``logging.getLogger(__name__)``; this installs the
handler once for the ``bookledger`` logger tree.
"""

import logging

from rich.logging import RichHandler

LOGGER_NAME = "bookledger"


def setup_logging(level: str = "WARNING") -> logging.Logger:
    """Configure the package logger with a Rich handler.

    Calling it again only updates the level.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
        logger.addHandler(handler)

    return logger
