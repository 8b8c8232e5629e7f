"""
Logging setup shared by the pipeline and the CLI.
"""

import logging
import os

_configured = False


def configure_logging(verbose: bool = False) -> None:
    """Install a single console handler on the package logger."""
    global _configured
    if verbose:
        level = logging.DEBUG
    else:
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("receipt_ledger")
    logger.setLevel(level)
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
        logger.handlers = [handler]
        logger.propagate = False
        _configured = True
    for handler in logger.handlers:
        handler.setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
