"""
Logging setup for the ryana CLI and library.

The terminal stays quiet unless --verbose is given. Every store also keeps
its own rotating operations log of writes, independent of verbosity.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "ryana"
OPS_LOG_FILENAME = "ryana-ops.log"
OPS_LOG_MAX_BYTES = 1_000_000
OPS_LOG_BACKUPS = 3

_CONSOLE_FORMAT = logging.Formatter(
    "%(asctime)s %(levelname)s %(name)s: %(message)s", datefmt="%H:%M:%S")
_OPS_FORMAT = logging.Formatter(
    "%(asctime)s %(levelname)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def configure_quiet_mode(quiet: bool = True):
    """
    Silence warnings and info chatter on the terminal.

    Args:
        quiet: False restores default warning filters and lets the
            ryana logger inherit its level again.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not quiet:
        warnings.filterwarnings("default")
        logger.setLevel(logging.NOTSET)
        return
    warnings.filterwarnings("ignore")
    logger.setLevel(logging.WARNING)


def _has_stderr_handler(logger: logging.Logger) -> bool:
    return any(
        isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
        for h in logger.handlers
    )


def enable_debug_mode():
    """Send everything from DEBUG up to stderr."""
    warnings.filterwarnings("default")

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if not _has_stderr_handler(root):
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.DEBUG)
        console.setFormatter(_CONSOLE_FORMAT)
        root.addHandler(console)

    logging.getLogger(LOGGER_NAME).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """
    Attach the store's operations log to the ryana logger.

    The caller owns the returned handler and passes it to remove_ops_log()
    when the store is closed.
    """
    handler = RotatingFileHandler(
        str(Path(store_path) / OPS_LOG_FILENAME),
        maxBytes=OPS_LOG_MAX_BYTES,
        backupCount=OPS_LOG_BACKUPS,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(_OPS_FORMAT)

    logger = logging.getLogger(LOGGER_NAME)
    logger.addHandler(handler)
    # Quiet mode sets WARNING; writes are logged at INFO
    if logger.level == logging.NOTSET or logger.level > logging.INFO:
        logger.setLevel(logging.INFO)
    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log()."""
    logging.getLogger(LOGGER_NAME).removeHandler(handler)
    handler.close()
