"""Logging helpers shared by all archscan modules."""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "archscan"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name."""
    return logging.getLogger(name)


def configure_logging(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
) -> None:
    """Configure the archscan root logger.

    Levels, by precedence: --debug (DEBUG), --quiet (ERROR), --verbose (INFO).
    The default level is WARNING.

    Args:
        debug: Enable debug logging.
        verbose: Enable info-level logging.
        quiet: Only log errors.
    """
    if debug:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    # Reconfiguring must not stack handlers (tests call main() repeatedly).
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    root.propagate = False
