"""Logging for the face indexer.

All loggers hang off the ``face-indexer`` package logger, which owns the
only handler. Components log under ``face-indexer.<component>`` and each
indexing job under ``face-indexer.jobs.<album_code>``, so output from
galleries running side by side can be told apart and one level setting
(``LOG_LEVEL`` or ``--debug``) covers all of them.
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "face-indexer"

FORMATS = {
    "structured": "%(asctime)s | %(name)s | %(levelname)-8s | %(message)s",
    "simple": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}


class _StderrHandler(logging.StreamHandler):
    """Writes to whatever sys.stderr is at emit time."""

    def __init__(self):
        logging.Handler.__init__(self)

    @property
    def stream(self):
        return sys.stderr


def _level_from(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def configure_logging(
    level: Optional[str] = None, format_type: Optional[str] = None
) -> logging.Logger:
    """
    Configure the package logger.

    Safe to call repeatedly: the handler is installed once and later calls
    only change the level and format.

    Args:
        level: Log level name; defaults to $LOG_LEVEL, then INFO
        format_type: "structured" or "simple"; defaults to $LOG_FORMAT,
            then "structured"

    Returns:
        The package logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(_level_from(level))

    format_name = (format_type or os.getenv("LOG_FORMAT") or "structured").lower()
    formatter = logging.Formatter(
        FORMATS.get(format_name, FORMATS["structured"]), datefmt="%Y-%m-%d %H:%M:%S"
    )
    handler = next(
        (h for h in root.handlers if isinstance(h, _StderrHandler)), None
    )
    if handler is None:
        handler = _StderrHandler()
        root.addHandler(handler)
    handler.setFormatter(formatter)

    # Keep job output out of the host application's root handlers
    root.propagate = False
    return root


def get_logger(name: str = ROOT_LOGGER_NAME, level: Optional[str] = None) -> logging.Logger:
    """
    Get a logger below the package logger, configuring it on first use.

    Names outside the package namespace are nested under it.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        configure_logging()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(_level_from(level))
    return logger


def get_job_logger(album_code: str) -> logging.Logger:
    """Logger for the indexing job of one gallery."""
    return get_logger(f"{ROOT_LOGGER_NAME}.jobs.{album_code.strip().lower()}")
