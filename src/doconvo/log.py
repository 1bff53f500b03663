"""Logging setup: a log file in the data directory plus a rich console handler."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.logging import RichHandler

LOG_FILENAME = "doconvo.log"

_FILE_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(message)s"


def setup_logging(data_dir: Path, debug: bool = False) -> Path:
    """Configure the ``doconvo`` logger hierarchy. Idempotent.

    Everything at DEBUG (or INFO) goes to ``<data_dir>/doconvo.log``; only
    warnings and errors reach the terminal unless *debug* is set.

    Returns:
        Path of the log file.
    """
    data_dir.mkdir(parents=True, exist_ok=True)
    log_path = data_dir / LOG_FILENAME

    logger = logging.getLogger("doconvo")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)

    console_handler = RichHandler(show_path=False, rich_tracebacks=debug)
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)

    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    logger.propagate = False

    return log_path
