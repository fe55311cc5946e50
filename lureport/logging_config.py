"""Root logger setup for the command line tool."""

from __future__ import annotations

import logging
import os
from typing import Optional

from .utils import colorize_text

__all__ = ["LOG_FORMAT", "DATE_FORMAT", "configure_logging"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ColourFormatter(logging.Formatter):
    COLOURS = {
        logging.DEBUG: "blue",
        logging.INFO: "green",
        logging.WARNING: "yellow",
        logging.ERROR: "red",
        logging.CRITICAL: "magenta",
    }

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - trivial wrapper
        message = super().format(record)
        colour = self.COLOURS.get(record.levelno, "green")
        return colorize_text(message, colour)


def configure_logging(verbose: bool, log_file: Optional[str | os.PathLike[str]] = None) -> None:
    """Configure root logging handlers.

    Warnings and errors always reach stderr; ``verbose`` lowers the level to
    DEBUG.  ``log_file`` adds a plain-text handler that records every level
    the root logger lets through.
    """

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    level = logging.DEBUG if verbose else logging.WARNING
    root.setLevel(level)

    stream = logging.StreamHandler()
    stream.setFormatter(_ColourFormatter("%(levelname)s: %(message)s"))
    root.addHandler(stream)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)
