"""Logging setup for pngshrink.

Uses loguru. Console output goes through ``tqdm.write`` so log lines do not
tear the progress bar.
"""

from __future__ import annotations

import sys

from loguru import logger
from tqdm import tqdm

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"


def _tqdm_sink(message: str) -> None:
    tqdm.write(message, end="", file=sys.stderr)


def setup_logging(debug: bool = False) -> None:
    """Configure the console handler; call once at startup."""
    logger.remove()
    logger.add(
        _tqdm_sink,
        level="DEBUG" if debug else "INFO",
        format=CONSOLE_FORMAT,
        colorize=sys.stderr.isatty(),
    )
