"""Loguru configuration for the backtest service."""

from __future__ import annotations

import os
import sys

from loguru import logger

_LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{line} | {message}"


def setup_logging(level: str | None = None) -> None:
    """Replace loguru's default sink with one stderr sink at the given level."""
    log_level = (level or os.getenv("BACKTEST_LOG_LEVEL") or "INFO").upper()
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level,
        format=_LOG_FORMAT,
        backtrace=False,
        diagnose=False,
    )
