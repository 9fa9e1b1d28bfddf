"""
Logging setup for Spotify Keep Awake.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as _logger

_LOG_INITIALISED = False
APP_DIR_NAME = "Spotify Keep Awake"


def app_data_dir() -> Path:
    """Per-user application data directory (settings, logs)."""
    override = os.environ.get("SPOTIFY_KEEP_AWAKE_HOME")
    if override:
        return Path(override)
    return Path.home() / "AppData" / "Local" / APP_DIR_NAME


def default_log_path() -> Path:
    return app_data_dir() / "logs" / "keep_awake.log"


def configure(log_path: Optional[Path] = None) -> None:
    """
    Configure loguru for the application.

    Safe to call repeatedly; only the first call installs sinks. Both sinks
    are enqueued because the poll worker and the Qt thread log concurrently.
    """
    global _LOG_INITIALISED
    if _LOG_INITIALISED:
        return
    target = log_path or default_log_path()
    target.parent.mkdir(parents=True, exist_ok=True)

    _logger.remove()
    # Windowed builds (pythonw / frozen) have no stderr.
    if sys.stderr is not None:
        _logger.add(sys.stderr, level="INFO", enqueue=True)
    _logger.add(
        target,
        level="DEBUG",
        rotation="10 MB",
        retention=5,
        encoding="utf-8",
        enqueue=True,
        backtrace=True,
        diagnose=False,
    )
    _LOG_INITIALISED = True


def get_logger():
    """Return the shared logger instance."""
    configure()
    return _logger
