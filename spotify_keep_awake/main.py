"""
Entry point for Spotify Keep Awake.
"""

from __future__ import annotations

import sys

from PySide6.QtWidgets import QApplication

from awake_core import logger as app_logger
from awake_core.app import AppCoordinator
from awake_core.instance_guard import SingleInstance
from awake_core.metadata import APP_NAME

_LOGGER = app_logger.get_logger()


def main() -> int:
    """Run the tray application unless another instance already owns the mutex."""
    with SingleInstance() as guard:
        if not guard.acquired:
            _LOGGER.info("{} is already running; exiting.", APP_NAME)
            return 0

        app = QApplication.instance() or QApplication(sys.argv)
        app.setQuitOnLastWindowClosed(False)
        try:
            coordinator = AppCoordinator()
            coordinator.start()
        except Exception:
            _LOGGER.exception("{} failed to start.", APP_NAME)
            return 1

        exit_code = app.exec()
        _LOGGER.info("{} exited with code {}.", APP_NAME, exit_code)
        return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
