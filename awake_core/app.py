"""
Tray coordinator wiring the keep-awake controller to the Qt UI thread.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict

from PySide6.QtCore import QObject, QTimer
from PySide6.QtGui import QAction, QActionGroup, QColor, QIcon, QPixmap
from PySide6.QtWidgets import QApplication, QMenu, QSystemTrayIcon

from awake_core.metadata import APP_NAME, APP_VERSION
from awake_core import logger as app_logger
from awake_core.activity_signal import DEFAULT_PROCESS_NAME, build_activity_signal
from awake_core.autostart import AutostartRegistrar, ReconcileOutcome
from awake_core.controller import StateController
from awake_core.idle_inhibitor import IdleInhibitor
from awake_core.settings import SettingsStore
from awake_core.status import ActivitySnapshot

STATUS_REFRESH_INTERVAL_MS = 250
INTERVAL_PRESETS_MS: Dict[str, int] = {
    "1 second": 1000,
    "2 seconds": 2000,
    "5 seconds": 5000,
    "10 seconds": 10000,
    "30 seconds": 30000,
    "1 minute": 60000,
    "5 minutes": 300000,
}
_ACTIVE_COLOR = "limegreen"
_INACTIVE_COLOR = "lightgray"


@dataclass
class AppCoordinator(QObject):
    settings_store: SettingsStore = field(default_factory=SettingsStore)
    registrar: AutostartRegistrar = field(default_factory=AutostartRegistrar)
    detection_strategy: str = field(
        default_factory=lambda: os.environ.get("SPOTIFY_KEEP_AWAKE_STRATEGY", "window_title")
    )
    process_name: str = DEFAULT_PROCESS_NAME

    def __post_init__(self) -> None:
        super().__init__()
        self._logger = app_logger.get_logger()
        self._seen_status_version = -1

        self.controller = StateController(
            build_activity_signal(self.detection_strategy, self.process_name),
            IdleInhibitor(),
            settings=self.settings_store.load(),
        )

        self._icons = {
            True: _solid_icon(_ACTIVE_COLOR),
            False: _solid_icon(_INACTIVE_COLOR),
        }
        self._tray = QSystemTrayIcon(self)
        self._tray.setIcon(self._icons[False])
        self._tray.setToolTip(f"{APP_NAME} v{APP_VERSION}")

        menu = QMenu()
        self._status_action = QAction("Waiting for playback", menu)
        self._status_action.setEnabled(False)
        menu.addAction(self._status_action)
        menu.addSeparator()

        interval_menu = menu.addMenu("Check Interval")
        self._interval_group = QActionGroup(interval_menu)
        self._interval_group.setExclusive(True)
        current_interval = self.controller.poll_interval_ms
        for label, interval_ms in INTERVAL_PRESETS_MS.items():
            action = QAction(label, interval_menu)
            action.setCheckable(True)
            action.setChecked(interval_ms == current_interval)
            action.setData(interval_ms)
            self._interval_group.addAction(action)
            interval_menu.addAction(action)
        self._interval_group.triggered.connect(self._on_interval_selected)

        self._autostart_action = QAction("Start with Windows", menu)
        self._autostart_action.setCheckable(True)
        self._autostart_action.toggled.connect(self._on_autostart_toggled)
        menu.addAction(self._autostart_action)
        menu.addSeparator()

        exit_action = QAction("Exit", menu)
        exit_action.triggered.connect(self.shutdown)
        menu.addAction(exit_action)
        self._menu = menu
        self._tray.setContextMenu(menu)

        self._status_timer = QTimer(self)
        self._status_timer.setInterval(STATUS_REFRESH_INTERVAL_MS)
        self._status_timer.timeout.connect(self._drain_status)

    def start(self) -> None:
        self._logger.info("Starting {} v{} (strategy={}).", APP_NAME, APP_VERSION, self.detection_strategy)
        outcome = self.registrar.reconcile_on_startup()
        if outcome is not ReconcileOutcome.NOT_REGISTERED:
            self._logger.info("Autostart check: {}.", outcome.value)
        self._set_checked_silently(self._autostart_action, self.registrar.is_registered())

        app = QApplication.instance()
        if app is not None:
            app.aboutToQuit.connect(self._stop_controller)

        self._tray.show()
        self._status_timer.start()
        self.controller.start()

    def shutdown(self) -> None:
        self._logger.info("Shutting down application on user request.")
        self._stop_controller()
        self._tray.hide()
        QApplication.instance().quit()

    def _stop_controller(self) -> None:
        self._status_timer.stop()
        if not self.controller.stop():
            self._logger.error("Poll worker still running at exit; keep-awake may not be released.")

    def _drain_status(self) -> None:
        update = self.controller.status.read_if_newer(self._seen_status_version)
        if update is None:
            return
        self._seen_status_version, snapshot = update
        self._render_status(snapshot)

    def _render_status(self, snapshot: ActivitySnapshot) -> None:
        active = snapshot.state.is_active
        since = snapshot.last_transition_time.astimezone().strftime("%H:%M:%S")
        text = f"Keeping awake since {since}" if active else f"Idle allowed since {since}"
        self._tray.setIcon(self._icons[active])
        self._tray.setToolTip(f"{APP_NAME} v{APP_VERSION}\n{text}")
        self._status_action.setText(text)

    def _on_interval_selected(self, action: QAction) -> None:
        interval_ms = int(action.data())
        self.controller.set_poll_interval(interval_ms)
        self.settings_store.save(self.controller.settings)

    def _on_autostart_toggled(self, enabled: bool) -> None:
        result = self.registrar.register() if enabled else self.registrar.unregister()
        if result.ok:
            return
        self._set_checked_silently(self._autostart_action, not enabled)
        self._tray.showMessage(APP_NAME, result.message, QSystemTrayIcon.Warning, 5000)

    @staticmethod
    def _set_checked_silently(action: QAction, checked: bool) -> None:
        previous = action.blockSignals(True)
        action.setChecked(checked)
        action.blockSignals(previous)


def _solid_icon(color: str, size: int = 16) -> QIcon:
    pixmap = QPixmap(size, size)
    pixmap.fill(QColor(color))
    return QIcon(pixmap)
