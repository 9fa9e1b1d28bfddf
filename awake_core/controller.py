"""
Poll loop turning the activity signal into keep-awake directives.
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from awake_core import logger as app_logger
from awake_core.activity_signal import ActivitySignal
from awake_core.idle_inhibitor import IdleInhibitor
from awake_core.settings import Settings
from awake_core.status import ActivitySnapshot, ActivityState, StatusCell

DEFAULT_REASSERT_INTERVAL_SECONDS = 30.0
# The worker cannot retry a release on a later tick, so it retries in place.
_RELEASE_ATTEMPTS = 2


class StateController:
    """
    Owns the Active/Inactive state and the background worker.

    Each tick samples the signal once. A change is acted on immediately; an
    unchanged Active state is re-asserted every ``reassert_interval`` seconds
    (``None`` disables this). The worker always releases the inhibitor on its
    way out, whatever ended the loop.
    """

    def __init__(
        self,
        signal: ActivitySignal,
        inhibitor: IdleInhibitor,
        *,
        settings: Optional[Settings] = None,
        status: Optional[StatusCell] = None,
        reassert_interval: Optional[float] = DEFAULT_REASSERT_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = app_logger.get_logger()
        self._signal = signal
        self._inhibitor = inhibitor
        self._settings_lock = threading.Lock()
        self._settings = settings or Settings()
        self.status = status or StatusCell()
        self._reassert_interval = reassert_interval
        self._clock = clock

        self._active = False
        self._last_directive_at: Optional[float] = None
        self._retry_directive = False

        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

    # -- shared configuration ---------------------------------------------

    @property
    def poll_interval_ms(self) -> int:
        with self._settings_lock:
            return self._settings.poll_interval_ms

    def set_poll_interval(self, interval_ms: int) -> None:
        """
        Change the cadence; the worker picks it up after its current sleep.
        Raises SettingsError for non-positive or non-integer values.
        """
        updated = Settings(poll_interval_ms=interval_ms)
        with self._settings_lock:
            self._settings = updated
        self._logger.info("Poll interval set to {} ms.", interval_ms)

    @property
    def settings(self) -> Settings:
        with self._settings_lock:
            return Settings(poll_interval_ms=self._settings.poll_interval_ms)

    @property
    def state(self) -> ActivityState:
        return ActivityState.from_bool(self._active)

    # -- lifecycle ---------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._worker = threading.Thread(target=self._run, name="keep-awake-poll", daemon=True)
        self._worker.start()
        self._logger.info("Activity polling started every {} ms.", self.poll_interval_ms)

    def stop(self, timeout: Optional[float] = None) -> bool:
        """
        Ask the worker to finish and wait for it. Returns True once the worker
        has exited, which implies the inhibitor has been released.
        """
        worker = self._worker
        self._stop_event.set()
        if worker is None:
            return True
        if timeout is None:
            timeout = self.poll_interval_ms / 1000.0 + 1.0
        worker.join(timeout)
        if worker.is_alive():
            self._logger.warning("Poll worker did not stop within {:.1f}s.", timeout)
            return False
        self._worker = None
        return True

    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                self.tick()
                # Interval is re-read every pass so menu changes apply live.
                self._stop_event.wait(self.poll_interval_ms / 1000.0)
        finally:
            self._release()

    # -- state machine -----------------------------------------------------

    def tick(self) -> ActivityState:
        try:
            currently_active = bool(self._signal.is_active())
        except Exception:
            self._logger.exception("Activity detection failed; treating this tick as inactive.")
            currently_active = False

        now = self._clock()
        if currently_active != self._active:
            self._active = currently_active
            snapshot = ActivitySnapshot(self.state, datetime.now(timezone.utc))
            self._logger.info(
                "Playback {}; keep-awake {}.",
                "detected" if currently_active else "stopped",
                "on" if currently_active else "off",
            )
            self._issue_directive(currently_active, now)
            self.status.publish(snapshot)
        elif self._retry_directive or self._reassert_due(now):
            self._issue_directive(self._active, now)
        return self.state

    def _reassert_due(self, now: float) -> bool:
        if not self._active or self._reassert_interval is None:
            return False
        if self._last_directive_at is None:
            return True
        return now - self._last_directive_at >= self._reassert_interval

    def _issue_directive(self, active: bool, now: float) -> None:
        self._last_directive_at = now
        try:
            applied = self._inhibitor.set_inhibited(active)
        except Exception:
            self._logger.exception("Keep-awake directive failed (active={}); retrying next tick.", active)
            applied = False
        self._retry_directive = not applied

    def _release(self) -> None:
        released = False
        for _ in range(_RELEASE_ATTEMPTS):
            try:
                released = self._inhibitor.set_inhibited(False)
            except Exception:
                self._logger.exception("Failed to release keep-awake directive on shutdown.")
                released = False
            if released:
                break
        if self._active:
            self._active = False
            self.status.publish(ActivitySnapshot(ActivityState.INACTIVE, datetime.now(timezone.utc)))
        if released:
            self._logger.info("Activity polling stopped; keep-awake released.")
        else:
            self._logger.error("Activity polling stopped but keep-awake could not be released.")

