"""Tests for the keep-awake state controller."""

import threading
import time

import pytest

from awake_core.controller import StateController
from awake_core.idle_inhibitor import ES_CONTINUOUS, INHIBIT_FLAGS, RELEASE_FLAGS, IdleInhibitor
from awake_core.settings import Settings, SettingsError
from awake_core.status import ActivityState


class ScriptedSignal:
    """Returns readings from a script, then repeats the last one."""

    def __init__(self, readings):
        self.readings = list(readings)
        self.calls = 0

    def is_active(self) -> bool:
        index = min(self.calls, len(self.readings) - 1)
        self.calls += 1
        value = self.readings[index]
        if isinstance(value, Exception):
            raise value
        return value


class RecordingInhibitor:
    def __init__(self, failures: int = 0) -> None:
        self.calls = []
        self.failures = failures
        self.lock = threading.Lock()

    def set_inhibited(self, active: bool) -> bool:
        with self.lock:
            self.calls.append(active)
            if self.failures:
                self.failures -= 1
                raise OSError("power request rejected")
            return True


class ScriptedExecutionState:
    """Stands in for SetThreadExecutionState; 0 means the OS rejected the call."""

    def __init__(self, results):
        self.results = list(results)
        self.flags = []

    def __call__(self, flags: int) -> int:
        self.flags.append(flags)
        if len(self.flags) <= len(self.results):
            return self.results[len(self.flags) - 1]
        return ES_CONTINUOUS


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _controller(readings, inhibitor=None, **kwargs):
    kwargs.setdefault("reassert_interval", None)
    return StateController(ScriptedSignal(readings), inhibitor or RecordingInhibitor(), **kwargs)


class TestTick:
    def test_initial_state_is_inactive(self):
        controller = _controller([False])
        assert controller.state is ActivityState.INACTIVE

    def test_only_transitions_issue_directives(self):
        inhibitor = RecordingInhibitor()
        controller = _controller([False, False, True, True, False], inhibitor)

        states = [controller.tick() for _ in range(5)]

        assert inhibitor.calls == [True, False]
        assert states == [
            ActivityState.INACTIVE,
            ActivityState.INACTIVE,
            ActivityState.ACTIVE,
            ActivityState.ACTIVE,
            ActivityState.INACTIVE,
        ]

    def test_directive_tracks_latest_reading(self):
        readings = [True, False, False, True, True, True, False, True]
        inhibitor = RecordingInhibitor()
        controller = _controller(readings, inhibitor)

        for reading in readings:
            controller.tick()
            assert controller.state.is_active is reading
            assert inhibitor.calls[-1] is reading

    def test_transitions_are_published(self):
        controller = _controller([True, True, False])

        controller.tick()
        version_after_start, snapshot = controller.status.read()
        assert snapshot.state is ActivityState.ACTIVE

        controller.tick()
        assert controller.status.read_if_newer(version_after_start) is None

        controller.tick()
        _, snapshot = controller.status.read()
        assert snapshot.state is ActivityState.INACTIVE

    def test_detection_error_counts_as_inactive(self):
        inhibitor = RecordingInhibitor()
        controller = _controller([True, RuntimeError("enumeration failed"), True], inhibitor)

        assert controller.tick() is ActivityState.ACTIVE
        assert controller.tick() is ActivityState.INACTIVE
        assert controller.tick() is ActivityState.ACTIVE
        assert inhibitor.calls == [True, False, True]

    def test_failed_directive_is_retried_next_tick(self):
        inhibitor = RecordingInhibitor(failures=1)
        controller = _controller([True, True, True], inhibitor)

        controller.tick()
        controller.tick()
        controller.tick()

        assert inhibitor.calls == [True, True]

    def test_active_state_is_reasserted_periodically(self):
        clock = FakeClock()
        inhibitor = RecordingInhibitor()
        controller = _controller([True], inhibitor, reassert_interval=30.0, clock=clock)

        controller.tick()
        clock.now = 10.0
        controller.tick()
        clock.now = 30.0
        controller.tick()
        clock.now = 45.0
        controller.tick()

        assert inhibitor.calls == [True, True]

    def test_inactive_state_is_not_reasserted(self):
        clock = FakeClock()
        inhibitor = RecordingInhibitor()
        controller = _controller([False], inhibitor, reassert_interval=1.0, clock=clock)

        for step in range(5):
            clock.now = float(step * 10)
            controller.tick()

        assert inhibitor.calls == []


class TestPollInterval:
    def test_uses_supplied_settings(self):
        controller = _controller([False], settings=Settings(poll_interval_ms=750))
        assert controller.poll_interval_ms == 750

    def test_set_poll_interval(self):
        controller = _controller([False])

        controller.set_poll_interval(5000)

        assert controller.poll_interval_ms == 5000
        assert controller.settings == Settings(poll_interval_ms=5000)

    def test_rejects_non_positive_interval(self):
        controller = _controller([False])
        with pytest.raises(SettingsError):
            controller.set_poll_interval(0)
        assert controller.poll_interval_ms == Settings().poll_interval_ms


class TestWorker:
    def _wait_for(self, predicate, timeout=2.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    def test_stop_releases_inhibitor(self):
        inhibitor = RecordingInhibitor()
        controller = _controller([True], inhibitor, settings=Settings(poll_interval_ms=20))

        controller.start()
        assert self._wait_for(lambda: controller.state is ActivityState.ACTIVE)
        assert controller.stop(timeout=2.0)

        assert inhibitor.calls[0] is True
        assert inhibitor.calls[-1] is False
        assert not controller.is_running
        _, snapshot = controller.status.read()
        assert snapshot.state is ActivityState.INACTIVE

    def test_stop_is_prompt_with_long_interval(self):
        controller = _controller([False], settings=Settings(poll_interval_ms=60_000))
        controller.start()

        started = time.monotonic()
        assert controller.stop(timeout=5.0)
        assert time.monotonic() - started < 5.0

    def test_loop_survives_faulty_readings(self):
        signal = ScriptedSignal([RuntimeError("boom"), RuntimeError("boom"), True])
        inhibitor = RecordingInhibitor()
        controller = StateController(
            signal, inhibitor, settings=Settings(poll_interval_ms=10), reassert_interval=None
        )

        controller.start()
        assert self._wait_for(lambda: controller.state is ActivityState.ACTIVE)
        controller.stop(timeout=2.0)

        assert signal.calls >= 3

    def test_release_runs_even_if_release_fails(self):
        inhibitor = RecordingInhibitor()
        controller = _controller([False], inhibitor, settings=Settings(poll_interval_ms=10))
        inhibitor.failures = 1

        controller.start()
        assert controller.stop(timeout=2.0)
        assert inhibitor.calls == [False, False]

    def test_start_is_idempotent(self):
        controller = _controller([False], settings=Settings(poll_interval_ms=10))
        controller.start()
        worker = controller._worker
        controller.start()

        assert controller._worker is worker
        controller.stop(timeout=2.0)

    def test_interval_change_applies_without_restart(self):
        signal = ScriptedSignal([False])
        controller = StateController(
            signal, RecordingInhibitor(), settings=Settings(poll_interval_ms=60_000), reassert_interval=None
        )
        controller.start()
        assert self._wait_for(lambda: signal.calls >= 1)

        controller.set_poll_interval(10)
        assert controller.poll_interval_ms == 10
        controller.stop(timeout=2.0)


class TestWithExecutionStateApi:
    """Controller driving the real IdleInhibitor over a scripted OS call."""

    def _controller(self, readings, api, **kwargs):
        kwargs.setdefault("reassert_interval", None)
        return StateController(
            ScriptedSignal(readings), IdleInhibitor(set_execution_state=api), **kwargs
        )

    def test_rejected_release_is_retried_next_tick(self):
        api = ScriptedExecutionState([1, 0, 1, 1])
        controller = self._controller([True, False, False, False], api)

        for _ in range(4):
            controller.tick()

        assert api.flags == [INHIBIT_FLAGS, RELEASE_FLAGS, RELEASE_FLAGS]

    def test_rejected_inhibit_is_retried_next_tick(self):
        api = ScriptedExecutionState([0, 1])
        controller = self._controller([True, True, True], api)

        for _ in range(3):
            controller.tick()

        assert api.flags == [INHIBIT_FLAGS, INHIBIT_FLAGS]

    def test_retries_until_the_os_accepts(self):
        api = ScriptedExecutionState([1, 0, 0, 0, 1])
        controller = self._controller([True, False], api)

        for _ in range(6):
            controller.tick()

        assert api.flags == [INHIBIT_FLAGS] + [RELEASE_FLAGS] * 4

    def test_shutdown_release_is_retried_when_rejected(self):
        api = ScriptedExecutionState([1, 0, 1])
        controller = self._controller([True], api, settings=Settings(poll_interval_ms=10))

        controller.start()
        deadline = time.monotonic() + 2.0
        while controller.state is not ActivityState.ACTIVE and time.monotonic() < deadline:
            time.sleep(0.01)
        assert controller.stop(timeout=2.0)

        assert api.flags == [INHIBIT_FLAGS, RELEASE_FLAGS, RELEASE_FLAGS]
