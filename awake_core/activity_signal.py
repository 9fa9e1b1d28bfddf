"""
Detection strategies answering "is the tracked application playing right now?".

Every strategy exposes ``is_active() -> bool`` and never raises: a failed
detection reads as "not playing" so the machine is allowed to sleep.
"""

from __future__ import annotations

import threading
from typing import Callable, Iterable, List, Optional, Protocol, Sequence

import psutil

from awake_core import logger as app_logger

try:
    import win32gui
    import win32process
except ModuleNotFoundError:  # pragma: no cover - non-Windows environments
    win32gui = None
    win32process = None

try:
    import comtypes
    from comtypes import CLSCTX_ALL
    from pycaw.pycaw import AudioUtilities, IAudioMeterInformation
except (ModuleNotFoundError, OSError):  # pragma: no cover - non-Windows environments
    comtypes = None
    CLSCTX_ALL = None
    AudioUtilities = None
    IAudioMeterInformation = None

_LOGGER = app_logger.get_logger()

DEFAULT_PROCESS_NAME = "Spotify.exe"
DEFAULT_PEAK_THRESHOLD = 0.0005
STRATEGIES = ("process", "window_title", "audio_peak")

# Top-level windows every GUI process owns that say nothing about playback.
_HELPER_WINDOW_TITLES = frozenset({"gdi+ window", "default ime", "msctfime ui"})


class ActivitySignal(Protocol):
    def is_active(self) -> bool:
        ...


class ProcessPresenceSignal:
    """Active while any process with the configured executable name exists."""

    def __init__(
        self,
        process_name: str = DEFAULT_PROCESS_NAME,
        *,
        process_iter: Optional[Callable[..., Iterable]] = None,
    ) -> None:
        self.process_name = process_name
        self._process_iter = process_iter or psutil.process_iter

    @property
    def bare_name(self) -> str:
        """Executable name without the ``.exe`` suffix, e.g. ``Spotify``."""
        name = self.process_name
        if name.lower().endswith(".exe"):
            return name[:-4]
        return name

    def matching_pids(self) -> List[int]:
        accepted = {self.process_name.casefold(), self.bare_name.casefold()}
        pids: List[int] = []
        for proc in self._process_iter(["pid", "name"]):
            info = getattr(proc, "info", None) or {}
            name = info.get("name") or ""
            if name.casefold() in accepted:
                pids.append(info.get("pid", getattr(proc, "pid", None)))
        return pids

    def is_active(self) -> bool:
        try:
            return bool(self.matching_pids())
        except (psutil.Error, OSError) as exc:
            _LOGGER.debug("Process enumeration failed: {}", exc)
            return False
        except Exception:  # pragma: no cover - defensive crash guard
            _LOGGER.exception("Unexpected error while enumerating processes.")
            return False


class WindowTitleSignal:
    """
    Active while a matching process owns a window whose title is something
    other than the bare application name.

    Spotify titles its main window "Spotify" (or "Spotify Premium") while
    idle and "Artist - Track" while a track plays, so a differing title is
    used as a "now playing" proxy. Any matching window suffices.
    """

    def __init__(
        self,
        processes: Optional[ProcessPresenceSignal] = None,
        *,
        window_titles: Optional[Callable[[Sequence[int]], List[str]]] = None,
        idle_titles: Iterable[str] = (),
    ) -> None:
        self.processes = processes or ProcessPresenceSignal()
        self._window_titles = window_titles or _enum_window_titles
        bare = self.processes.bare_name
        self._idle_titles = {bare.casefold()} | {
            title.casefold() for title in idle_titles
        } | {f"{bare} {tier}".casefold() for tier in ("Premium", "Free")}

    def is_playing_title(self, title: str) -> bool:
        normalized = (title or "").strip().casefold()
        if not normalized:
            return False
        if normalized in _HELPER_WINDOW_TITLES:
            return False
        return normalized not in self._idle_titles

    def is_active(self) -> bool:
        try:
            pids = self.processes.matching_pids()
            if not pids:
                return False
            titles = self._window_titles(pids)
        except (psutil.Error, OSError) as exc:
            _LOGGER.debug("Window title detection failed: {}", exc)
            return False
        except Exception:  # pragma: no cover - pywin32 raises pywintypes.error
            _LOGGER.exception("Unexpected error while reading window titles.")
            return False
        return any(self.is_playing_title(title) for title in titles)


class AudioPeakSignal:
    """
    Active while the tracked process runs and the default output device's
    peak meter is above ``threshold``. When the audio API is unavailable or
    fails, the process-presence answer is used instead.
    """

    def __init__(
        self,
        processes: Optional[ProcessPresenceSignal] = None,
        *,
        peak_meter: Optional[Callable[[], float]] = None,
        threshold: float = DEFAULT_PEAK_THRESHOLD,
    ) -> None:
        self.processes = processes or ProcessPresenceSignal()
        self.threshold = threshold
        if peak_meter is None and AudioUtilities is not None:
            peak_meter = _default_speaker_peak
        self._peak_meter = peak_meter
        self._fallback_logged = False

    def is_active(self) -> bool:
        running = self.processes.is_active()
        if not running:
            return False
        if self._peak_meter is None:
            self._log_fallback("audio meter API not available")
            return running
        try:
            peak = float(self._peak_meter())
        except Exception as exc:  # COM failures surface as comtypes/OSError types
            self._log_fallback(f"peak meter query failed: {exc}")
            return running
        return peak > self.threshold

    def _log_fallback(self, reason: str) -> None:
        if self._fallback_logged:
            return
        self._fallback_logged = True
        _LOGGER.warning("Falling back to process presence detection: {}", reason)


def build_activity_signal(
    strategy: str = "window_title",
    process_name: str = DEFAULT_PROCESS_NAME,
) -> ActivitySignal:
    """Construct the detection strategy named in configuration."""
    processes = ProcessPresenceSignal(process_name)
    if strategy == "process":
        return processes
    if strategy == "window_title":
        return WindowTitleSignal(processes)
    if strategy == "audio_peak":
        return AudioPeakSignal(processes)
    raise ValueError(f"Unknown detection strategy '{strategy}'. Expected one of {STRATEGIES}.")


def _enum_window_titles(pids: Sequence[int]) -> List[str]:
    if win32gui is None or win32process is None:
        return []
    wanted = set(pids)
    titles: List[str] = []

    def _collect(hwnd, _):
        if not win32gui.IsWindowVisible(hwnd):
            return True
        _, window_pid = win32process.GetWindowThreadProcessId(hwnd)
        if window_pid in wanted:
            titles.append(win32gui.GetWindowText(hwnd))
        return True

    win32gui.EnumWindows(_collect, None)
    return titles


_com_state = threading.local()


def _default_speaker_peak() -> float:
    # COM must be initialised on every thread that touches it; the poll
    # worker is not the thread comtypes initialised at import.
    if not getattr(_com_state, "initialised", False):
        comtypes.CoInitialize()
        _com_state.initialised = True
    speakers = _speaker_endpoint(AudioUtilities.GetSpeakers())
    interface = speakers.Activate(IAudioMeterInformation._iid_, CLSCTX_ALL, None)
    meter = interface.QueryInterface(IAudioMeterInformation)
    return meter.GetPeakValue()


def _speaker_endpoint(device):
    """
    Older pycaw returns the raw IMMDevice from GetSpeakers(); newer releases
    wrap it in an AudioDevice that keeps the COM pointer in ``_dev``.
    """
    if hasattr(device, "Activate"):
        return device
    inner = getattr(device, "_dev", None)
    if inner is not None and hasattr(inner, "Activate"):
        return inner
    raise TypeError(f"Unsupported speaker device object {type(device).__name__}.")
