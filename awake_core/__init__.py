"""
Core runtime for Spotify Keep Awake: playback detection, the keep-awake
poll loop, settings persistence and autostart repair.
"""

from .metadata import APP_NAME, APP_VERSION  # noqa: F401
from .status import ActivitySnapshot, ActivityState, StatusCell  # noqa: F401
from .settings import Settings, SettingsStore  # noqa: F401
from .idle_inhibitor import IdleInhibitor  # noqa: F401
from .activity_signal import build_activity_signal  # noqa: F401
from .autostart import AutostartRegistrar  # noqa: F401
from .controller import StateController  # noqa: F401
