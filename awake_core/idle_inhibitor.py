"""
Keep-awake directive using Win32 SetThreadExecutionState.
"""

from __future__ import annotations

import ctypes
import sys
from typing import Callable, Optional

from awake_core import logger as app_logger

_LOGGER = app_logger.get_logger()

ES_SYSTEM_REQUIRED = 0x00000001
ES_DISPLAY_REQUIRED = 0x00000002
ES_CONTINUOUS = 0x80000000

INHIBIT_FLAGS = ES_CONTINUOUS | ES_SYSTEM_REQUIRED | ES_DISPLAY_REQUIRED
RELEASE_FLAGS = ES_CONTINUOUS


class IdleInhibitor:
    """
    Asserts or releases the "keep display on / keep system awake" request.

    The execution state belongs to the calling thread, so the same thread
    must issue both the inhibit and the release; the poll worker does both.
    ``ES_CONTINUOUS`` is part of every call so the request replaces the
    previous state rather than resetting the idle timer once.
    """

    def __init__(self, *, set_execution_state: Optional[Callable[[int], int]] = None) -> None:
        if set_execution_state is None:
            set_execution_state = _resolve_set_execution_state()
        self._set_execution_state = set_execution_state
        self.last_flags: Optional[int] = None

    @property
    def available(self) -> bool:
        return self._set_execution_state is not None

    def set_inhibited(self, active: bool) -> bool:
        """
        Issue the directive. Returns False when the OS rejected or failed the
        call so the caller can try again; a host without the API counts as
        applied since there is nothing to retry.
        """
        flags = INHIBIT_FLAGS if active else RELEASE_FLAGS
        if self._set_execution_state is None:
            _LOGGER.debug("Execution state API unavailable; ignoring directive active={}.", active)
            return True
        try:
            previous = self._set_execution_state(flags)
        except OSError as exc:
            _LOGGER.warning("SetThreadExecutionState(0x{:08X}) raised: {}", flags, exc)
            return False
        if not previous:
            _LOGGER.warning("SetThreadExecutionState(0x{:08X}) was rejected by the OS.", flags)
            return False
        self.last_flags = flags
        return True


def _resolve_set_execution_state() -> Optional[Callable[[int], int]]:
    if sys.platform != "win32":
        return None
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)  # type: ignore[attr-defined]
    func = kernel32.SetThreadExecutionState
    func.argtypes = [ctypes.c_uint32]
    func.restype = ctypes.c_uint32
    return func
