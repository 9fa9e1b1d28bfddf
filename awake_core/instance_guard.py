"""
Single-instance guard backed by a named Win32 mutex.

Two pollers would fight over the thread execution state, so a second
launch exits once it sees the mutex already exists.
"""

from __future__ import annotations

import ctypes
import sys
from typing import Callable, Optional

from awake_core import logger as app_logger

_LOGGER = app_logger.get_logger()

MUTEX_NAME = "Local\\SpotifyKeepAwakeMutex"
ERROR_ALREADY_EXISTS = 183


class SingleInstance:
    """
    Context manager owning the mutex for the lifetime of the process.

    ``acquired`` is False only when another instance holds the mutex. When
    the mutex cannot be created at all the launch proceeds unguarded and
    the failure is logged.
    """

    def __init__(
        self,
        name: str = MUTEX_NAME,
        *,
        kernel32=None,
        get_last_error: Optional[Callable[[], int]] = None,
        set_last_error: Optional[Callable[[int], int]] = None,
    ) -> None:
        if kernel32 is None and sys.platform == "win32":
            kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)  # type: ignore[attr-defined]
            get_last_error = get_last_error or ctypes.get_last_error  # type: ignore[attr-defined]
            set_last_error = set_last_error or ctypes.set_last_error  # type: ignore[attr-defined]
        self.name = name
        self._kernel32 = kernel32
        self._get_last_error = get_last_error or (lambda: 0)
        self._set_last_error = set_last_error or (lambda value: 0)
        self._handle = None
        self.acquired = False

    def acquire(self) -> bool:
        if self._kernel32 is None:
            self.acquired = True
            return True
        self._set_last_error(0)
        handle = self._kernel32.CreateMutexW(None, False, self.name)
        error = self._get_last_error()
        if not handle:
            _LOGGER.error(
                "CreateMutexW({}) failed with error {}; running without single-instance protection.",
                self.name,
                error,
            )
            self.acquired = True
            return True
        if error == ERROR_ALREADY_EXISTS:
            self._kernel32.CloseHandle(handle)
            self.acquired = False
            return False
        self._handle = handle
        self.acquired = True
        return True

    def release(self) -> None:
        if self._kernel32 is None or not self._handle:
            return
        self._kernel32.ReleaseMutex(self._handle)
        self._kernel32.CloseHandle(self._handle)
        self._handle = None

    def __enter__(self) -> "SingleInstance":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
