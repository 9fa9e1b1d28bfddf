"""
Activity state published by the poll worker and drained by the UI thread.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class ActivityState(Enum):
    INACTIVE = "Inactive"
    ACTIVE = "Active"

    @classmethod
    def from_bool(cls, active: bool) -> "ActivityState":
        return cls.ACTIVE if active else cls.INACTIVE

    @property
    def is_active(self) -> bool:
        return self is ActivityState.ACTIVE


@dataclass(frozen=True)
class ActivitySnapshot:
    state: ActivityState
    last_transition_time: datetime

    @classmethod
    def initial(cls) -> "ActivitySnapshot":
        return cls(ActivityState.INACTIVE, datetime.now(timezone.utc))


class StatusCell:
    """
    Single-slot holder for the latest ActivitySnapshot.

    The worker overwrites the slot; readers never block the writer for longer
    than a field copy. A version counter lets the UI skip redraws when nothing
    changed since its last read.
    """

    def __init__(self, initial: Optional[ActivitySnapshot] = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = initial or ActivitySnapshot.initial()
        self._version = 0

    def publish(self, snapshot: ActivitySnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot
            self._version += 1

    def read(self) -> Tuple[int, ActivitySnapshot]:
        with self._lock:
            return self._version, self._snapshot

    def read_if_newer(self, seen_version: int) -> Optional[Tuple[int, ActivitySnapshot]]:
        """Return ``(version, snapshot)`` only if published after ``seen_version``."""
        with self._lock:
            if self._version <= seen_version:
                return None
            return self._version, self._snapshot
