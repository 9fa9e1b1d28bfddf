"""
Self-repairing "start with Windows" registration in the per-user Run key.

The Run value holds one composite string, ``"<path>"|<version>|<ticks>``.
Older releases wrote a bare quoted path; that layout is migrated here and
nowhere else.
"""

from __future__ import annotations

import os
import shutil
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Sequence

from awake_core import logger as app_logger
from awake_core.metadata import APP_VERSION

try:
    import winreg
except ModuleNotFoundError:  # pragma: no cover - non-Windows environments
    winreg = None

_LOGGER = app_logger.get_logger()

RUN_SUBKEY = r"Software\Microsoft\Windows\CurrentVersion\Run"
ARCHIVE_SUBKEY = r"Software\SpotifyKeepAwake\AutostartArchive"
VALUE_NAME = "SpotifyKeepAwake"
# Value names earlier builds registered under; any Run value starting with
# one of these (other than VALUE_NAME itself) is a duplicate.
LEGACY_NAME_PREFIXES = (VALUE_NAME, "SpotifyPreventLock")
# Installed by the gui-scripts entry in pyproject.toml.
LAUNCHER_NAME = "spotify-keep-awake"

_SEPARATOR = "|"
_DOTNET_EPOCH = datetime(1, 1, 1, tzinfo=timezone.utc)


class AutostartFormatError(ValueError):
    """Raised when a Run value cannot be decoded as an autostart record."""


class ReconcileOutcome(Enum):
    NOT_REGISTERED = "NotRegistered"
    VALID = "Valid"
    MIGRATED = "Migrated"
    REFRESHED = "Refreshed"
    ARCHIVED = "Archived"
    FAILED = "Failed"


@dataclass(frozen=True)
class AutostartResult:
    ok: bool
    message: str = ""


@dataclass(frozen=True)
class AutostartRecord:
    executable_path: str
    app_version: str
    registered_at_ticks: int
    legacy: bool = False

    def serialize(self) -> str:
        return _SEPARATOR.join(
            (f'"{self.executable_path}"', self.app_version, str(self.registered_at_ticks))
        )

    @classmethod
    def parse(cls, raw: str) -> "AutostartRecord":
        value = (raw or "").strip()
        if not value:
            raise AutostartFormatError("Autostart value is empty.")
        if _SEPARATOR not in value:
            return cls(executable_path=_unquote(value), app_version="", registered_at_ticks=0, legacy=True)

        parts = value.split(_SEPARATOR)
        if len(parts) != 3:
            raise AutostartFormatError(f"Expected 3 fields in autostart value, found {len(parts)}.")
        path, version, ticks = (part.strip() for part in parts)
        if not path or not version:
            raise AutostartFormatError("Autostart value has an empty path or version.")
        try:
            ticks_value = int(ticks)
        except ValueError as exc:
            raise AutostartFormatError(f"Autostart timestamp '{ticks}' is not an integer.") from exc
        return cls(executable_path=_unquote(path), app_version=version, registered_at_ticks=ticks_value)

    @property
    def registered_at(self) -> datetime:
        return _DOTNET_EPOCH + timedelta(microseconds=self.registered_at_ticks // 10)


class AutostartRegistrar:
    """Reads, writes and repairs the canonical autostart value."""

    def __init__(
        self,
        *,
        app_version: str = APP_VERSION,
        executable_path: Optional[str] = None,
        hive: Optional[int] = None,
        winreg_module=winreg,
        path_exists: Callable[[str], bool] = os.path.isfile,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        legacy_prefixes: Sequence[str] = LEGACY_NAME_PREFIXES,
    ) -> None:
        self._winreg = winreg_module
        self.hive = hive if hive is not None else getattr(winreg_module, "HKEY_CURRENT_USER", None)
        self.app_version = app_version
        self.executable_path = executable_path or current_executable()
        self._path_exists = path_exists
        self._clock = clock
        self._legacy_prefixes = tuple(prefix.casefold() for prefix in legacy_prefixes)

    # -- queries -----------------------------------------------------------

    def read_raw(self) -> Optional[str]:
        if self._winreg is None:
            return None
        try:
            with self._open_key(RUN_SUBKEY, writable=False) as key:
                value, _ = self._winreg.QueryValueEx(key, VALUE_NAME)
        except OSError:
            return None
        return value if isinstance(value, str) else None

    def read_record(self) -> Optional[AutostartRecord]:
        raw = self.read_raw()
        if raw is None:
            return None
        try:
            return AutostartRecord.parse(raw)
        except AutostartFormatError:
            return None

    def is_valid(self, record: AutostartRecord) -> bool:
        return (
            not record.legacy
            and self._path_exists(record.executable_path)
            and _same_path(record.executable_path, self.executable_path)
            and record.app_version == self.app_version
        )

    def is_registered(self) -> bool:
        record = self.read_record()
        return record is not None and self.is_valid(record)

    # -- user actions ------------------------------------------------------

    def register(self) -> AutostartResult:
        """Write (or refresh) the canonical value for the running executable."""
        if self._winreg is None:
            return AutostartResult(False, "Autostart is only supported on Windows.")
        try:
            record = self._write_current()
        except OSError as exc:
            _LOGGER.error("Failed to register autostart: {}", exc)
            return AutostartResult(False, f"Could not write the autostart entry: {exc}")
        _LOGGER.info("Autostart registered for {} (v{}).", record.executable_path, record.app_version)
        return AutostartResult(True)

    def unregister(self) -> AutostartResult:
        if self._winreg is None:
            return AutostartResult(True)
        try:
            with self._open_key(RUN_SUBKEY, writable=True) as key:
                self._winreg.DeleteValue(key, VALUE_NAME)
        except FileNotFoundError:
            return AutostartResult(True)
        except OSError as exc:
            _LOGGER.error("Failed to remove autostart entry: {}", exc)
            return AutostartResult(False, f"Could not remove the autostart entry: {exc}")
        _LOGGER.info("Autostart entry removed.")
        return AutostartResult(True)

    # -- startup repair ----------------------------------------------------

    def reconcile_on_startup(self) -> ReconcileOutcome:
        """
        Validate the Run value against the running executable and repair it.

        Legacy values are migrated, version drift is refreshed in place, and
        values pointing anywhere other than this executable are moved to the
        archive key so the Run key never references a dead or foreign path.
        Duplicate values from older builds are always purged. Never raises.
        """
        if self._winreg is None:
            return ReconcileOutcome.NOT_REGISTERED
        try:
            return self._reconcile()
        except OSError as exc:
            _LOGGER.error("Autostart reconciliation failed: {}", exc)
            return ReconcileOutcome.FAILED

    def _reconcile(self) -> ReconcileOutcome:
        self._purge_duplicates()

        raw = self.read_raw()
        if raw is None:
            return ReconcileOutcome.NOT_REGISTERED

        try:
            record = AutostartRecord.parse(raw)
        except AutostartFormatError as exc:
            _LOGGER.warning("Unreadable autostart value ({}); archiving it.", exc)
            self._archive_and_remove(raw)
            return ReconcileOutcome.ARCHIVED

        if record.legacy:
            _LOGGER.info("Migrating legacy autostart value for {}.", record.executable_path)
            self._write_current()
            return ReconcileOutcome.MIGRATED

        if not self._path_exists(record.executable_path) or not _same_path(
            record.executable_path, self.executable_path
        ):
            _LOGGER.warning(
                "Autostart points at {} but this executable is {}; archiving the stale entry.",
                record.executable_path,
                self.executable_path,
            )
            self._archive_and_remove(raw)
            return ReconcileOutcome.ARCHIVED

        if record.app_version != self.app_version:
            _LOGGER.info(
                "Refreshing autostart entry from v{} to v{}.", record.app_version, self.app_version
            )
            self._write_current()
            return ReconcileOutcome.REFRESHED

        return ReconcileOutcome.VALID

    def _write_current(self) -> AutostartRecord:
        record = AutostartRecord(
            executable_path=self.executable_path,
            app_version=self.app_version,
            registered_at_ticks=to_ticks(self._clock()),
        )
        with self._open_key(RUN_SUBKEY, writable=True) as key:
            self._winreg.SetValueEx(key, VALUE_NAME, 0, self._winreg.REG_SZ, record.serialize())
        return record

    def _archive_and_remove(self, raw: str) -> None:
        archive_name = f"{VALUE_NAME}_{to_ticks(self._clock())}"
        with self._open_key(ARCHIVE_SUBKEY, writable=True) as key:
            self._winreg.SetValueEx(key, archive_name, 0, self._winreg.REG_SZ, raw)
        with self._open_key(RUN_SUBKEY, writable=True) as key:
            try:
                self._winreg.DeleteValue(key, VALUE_NAME)
            except FileNotFoundError:
                pass

    def _purge_duplicates(self) -> List[str]:
        try:
            with self._open_key(RUN_SUBKEY, writable=False) as key:
                names = self._value_names(key)
        except FileNotFoundError:
            return []

        duplicates = [
            name
            for name in names
            if name != VALUE_NAME and name.casefold().startswith(self._legacy_prefixes)
        ]
        if not duplicates:
            return []
        with self._open_key(RUN_SUBKEY, writable=True) as key:
            for name in duplicates:
                try:
                    self._winreg.DeleteValue(key, name)
                except FileNotFoundError:
                    continue
                _LOGGER.info("Removed duplicate autostart value '{}'.", name)
        return duplicates

    def _value_names(self, key) -> List[str]:
        names: List[str] = []
        index = 0
        while True:
            try:
                name, _, _ = self._winreg.EnumValue(key, index)
            except OSError:
                return names
            names.append(name)
            index += 1

    @contextmanager
    def _open_key(self, subkey: str, *, writable: bool) -> Iterator:
        access = self._winreg.KEY_READ
        if writable:
            access |= self._winreg.KEY_WRITE

        try:
            key = self._winreg.OpenKey(self.hive, subkey, 0, access)
        except FileNotFoundError:
            if not writable:
                raise
            key = self._winreg.CreateKey(self.hive, subkey)
        try:
            yield key
        finally:
            self._winreg.CloseKey(key)


def current_executable() -> str:
    """
    Path that autostart should launch: the frozen exe, else the installed
    gui-script launcher, else the entry script of a source checkout.
    """
    if getattr(sys, "frozen", False):
        return os.path.abspath(sys.executable)

    interpreter_dir = Path(sys.executable).parent
    launcher_file = LAUNCHER_NAME + (".exe" if os.name == "nt" else "")
    for candidate in (interpreter_dir / launcher_file, interpreter_dir / "Scripts" / launcher_file):
        if candidate.is_file():
            return os.path.abspath(candidate)
    found = shutil.which(LAUNCHER_NAME)
    if found:
        return os.path.abspath(found)

    _LOGGER.warning("Launcher {} not found; autostart will use {}.", LAUNCHER_NAME, sys.argv[0])
    return os.path.abspath(sys.argv[0] or sys.executable)


def to_ticks(moment: datetime) -> int:
    """100-ns intervals since 0001-01-01 UTC, the timestamp unit the value has always used."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _DOTNET_EPOCH
    return (delta.days * 86_400 + delta.seconds) * 10_000_000 + delta.microseconds * 10


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _same_path(left: str, right: str) -> bool:
    return os.path.normpath(left).casefold() == os.path.normpath(right).casefold()
