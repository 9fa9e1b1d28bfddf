"""Pytest configuration and fixtures for the keep-awake tests."""

import os
import sys
import tempfile
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Keep logs and settings out of the real profile; must precede package imports.
os.environ.setdefault("SPOTIFY_KEEP_AWAKE_HOME", tempfile.mkdtemp(prefix="keep-awake-tests-"))

import pytest


class FakeWinreg:
    """In-memory stand-in for the ``winreg`` module, keyed by (hive, subkey)."""

    HKEY_CURRENT_USER = 0x80000001
    KEY_READ = 0x20019
    KEY_WRITE = 0x20006
    REG_SZ = 1

    def __init__(self) -> None:
        self.keys: dict = {}
        self.fail_writes = False

    def _handle(self, hive, subkey):
        return (hive, subkey.lower())

    def OpenKey(self, hive, subkey, reserved=0, access=KEY_READ):
        handle = self._handle(hive, subkey)
        if handle not in self.keys:
            raise FileNotFoundError(2, "The system cannot find the file specified")
        return handle

    def CreateKey(self, hive, subkey):
        handle = self._handle(hive, subkey)
        self.keys.setdefault(handle, {})
        return handle

    def CloseKey(self, key):
        return None

    def QueryValueEx(self, key, name):
        values = self.keys[key]
        if name not in values:
            raise FileNotFoundError(2, "The system cannot find the file specified")
        return values[name], self.REG_SZ

    def SetValueEx(self, key, name, reserved, value_type, value):
        if self.fail_writes:
            raise PermissionError(5, "Access is denied")
        self.keys[key][name] = value

    def DeleteValue(self, key, name):
        if self.fail_writes:
            raise PermissionError(5, "Access is denied")
        values = self.keys[key]
        if name not in values:
            raise FileNotFoundError(2, "The system cannot find the file specified")
        del values[name]

    def EnumValue(self, key, index):
        items = list(self.keys[key].items())
        if index >= len(items):
            raise OSError(259, "No more data is available")
        name, value = items[index]
        return name, value, self.REG_SZ

    # Test helpers
    def values(self, subkey: str) -> dict:
        return dict(self.keys.get(self._handle(self.HKEY_CURRENT_USER, subkey), {}))

    def seed(self, subkey: str, name: str, value: str) -> None:
        handle = self.CreateKey(self.HKEY_CURRENT_USER, subkey)
        self.keys[handle][name] = value


@pytest.fixture
def fake_winreg() -> FakeWinreg:
    return FakeWinreg()


@pytest.fixture
def settings_path(tmp_path) -> Path:
    return tmp_path / "Spotify Keep Awake" / "settings.json"


@pytest.fixture
def log_messages():
    """Messages logged through loguru while the test runs."""
    from loguru import logger

    messages = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{message}")
    yield messages
    logger.remove(handler_id)
