"""
Application identity, read from the installed distribution.
"""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

APP_NAME = "Spotify Keep Awake"
DISTRIBUTION_NAME = "spotify-keep-awake"

try:
    APP_VERSION = version(DISTRIBUTION_NAME)
except PackageNotFoundError:  # running from a source checkout
    APP_VERSION = "0.0.0+source"
