"""Where UniTorrent keeps its config file and logs.

Lookup order:
1. ``UNITORRENT_DATA_DIR`` when set (tests and containers use this).
2. A ``UniTorrent_Data`` folder next to the script/executable, but only if it
   already exists and is writable (portable installs create it on purpose).
3. The per-user data directory for the platform.
"""

from __future__ import annotations

import functools
import os
import sys
from pathlib import Path

APP_DIR_NAME = "UniTorrent"
PORTABLE_DATA_DIR_NAME = "UniTorrent_Data"
DATA_DIR_ENV = "UNITORRENT_DATA_DIR"
CONFIG_FILENAME = "config.json"
LOG_FILENAME = "unitorrent.log"


def _can_write(directory: Path) -> bool:
    marker = directory / ".write_test"
    try:
        marker.write_text("ok", encoding="utf-8")
        marker.unlink()
    except OSError:
        return False
    return True


def get_portable_base_dir() -> Path:
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def get_user_data_base_dir() -> Path:
    if sys.platform == "win32":
        for var in ("APPDATA", "LOCALAPPDATA"):
            if os.environ.get(var):
                return Path(os.environ[var])
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"

    xdg = os.environ.get("XDG_DATA_HOME")
    return Path(xdg) if xdg else Path.home() / ".local" / "share"


@functools.lru_cache(maxsize=None)
def get_data_dir() -> str:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return ensure_dir(override)

    portable = get_portable_base_dir() / PORTABLE_DATA_DIR_NAME
    if portable.is_dir() and _can_write(portable):
        return str(portable)

    return ensure_dir(get_user_data_base_dir() / APP_DIR_NAME)


def ensure_dir(path) -> str:
    Path(path).mkdir(parents=True, exist_ok=True)
    return str(path)


def get_config_path() -> str:
    return os.path.join(get_data_dir(), CONFIG_FILENAME)


def get_logs_dir() -> str:
    return ensure_dir(os.path.join(get_data_dir(), "logs"))


def get_log_path(filename: str = LOG_FILENAME) -> str:
    return os.path.join(get_logs_dir(), filename)
