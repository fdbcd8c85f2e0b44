"""Config management for UniTorrent.

Goals:
- Store config in the app data directory (see app_paths).
- Keep backend connection profiles and the polling settings in one JSON file.
- Back-fill missing keys from defaults so older files keep loading.
"""

from __future__ import annotations

import json
import os
import uuid
from typing import Any, Dict, Optional

from loguru import logger

from app_paths import get_config_path
from polling import DEFAULT_POLLING


def _read_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: str, data: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=4)


CONFIG_FILE = get_config_path()

PROFILE_KEYS = ("name", "type", "url", "user", "password")

DEFAULT_CONFIG: Dict[str, Any] = {
    "default_profile": "",
    "profiles": {},  # uuid -> profile_dict
    "polling": DEFAULT_POLLING,
    "log_level": "INFO",
}


def _default_config() -> Dict[str, Any]:
    return {
        "default_profile": "",
        "profiles": {},
        "polling": dict(DEFAULT_POLLING),
        "log_level": DEFAULT_CONFIG["log_level"],
    }


class ConfigManager:
    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or CONFIG_FILE
        self.config: Dict[str, Any] = self.load_config()

    def _normalize(self, cfg: Any) -> Dict[str, Any]:
        if not isinstance(cfg, dict):
            return _default_config()

        polling = cfg.get("polling")
        if not isinstance(polling, dict):
            polling = {}
        for k, v in DEFAULT_POLLING.items():
            polling.setdefault(k, v)
        cfg["polling"] = polling

        profiles = cfg.get("profiles")
        if not isinstance(profiles, dict):
            cfg["profiles"] = {}

        cfg.setdefault("default_profile", "")
        cfg.setdefault("log_level", DEFAULT_CONFIG["log_level"])
        return cfg

    def load_config(self) -> Dict[str, Any]:
        if os.path.exists(self.path):
            try:
                return self._normalize(_read_json(self.path))
            except (OSError, ValueError) as e:
                logger.warning("Could not read config {}, using defaults: {}", self.path, e)
                return _default_config()

        # First run: create a default config.
        cfg = _default_config()
        try:
            _write_json(self.path, cfg)
        except OSError as e:
            logger.warning("Could not write default config {}: {}", self.path, e)
        return cfg

    def save_config(self) -> None:
        _write_json(self.path, self.config)

    # ------------------------------------------------------------ polling

    def get_polling_settings(self) -> Dict[str, Any]:
        settings = dict(DEFAULT_POLLING)
        settings.update(self.config.get("polling", {}))
        return settings

    def set_polling_settings(self, settings: Dict[str, Any]) -> None:
        unknown = set(settings) - set(DEFAULT_POLLING)
        if unknown:
            raise ValueError(f"unknown polling settings: {', '.join(sorted(unknown))}")
        self.config.setdefault("polling", {}).update(settings)
        self.save_config()

    def get_log_level(self) -> str:
        return str(self.config.get("log_level") or DEFAULT_CONFIG["log_level"])

    # ----------------------------------------------------------- profiles

    def get_profiles(self) -> Dict[str, Any]:
        profiles = self.config.get("profiles", {})
        return profiles if isinstance(profiles, dict) else {}

    def add_profile(self, name: str, client_type: str, url: str, user: str, password: str, **extra: Any) -> str:
        pid = str(uuid.uuid4())
        profile = dict(zip(PROFILE_KEYS, (name, client_type, url, user, password)), **extra)
        self.config.setdefault("profiles", {})[pid] = profile
        self.save_config()
        return pid

    def update_profile(self, pid: str, name: str, client_type: str, url: str, user: str, password: str, **extra: Any) -> None:
        profile = self.get_profiles().get(pid)
        if profile is None:
            logger.warning("Profile {} does not exist, nothing updated", pid)
            return
        profile.update(zip(PROFILE_KEYS, (name, client_type, url, user, password)))
        profile.update(extra)
        self.save_config()

    def delete_profile(self, pid: str) -> None:
        if pid in self.get_profiles():
            del self.config["profiles"][pid]
            if self.config.get("default_profile") == pid:
                self.config["default_profile"] = ""
            self.save_config()

    def get_default_profile_id(self) -> str:
        return str(self.config.get("default_profile", ""))

    def set_default_profile_id(self, pid: str) -> None:
        self.config["default_profile"] = pid
        self.save_config()

    def get_profile(self, pid: str):
        return self.get_profiles().get(pid)
