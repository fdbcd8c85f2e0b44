"""Incremental merge of snapshot/diff payloads into one cached view.

The rule everything here exists for: a key present in the payload overwrites the
cached value (even with 0, False or ""), a key absent from the payload leaves the
cached value alone.

Payloads use canonical keys produced by the adapters::

    {
        "torrents": {id: {"name": ..., "dlspeed": ..., ...}},
        "torrents_removed": [id, ...],
        "categories": {name: {"save_path": ...}},      # authoritative
        "categories_changed": {name: {...}},            # incremental upsert
        "categories_removed": [name, ...],
        "tags": [tag, ...],                             # authoritative
        "tags_added": [tag, ...],
        "tags_removed": [tag, ...],
        "server_state": {"dl_info_speed": ..., ...},
    }

apply() is not reentrant; the owning adapter serializes calls.
"""

from __future__ import annotations

from dataclasses import fields
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from backend_errors import ValidationError
from normalizer import (
    clamp_progress,
    has_key,
    pick_best_available,
    resolve_eta,
    resolve_swarm_count,
    safe_bool,
    safe_num,
    split_tags,
    warn_once,
)
from torrent_models import (
    Category,
    ServerState,
    SyncSnapshot,
    TorrentState,
    UnifiedTorrent,
)

SNAPSHOT = "snapshot"
DIFF = "diff"
MODES = (SNAPSHOT, DIFF)

_MAPPING_SECTIONS = ("torrents", "categories", "categories_changed", "server_state")
_LIST_SECTIONS = ("torrents_removed", "categories_removed", "tags", "tags_added", "tags_removed")

# canonical torrent field -> coercion kind
TORRENT_FIELDS = {
    "name": "str",
    "state": "state",
    "progress": "progress",
    "size": "count",
    "dlspeed": "count",
    "upspeed": "count",
    "eta": "eta",
    "ratio": "ratio",
    "added_time": "count",
    "save_path": "str",
    "category": "category",
    "tags": "tags",
    "connected_seeds": "swarm",
    "connected_peers": "swarm",
    "total_seeds": "swarm",
    "total_peers": "swarm",
}
LEGACY_SWARM_FIELDS = ("num_seeds", "num_peers")

SERVER_STATE_FIELDS = {
    "dl_info_speed": "count",
    "up_info_speed": "count",
    "dl_rate_limit": "count",
    "up_rate_limit": "count",
    "connection_status": "connection",
    "peers": "count",
    "free_space_on_disk": "count",
    "use_alt_speed": "bool",
    "alt_dl_limit": "count",
    "alt_up_limit": "count",
    "backend_name": "str",
    "backend_version": "str",
    "api_version": "str",
}
CONNECTION_STATUSES = ("connected", "firewalled", "disconnected")

_MISSING = object()


def _coerce(kind: str, raw: Any, fallback: Any, warn_key: str) -> Any:
    """Coerce one raw value. Malformed values become ``fallback`` (logged once)."""
    if kind == "str":
        if isinstance(raw, str):
            return raw
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return str(raw)
    elif kind == "category":
        if raw is None or raw == "":
            return None
        if isinstance(raw, str):
            return raw
    elif kind == "tags":
        tags = split_tags(raw)
        if tags is not None:
            return tuple(tags)
    elif kind == "state":
        if isinstance(raw, TorrentState):
            return raw
        try:
            return TorrentState(raw)
        except ValueError:
            warn_once(warn_key + ":" + str(raw), "Unknown torrent state {!r}, treating as error", raw)
            return TorrentState.ERROR
    elif kind == "progress":
        value = safe_num(raw, None)
        if value is not None:
            return clamp_progress(value)
    elif kind == "count":
        value = safe_num(raw, None)
        if value is not None:
            return max(0, int(value))
    elif kind == "ratio":
        value = safe_num(raw, None)
        if value is not None:
            return max(0.0, float(value))
    elif kind == "eta":
        value = resolve_eta(raw)
        if value is not None:
            return value
    elif kind == "swarm":
        # -1 and other negatives are "unknown", which is a legitimate value here.
        if raw is None or safe_num(raw, None) is not None:
            return resolve_swarm_count(raw)
    elif kind == "bool":
        return safe_bool(raw)
    elif kind == "connection":
        if isinstance(raw, str) and raw in CONNECTION_STATUSES:
            return raw
        if isinstance(raw, str):
            return "disconnected"
    else:
        raise ValueError(f"unknown field kind: {kind}")

    warn_once(warn_key, "Malformed value for {}: {!r}, keeping fallback", warn_key, raw)
    return fallback


def _record_values(record: Any) -> Dict[str, Any]:
    return {f.name: getattr(record, f.name) for f in fields(record)}


class MergeEngine:
    """Authoritative cache of torrents, categories, tags and server state."""

    def __init__(self, preserve_missing_sections: bool = True) -> None:
        # Some backend builds send full_update without categories/tags. Keeping the
        # cached section avoids the list flashing empty for one cycle.
        self.preserve_missing_sections = preserve_missing_sections
        self._torrents: Dict[str, UnifiedTorrent] = {}
        self._legacy_swarm: Dict[str, Tuple[Optional[int], Optional[int]]] = {}
        self._categories: Dict[str, Category] = {}
        self._tags: List[str] = []
        self._server_state = ServerState()

    # ------------------------------------------------------------------ reads

    def get_torrent(self, torrent_id: str) -> Optional[UnifiedTorrent]:
        return self._torrents.get(torrent_id)

    def __contains__(self, torrent_id: object) -> bool:
        return torrent_id in self._torrents

    @property
    def server_state(self) -> ServerState:
        return self._server_state

    def snapshot(self) -> SyncSnapshot:
        return SyncSnapshot(
            torrents=MappingProxyType(dict(self._torrents)),
            categories=MappingProxyType(dict(self._categories)),
            tags=tuple(self._tags),
            server_state=self._server_state,
        )

    def clear(self) -> None:
        self._torrents = {}
        self._legacy_swarm = {}
        self._categories = {}
        self._tags = []
        self._server_state = ServerState()

    # ------------------------------------------------------------------ apply

    def apply(self, payload: Any, mode: str = DIFF) -> SyncSnapshot:
        if mode not in MODES:
            raise ValueError(f"mode must be one of {MODES}, got {mode!r}")
        sections = self._validate(payload)

        self._merge_torrents(sections, mode)
        self._merge_categories(sections, mode)
        self._merge_tags(sections, mode)
        self._merge_server_state(sections, mode)
        return self.snapshot()

    def _validate(self, payload: Any) -> Dict[str, Any]:
        """Check container types up front so a bad payload mutates nothing."""
        if not isinstance(payload, Mapping):
            raise ValidationError(f"sync payload must be an object, got {type(payload).__name__}")
        sections = {}
        for key in _MAPPING_SECTIONS + _LIST_SECTIONS:
            if not has_key(payload, key):
                continue
            value = payload[key]
            if value is None:
                warn_once("section-null:" + key, "Section {} is null, treating as absent", key)
                continue
            if key in _MAPPING_SECTIONS and not isinstance(value, Mapping):
                raise ValidationError(f"section {key!r} must be an object, got {type(value).__name__}")
            if key in _LIST_SECTIONS and not isinstance(value, (list, tuple)):
                raise ValidationError(f"section {key!r} must be an array, got {type(value).__name__}")
            sections[key] = value
        return sections

    def _merge_torrents(self, sections: Dict[str, Any], mode: str) -> None:
        incoming = sections.get("torrents", _MISSING)
        if mode == SNAPSHOT and incoming is not _MISSING:
            rebuilt = {}
            for torrent_id, patch in incoming.items():
                torrent_id = str(torrent_id)
                merged = self._merge_torrent(torrent_id, patch)
                if merged is not None:
                    rebuilt[torrent_id] = merged
            dropped = set(self._torrents) - set(rebuilt)
            for torrent_id in dropped:
                self._legacy_swarm.pop(torrent_id, None)
            self._torrents = rebuilt
        elif mode == SNAPSHOT and not self.preserve_missing_sections:
            self._torrents = {}
            self._legacy_swarm = {}
        elif incoming is not _MISSING:
            for torrent_id, patch in incoming.items():
                torrent_id = str(torrent_id)
                merged = self._merge_torrent(torrent_id, patch)
                if merged is not None:
                    self._torrents[torrent_id] = merged

        removed = sections.get("torrents_removed", ())
        for torrent_id in removed:
            self._torrents.pop(str(torrent_id), None)
            self._legacy_swarm.pop(str(torrent_id), None)
        if removed:
            logger.debug("Removed {} torrent(s) from cache", len(removed))

    def _merge_torrent(self, torrent_id: str, patch: Any) -> Optional[UnifiedTorrent]:
        existing = self._torrents.get(torrent_id)
        if not isinstance(patch, Mapping):
            warn_once("torrent-entry", "Torrent entry {} is not an object, skipped", torrent_id)
            return existing

        values = _record_values(existing) if existing is not None else _record_values(UnifiedTorrent(id=torrent_id))
        defaults = UnifiedTorrent(id=torrent_id)
        for name, kind in TORRENT_FIELDS.items():
            if not has_key(patch, name):
                continue
            fallback = values[name] if existing is not None else getattr(defaults, name)
            values[name] = _coerce(kind, patch[name], fallback, "torrent." + name)

        legacy = list(self._legacy_swarm.get(torrent_id, (None, None)))
        for i, name in enumerate(LEGACY_SWARM_FIELDS):
            if has_key(patch, name):
                legacy[i] = _coerce("swarm", patch[name], legacy[i], "torrent." + name)
        legacy_seeds, legacy_peers = legacy
        if legacy_seeds is not None or legacy_peers is not None:
            self._legacy_swarm[torrent_id] = (legacy_seeds, legacy_peers)

        values["num_seeds"] = pick_best_available(values["total_seeds"], values["connected_seeds"], legacy_seeds)
        values["num_peers"] = pick_best_available(values["total_peers"], values["connected_peers"], legacy_peers)
        values["id"] = torrent_id
        return UnifiedTorrent(**values)

    def _merge_categories(self, sections: Dict[str, Any], mode: str) -> None:
        if "categories" in sections:
            rebuilt = {}
            for name, entry in sections["categories"].items():
                rebuilt[str(name)] = self._merge_category(str(name), entry)
            self._categories = rebuilt
        elif mode == SNAPSHOT and not self.preserve_missing_sections:
            self._categories = {}

        for name, entry in sections.get("categories_changed", {}).items():
            self._categories[str(name)] = self._merge_category(str(name), entry)
        for name in sections.get("categories_removed", ()):
            self._categories.pop(str(name), None)

    def _merge_category(self, name: str, entry: Any) -> Category:
        existing = self._categories.get(name)
        save_path = existing.save_path if existing is not None else ""
        if isinstance(entry, Mapping):
            if has_key(entry, "save_path"):
                save_path = _coerce("str", entry["save_path"], save_path, "category.save_path")
        elif entry is not None:
            warn_once("category-entry", "Category entry {} is not an object", name)
        return Category(name=name, save_path=save_path)

    def _merge_tags(self, sections: Dict[str, Any], mode: str) -> None:
        if "tags" in sections:
            self._tags = split_tags(list(sections["tags"])) or []
        elif mode == SNAPSHOT and not self.preserve_missing_sections:
            self._tags = []

        for tag in split_tags(list(sections.get("tags_added", ()))) or []:
            if tag not in self._tags:
                self._tags.append(tag)
        removed = set(split_tags(list(sections.get("tags_removed", ()))) or [])
        if removed:
            self._tags = [t for t in self._tags if t not in removed]

    def _merge_server_state(self, sections: Dict[str, Any], mode: str) -> None:
        raw = sections.get("server_state", _MISSING)
        if raw is _MISSING:
            if mode == SNAPSHOT and not self.preserve_missing_sections:
                self._server_state = ServerState()
            return

        values = _record_values(self._server_state)
        for name, kind in SERVER_STATE_FIELDS.items():
            if has_key(raw, name):
                values[name] = _coerce(kind, raw[name], values[name], "server_state." + name)
        merged = ServerState(**values)
        if (merged.dl_rate_limit, merged.up_rate_limit) != (self._server_state.dl_rate_limit, self._server_state.up_rate_limit):
            logger.debug("Rate limits updated: dl={} up={}", merged.dl_rate_limit, merged.up_rate_limit)
        self._server_state = merged
