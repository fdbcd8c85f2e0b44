import abc
import binascii
import json
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from loguru import logger

from backend_errors import (
    AuthError,
    BackendError,
    HTTPStatusError,
    ValidationError,
    is_endpoint_unavailable,
)
from detail_composer import DetailComposer
from merge_engine import DIFF, SNAPSHOT, MergeEngine
from normalizer import (
    clamp_progress,
    has_key,
    pick,
    resolve_swarm_count,
    safe_bool,
    safe_num,
    split_tags,
    warn_once,
)
from torrent_models import (
    ENCRYPTION_MODES,
    PREFERENCE_FIELDS,
    BackendPreferences,
    Category,
    Peer,
    SyncSnapshot,
    TorrentFile,
    TorrentState,
    Tracker,
    TransferSettings,
)

TRANSFER_SETTING_KEYS = ("download_limit", "upload_limit", "alt_enabled", "alt_download_limit", "alt_upload_limit")
TAG_MODES = ("set", "add", "remove")
FILE_PRIORITIES = ("do_not_download", "low", "normal", "high")
PREFERENCE_STR_FIELDS = frozenset(("save_path", "incomplete_dir", "encryption"))
PREFERENCE_INT_FIELDS = frozenset((
    "max_connections",
    "max_connections_per_torrent",
    "queue_download_max",
    "queue_seed_max",
    "queue_stalled_minutes",
    "listen_port",
    "seeding_time_limit",
))


def coerce_preference(name, raw):
    """Backend value -> BackendPreferences field value, None when unusable."""
    if raw is None:
        return None
    if name in PREFERENCE_STR_FIELDS:
        return str(raw)
    if name in PREFERENCE_INT_FIELDS:
        value = safe_num(raw, None)
        return int(value) if value is not None else None
    if name == "share_ratio_limit":
        value = safe_num(raw, None)
        return float(value) if value is not None else None
    return safe_bool(raw)


class BaseAdapter(abc.ABC):
    """Uniform contract over one backend family.

    The adapter owns exactly one MergeEngine (the sync cache). ``fetch_list`` is
    serialized with a lock; everything else is stateless request plumbing.
    Actions return True/False per call. AuthError always propagates.
    """

    backend_name = "base"

    def __init__(self, transport, preserve_missing_sections: bool = True):
        self.transport = transport
        self.engine = MergeEngine(preserve_missing_sections=preserve_missing_sections)
        self._sync_lock = threading.Lock()
        self.detail_composer = DetailComposer(
            self._fetch_detail_primary,
            self._detail_sources(),
            cache_lookup=self.engine.get_torrent,
        )

    # ---------------------------------------------------------------- sync

    def fetch_list(self) -> SyncSnapshot:
        with self._sync_lock:
            payload, mode = self._fetch_sync_payload()
            return self.engine.apply(payload, mode)

    def snapshot(self) -> SyncSnapshot:
        return self.engine.snapshot()

    @abc.abstractmethod
    def _fetch_sync_payload(self):
        """Return ``(canonical_payload, mode)`` for one reconciliation cycle."""

    # -------------------------------------------------------------- detail

    def fetch_detail(self, torrent_id):
        return self.detail_composer.compose(torrent_id)

    @abc.abstractmethod
    def _fetch_detail_primary(self, torrent_id) -> Optional[Dict[str, Any]]:
        pass

    @abc.abstractmethod
    def _detail_sources(self) -> Dict[str, Any]:
        pass

    # ------------------------------------------------------------- actions

    @abc.abstractmethod
    def pause(self, ids) -> bool:
        pass

    @abc.abstractmethod
    def resume(self, ids) -> bool:
        pass

    @abc.abstractmethod
    def delete(self, ids, delete_files=False) -> bool:
        pass

    @abc.abstractmethod
    def recheck(self, ids) -> bool:
        pass

    @abc.abstractmethod
    def reannounce(self, ids) -> bool:
        pass

    @abc.abstractmethod
    def set_force_start(self, ids, value=True) -> bool:
        pass

    def force_start(self, ids) -> bool:
        return self.set_force_start(ids, True)

    @abc.abstractmethod
    def add_torrent(self, urls=None, files=None, save_path=None, category=None, tags=None, paused=False) -> bool:
        pass

    @abc.abstractmethod
    def set_download_limit(self, ids, limit) -> bool:
        pass

    @abc.abstractmethod
    def set_upload_limit(self, ids, limit) -> bool:
        pass

    @abc.abstractmethod
    def set_location(self, ids, location) -> bool:
        pass

    @abc.abstractmethod
    def set_file_priority(self, torrent_id, file_ids, priority) -> bool:
        pass

    @abc.abstractmethod
    def rename_torrent(self, torrent_id, new_name) -> bool:
        pass

    @abc.abstractmethod
    def rename_file(self, torrent_id, old_path, new_path) -> bool:
        pass

    @abc.abstractmethod
    def rename_folder(self, torrent_id, old_path, new_path) -> bool:
        pass

    # ------------------------------------------------- transfer settings

    @abc.abstractmethod
    def get_transfer_settings(self) -> TransferSettings:
        pass

    @abc.abstractmethod
    def set_transfer_settings(self, patch) -> None:
        pass

    # ------------------------------------------------------- preferences

    @abc.abstractmethod
    def get_preferences(self) -> BackendPreferences:
        pass

    @abc.abstractmethod
    def set_preferences(self, patch) -> None:
        """Write the given BackendPreferences fields; fields not in ``patch`` are untouched."""

    # ------------------------------------------------- tags & categories

    @abc.abstractmethod
    def set_tags(self, ids, tags, mode="set") -> bool:
        pass

    def add_tags(self, ids, tags) -> bool:
        return self.set_tags(ids, tags, mode="add")

    def remove_tags(self, ids, tags) -> bool:
        return self.set_tags(ids, tags, mode="remove")

    @abc.abstractmethod
    def set_category(self, ids, category) -> bool:
        pass

    @abc.abstractmethod
    def get_categories(self) -> Dict[str, Category]:
        pass

    @abc.abstractmethod
    def create_category(self, name, save_path="") -> bool:
        pass

    @abc.abstractmethod
    def edit_category(self, name, save_path=None, new_name=None) -> bool:
        pass

    @abc.abstractmethod
    def set_category_save_path(self, category, save_path) -> bool:
        pass

    @abc.abstractmethod
    def delete_categories(self, names) -> bool:
        pass

    @abc.abstractmethod
    def get_tags(self) -> List[str]:
        pass

    @abc.abstractmethod
    def create_tags(self, tags) -> bool:
        pass

    @abc.abstractmethod
    def delete_tags(self, tags) -> bool:
        pass

    # ------------------------------------------------------------- helpers

    def _run_action(self, description, fn) -> bool:
        try:
            fn()
            return True
        except AuthError:
            raise
        except BackendError as e:
            logger.error("{} failed on {}: {}", description, self.backend_name, e)
            return False

    def _normalize_hashes(self, hs):
        if hs is None:
            return []
        if isinstance(hs, (str, bytes, bytearray, memoryview)):
            hs = [hs]
        out = []
        for h in hs:
            normalized = self._normalize_hash(h)
            if normalized and normalized not in out:
                out.append(normalized)
        return out

    def _normalize_hash(self, h):
        if h is None:
            return None
        if isinstance(h, (bytes, bytearray, memoryview)):
            raw = bytes(h)
            if len(raw) == 20:
                return binascii.hexlify(raw).decode("ascii")
            text = raw.decode("utf-8", "ignore").strip()
            if text and all(c in "0123456789abcdefABCDEF" for c in text) and len(text) in (40, 64):
                return text.lower()
            return text
        return str(h).strip()

    def _normalize_delete_files(self, delete_files):
        if isinstance(delete_files, bool):
            return delete_files
        return safe_bool(delete_files)

    @staticmethod
    def _check_transfer_patch(patch):
        if not isinstance(patch, Mapping):
            raise ValueError("transfer settings patch must be a mapping")
        unknown = set(patch) - set(TRANSFER_SETTING_KEYS)
        if unknown:
            raise ValueError(f"unknown transfer settings: {', '.join(sorted(unknown))}")

    @staticmethod
    def _check_preferences_patch(patch):
        if not isinstance(patch, Mapping):
            raise ValueError("preferences patch must be a mapping")
        unknown = set(patch) - set(PREFERENCE_FIELDS)
        if unknown:
            raise ValueError(f"unknown preferences: {', '.join(sorted(unknown))}")
        if patch.get("encryption") is not None and patch["encryption"] not in ENCRYPTION_MODES:
            raise ValueError(f"encryption must be one of {ENCRYPTION_MODES}, got {patch['encryption']!r}")

    @staticmethod
    def _check_file_priority(priority):
        if priority not in FILE_PRIORITIES:
            raise ValueError(f"file priority must be one of {FILE_PRIORITIES}, got {priority!r}")

    @staticmethod
    def _check_tag_mode(mode):
        if mode not in TAG_MODES:
            raise ValueError(f"tag mode must be one of {TAG_MODES}, got {mode!r}")


# ---------------------------------------------------------------------------
# qBittorrent
# ---------------------------------------------------------------------------

QBIT_STATE_MAP = {
    "downloading": TorrentState.DOWNLOADING,
    "stalledDL": TorrentState.DOWNLOADING,
    "metaDL": TorrentState.DOWNLOADING,
    "forcedDL": TorrentState.DOWNLOADING,
    "forcedMetaDL": TorrentState.DOWNLOADING,
    "uploading": TorrentState.SEEDING,
    "stalledUP": TorrentState.SEEDING,
    "forcedUP": TorrentState.SEEDING,
    "pausedDL": TorrentState.PAUSED,
    "pausedUP": TorrentState.PAUSED,
    "stoppedDL": TorrentState.PAUSED,
    "stoppedUP": TorrentState.PAUSED,
    "queuedDL": TorrentState.QUEUED,
    "queuedUP": TorrentState.QUEUED,
    "queuedForChecking": TorrentState.QUEUED,
    "checkingDL": TorrentState.CHECKING,
    "checkingUP": TorrentState.CHECKING,
    "checkingResumeData": TorrentState.CHECKING,
    "moving": TorrentState.CHECKING,
    "error": TorrentState.ERROR,
    "missingFiles": TorrentState.ERROR,
}

# raw qBittorrent key -> canonical torrent field
QBIT_TORRENT_FIELDS = {
    "name": "name",
    "state": "state",
    "progress": "progress",
    "size": "size",
    "dlspeed": "dlspeed",
    "upspeed": "upspeed",
    "eta": "eta",
    "ratio": "ratio",
    "added_on": "added_time",
    "save_path": "save_path",
    "category": "category",
    "tags": "tags",
    "num_seeds": "connected_seeds",
    "num_leechs": "connected_peers",
    "num_complete": "total_seeds",
    "num_incomplete": "total_peers",
}

QBIT_SERVER_FIELDS = {
    "dl_info_speed": "dl_info_speed",
    "up_info_speed": "up_info_speed",
    "dl_rate_limit": "dl_rate_limit",
    "up_rate_limit": "up_rate_limit",
    "connection_status": "connection_status",
    "total_peer_connections": "peers",
    "free_space_on_disk": "free_space_on_disk",
    "use_alt_speed_limits": "use_alt_speed",
    "use_alt_speed": "use_alt_speed",
}

# torrents/properties key -> detail field
QBIT_PROPERTY_FIELDS = {
    "total_size": "size",
    "total_downloaded": "completed",
    "total_uploaded": "uploaded",
    "nb_connections": "connections",
    "seeds": "num_seeds",
    "peers": "num_leechers",
    "seeds_total": "total_seeds",
    "peers_total": "total_leechers",
    "save_path": "save_path",
    "addition_date": "added_time",
    "completion_date": "completion_on",
    "dl_limit": "dl_limit",
    "up_limit": "up_limit",
    "seeding_time": "seeding_time",
}

QBIT_TRACKER_STATUS = {0: "disabled", 2: "working", 3: "updating"}
QBIT_FILE_PRIORITY_VALUES = {"do_not_download": 0, "low": 1, "normal": 1, "high": 6}

# BackendPreferences field -> app/preferences keys; the first one is written.
QBIT_PREFERENCE_KEYS = {
    "max_connections": ("max_connec", "connection_limit"),
    "max_connections_per_torrent": ("max_connec_per_torrent", "max_connections_per_torrent"),
    # qBittorrent has one queueing switch for downloads and seeds
    "queue_download_enabled": ("queueing_enabled",),
    "queue_download_max": ("max_active_downloads",),
    "queue_seed_enabled": ("queueing_enabled",),
    "queue_seed_max": ("max_active_uploads",),
    "listen_port": ("listen_port",),
    "random_port": ("random_port",),
    "upnp_enabled": ("upnp", "upnp_enabled"),
    "dht_enabled": ("dht",),
    "pex_enabled": ("pex",),
    "lsd_enabled": ("lsd",),
    "share_ratio_limit": ("max_ratio", "share_ratio_limit"),
    "share_ratio_limited": ("max_ratio_enabled", "share_ratio_limit_enabled"),
    "seeding_time_limit": ("max_seeding_time", "max_seeding_time_minutes"),
    "seeding_time_limited": ("max_seeding_time_enabled",),
    "save_path": ("save_path",),
    "incomplete_dir_enabled": ("temp_path_enabled",),
    "incomplete_dir": ("temp_path", "incomplete_dir"),
    "incomplete_files_suffix": ("incomplete_files_ext",),
    "create_subfolder_enabled": ("create_subfolder_enabled", "subcategory_enabled"),
}
QBIT_ENCRYPTION = {0: "prefer", 1: "require", 2: "disable"}
QBIT_ENCRYPTION_VALUES = {"tolerate": 0, "prefer": 0, "require": 1, "disable": 2}

SWARM_DETAIL_FIELDS = ("connections", "num_seeds", "num_leechers", "total_seeds", "total_leechers")


def map_qbit_state(raw):
    state = QBIT_STATE_MAP.get(raw)
    if state is None:
        warn_once("qbit.state:" + str(raw), "Unknown qBittorrent state {!r}, treating as error", raw)
        return TorrentState.ERROR
    return state


def qbit_file_priority(raw):
    value = safe_num(raw, 1)
    if value in (0, -2):
        return "do_not_download"
    if value in (6, 7):
        return "high"
    return "normal"


def _limit_or_unlimited(raw):
    value = safe_num(raw, None)
    if value is None:
        return None
    return int(value) if value > 0 else -1


def translate_qbit_torrent(raw):
    if not isinstance(raw, Mapping):
        return raw
    out = {}
    for key, field in QBIT_TORRENT_FIELDS.items():
        if has_key(raw, key):
            out[field] = raw[key]
    if "state" in out:
        out["state"] = map_qbit_state(out["state"])
    return out


def translate_qbit_server_state(raw):
    if not isinstance(raw, Mapping):
        return raw
    out = {}
    for key, field in QBIT_SERVER_FIELDS.items():
        if has_key(raw, key):
            out[field] = raw[key]
    return out


def translate_qbit_detail(raw, fields=QBIT_PROPERTY_FIELDS):
    out = {}
    for key, field in fields.items():
        if not has_key(raw, key):
            continue
        value = raw[key]
        if field in SWARM_DETAIL_FIELDS:
            out[field] = resolve_swarm_count(value)
        elif field in ("dl_limit", "up_limit"):
            out[field] = _limit_or_unlimited(value)
        elif field == "save_path":
            out[field] = value if isinstance(value, str) else None
        else:
            value = safe_num(value, None)
            out[field] = max(0, int(value)) if value is not None else None
    return out


@dataclass(frozen=True)
class QbitFeatures:
    """Endpoint differences between qBittorrent major versions."""

    pause_endpoint: str = "pause"
    resume_endpoint: str = "resume"
    is_legacy: bool = True

    @classmethod
    def for_major(cls, major):
        if safe_num(major, 4) >= 5:
            return cls(pause_endpoint="stop", resume_endpoint="start", is_legacy=False)
        return cls()

    @classmethod
    def from_version(cls, version):
        text = str(version or "").strip().lstrip("vV")
        return cls.for_major(text.split(".", 1)[0])


class QBittorrentAdapter(BaseAdapter):
    backend_name = "qBittorrent"
    API = "api/v2/"

    def __init__(self, transport, features=None, preserve_missing_sections=True):
        super().__init__(transport, preserve_missing_sections=preserve_missing_sections)
        self._features = features
        self.rid = 0
        self._sync_failures = 0

    @property
    def features(self):
        if self._features is None:
            self._features = self.detect_features()
        return self._features

    def detect_features(self):
        try:
            version = self._get("app/version")
        except AuthError:
            raise
        except BackendError as e:
            logger.info("Could not read qBittorrent version, assuming v4 endpoints: {}", e)
            return QbitFeatures()
        features = QbitFeatures.from_version(version)
        logger.info("qBittorrent {} detected (legacy endpoints: {})", version, features.is_legacy)
        return features

    # ---------------------------------------------------------- transport

    def _get(self, path, params=None, auth_statuses=(401,)):
        return self._call(self.transport.get, path, auth_statuses, params=params)

    def _post(self, path, data=None, params=None, files=None, auth_statuses=(401,)):
        return self._call(self.transport.post, path, auth_statuses, data=data, params=params, files=files)

    def _call(self, fn, path, auth_statuses, **kwargs):
        kwargs = {k: v for k, v in kwargs.items() if v is not None}
        try:
            return fn(self.API + path, **kwargs)
        except HTTPStatusError as e:
            if e.status in auth_statuses:
                raise AuthError(f"qBittorrent rejected the session (HTTP {e.status})") from e
            raise

    # --------------------------------------------------------------- sync

    def _sync_maindata(self, rid):
        data = self._get("sync/maindata", {"rid": rid}, auth_statuses=(401, 403))
        if not isinstance(data, Mapping):
            raise ValidationError(f"sync/maindata returned {type(data).__name__}, expected an object")
        return data

    def _fetch_sync_payload(self):
        try:
            data = self._sync_maindata(self.rid)
        except AuthError:
            raise
        except BackendError as e:
            self._sync_failures += 1
            if self._sync_failures < 2:
                raise
            # The cursor may be stale on the server side; start over from a full update.
            logger.warning("sync/maindata failed {} times, resetting rid: {}", self._sync_failures, e)
            self.rid = 0
            data = self._sync_maindata(0)
        self._sync_failures = 0

        full = safe_bool(data.get("full_update")) or self.rid == 0
        self.rid = int(safe_num(data.get("rid"), self.rid))
        return self._translate_maindata(data, full), SNAPSHOT if full else DIFF

    def _translate_maindata(self, data, full):
        payload = {}
        if has_key(data, "torrents"):
            torrents = data["torrents"]
            if isinstance(torrents, Mapping):
                torrents = {h: translate_qbit_torrent(t) for h, t in torrents.items()}
            payload["torrents"] = torrents
        if has_key(data, "torrents_removed"):
            payload["torrents_removed"] = data["torrents_removed"]
        if has_key(data, "categories"):
            categories = data["categories"]
            if isinstance(categories, Mapping):
                categories = {
                    name: ({"save_path": c["savePath"]} if has_key(c, "savePath") else {})
                    for name, c in categories.items()
                }
            payload["categories" if full else "categories_changed"] = categories
        if has_key(data, "categories_removed"):
            payload["categories_removed"] = data["categories_removed"]
        if has_key(data, "tags"):
            payload["tags" if full else "tags_added"] = data["tags"]
        if has_key(data, "tags_removed"):
            payload["tags_removed"] = data["tags_removed"]
        if has_key(data, "server_state"):
            payload["server_state"] = translate_qbit_server_state(data["server_state"])
        return payload

    # ------------------------------------------------------------- detail

    def _detail_sources(self):
        return {
            "properties": self._fetch_properties,
            "files": self._fetch_files,
            "trackers": self._fetch_trackers,
            "peers": self._fetch_peers,
        }

    def _fetch_detail_primary(self, torrent_id):
        data = self._get("torrents/info", {"hashes": torrent_id})
        if not isinstance(data, list):
            raise ValidationError("torrents/info did not return a list")
        entry = next((t for t in data if isinstance(t, Mapping) and t.get("hash") == torrent_id), None)
        if entry is None and len(data) == 1 and isinstance(data[0], Mapping):
            entry = data[0]
        if entry is None:
            return None

        out = translate_qbit_detail(entry, {
            "total_size": "size",
            "completed": "completed",
            "uploaded": "uploaded",
            "dl_limit": "dl_limit",
            "up_limit": "up_limit",
            "seeding_time": "seeding_time",
            "added_on": "added_time",
            "completion_on": "completion_on",
            "save_path": "save_path",
            "num_seeds": "num_seeds",
            "num_leechs": "num_leechers",
            "num_complete": "total_seeds",
            "num_incomplete": "total_leechers",
        })
        if "size" not in out and has_key(entry, "size"):
            out["size"] = max(0, int(safe_num(entry["size"], 0)))
        if isinstance(entry.get("name"), str):
            out["name"] = entry["name"]
        if has_key(entry, "category"):
            out["category"] = entry["category"] or None
        tags = split_tags(entry.get("tags"))
        if tags is not None:
            out["tags"] = tuple(tags)
        return out

    def _fetch_properties(self, torrent_id):
        data = self._get("torrents/properties", {"hash": torrent_id})
        if not isinstance(data, Mapping):
            raise ValidationError("torrents/properties did not return an object")
        return translate_qbit_detail(data)

    def _fetch_files(self, torrent_id):
        data = self._get("torrents/files", {"hash": torrent_id})
        if not isinstance(data, list):
            raise ValidationError("torrents/files did not return a list")
        files = []
        for i, f in enumerate(data):
            if not isinstance(f, Mapping):
                continue
            files.append(TorrentFile(
                id=int(safe_num(f.get("index"), i)),
                name=str(f.get("name", "")),
                size=max(0, int(safe_num(f.get("size"), 0))),
                progress=clamp_progress(safe_num(f.get("progress"), 0)),
                priority=qbit_file_priority(f.get("priority")),
            ))
        return files

    def _fetch_trackers(self, torrent_id):
        data = self._get("torrents/trackers", {"hash": torrent_id})
        if not isinstance(data, list):
            raise ValidationError("torrents/trackers did not return a list")
        trackers = []
        for t in data:
            if not isinstance(t, Mapping):
                continue
            url = str(t.get("url", ""))
            # DHT/PeX/LSD pseudo entries
            if url.startswith("** ["):
                continue
            status = QBIT_TRACKER_STATUS.get(safe_num(t.get("status"), 4), "not_working")
            trackers.append(Tracker(
                url=url,
                status=status,
                msg=str(t.get("msg") or ""),
                peers=resolve_swarm_count(t.get("num_peers")) or 0,
                tier=max(0, int(safe_num(t.get("tier"), 0))),
            ))
        return trackers

    def _fetch_peers(self, torrent_id):
        data = self._get("sync/torrentPeers", {"hash": torrent_id, "rid": 0})
        if not isinstance(data, Mapping):
            raise ValidationError("sync/torrentPeers did not return an object")
        peers = data.get("peers") or {}
        if not isinstance(peers, Mapping):
            raise ValidationError("sync/torrentPeers peers is not an object")
        out = []
        for key, p in peers.items():
            if not isinstance(p, Mapping):
                continue
            out.append(Peer(
                ip=str(p.get("ip") or key.rsplit(":", 1)[0]),
                port=int(safe_num(p.get("port"), 0)),
                client=str(p.get("client") or ""),
                progress=clamp_progress(safe_num(p.get("progress"), 0)),
                dl_speed=max(0, int(safe_num(p.get("dl_speed"), 0))),
                up_speed=max(0, int(safe_num(p.get("up_speed"), 0))),
                downloaded=max(0, int(safe_num(p.get("downloaded"), 0))),
                uploaded=max(0, int(safe_num(p.get("uploaded"), 0))),
            ))
        return out

    # ------------------------------------------------------------ actions

    def _torrents_action(self, endpoint, ids, **extra):
        hashes = self._normalize_hashes(ids)
        if not hashes:
            return True
        data = {"hashes": "|".join(hashes)}
        data.update(extra)
        return self._run_action(endpoint, lambda: self._post("torrents/" + endpoint, data))

    def pause(self, ids):
        return self._torrents_action(self.features.pause_endpoint, ids)

    def resume(self, ids):
        return self._torrents_action(self.features.resume_endpoint, ids)

    def delete(self, ids, delete_files=False):
        flag = "true" if self._normalize_delete_files(delete_files) else "false"
        return self._torrents_action("delete", ids, deleteFiles=flag)

    def recheck(self, ids):
        return self._torrents_action("recheck", ids)

    def reannounce(self, ids):
        return self._torrents_action("reannounce", ids)

    def set_force_start(self, ids, value=True):
        return self._torrents_action("setForceStart", ids, value="true" if value else "false")

    def set_download_limit(self, ids, limit):
        return self._torrents_action("setDownloadLimit", ids, limit=max(0, int(safe_num(limit, 0))))

    def set_upload_limit(self, ids, limit):
        return self._torrents_action("setUploadLimit", ids, limit=max(0, int(safe_num(limit, 0))))

    def set_location(self, ids, location):
        return self._torrents_action("setLocation", ids, location=location)

    def set_category(self, ids, category):
        return self._torrents_action("setCategory", ids, category=category or "")

    def set_file_priority(self, torrent_id, file_ids, priority):
        self._check_file_priority(priority)
        if isinstance(file_ids, int):
            file_ids = [file_ids]
        data = {
            "hash": self._normalize_hash(torrent_id),
            "id": "|".join(str(i) for i in file_ids),
            "priority": QBIT_FILE_PRIORITY_VALUES[priority],
        }
        return self._run_action("filePrio", lambda: self._post("torrents/filePrio", data))

    def rename_torrent(self, torrent_id, new_name):
        data = {"hash": self._normalize_hash(torrent_id), "name": new_name}
        return self._run_action("rename", lambda: self._post("torrents/rename", data))

    def rename_file(self, torrent_id, old_path, new_path):
        data = {"hash": self._normalize_hash(torrent_id), "oldPath": old_path, "newPath": new_path}
        return self._run_action("renameFile", lambda: self._post("torrents/renameFile", data))

    def rename_folder(self, torrent_id, old_path, new_path):
        data = {"hash": self._normalize_hash(torrent_id), "oldPath": old_path, "newPath": new_path}
        return self._run_action("renameFolder", lambda: self._post("torrents/renameFolder", data))

    def add_torrent(self, urls=None, files=None, save_path=None, category=None, tags=None, paused=False):
        if not urls and not files:
            raise ValueError("add_torrent needs urls or files")
        if isinstance(urls, str):
            urls = [urls]
        data = {}
        if urls:
            data["urls"] = "\n".join(urls)
        if save_path:
            data["savepath"] = save_path
        if category:
            data["category"] = category
        tag_list = split_tags(tags)
        if tag_list:
            data["tags"] = ",".join(tag_list)
        if paused:
            data["paused"] = "true"
            data["stopped"] = "true"
        upload = None
        if files:
            upload = [("torrents", (name, content, "application/x-bittorrent")) for name, content in files]
        return self._run_action("add", lambda: self._post("torrents/add", data, files=upload))

    # ------------------------------------------------------ tags/categories

    def set_tags(self, ids, tags, mode="set"):
        self._check_tag_mode(mode)
        hashes = self._normalize_hashes(ids)
        if not hashes:
            return True
        desired = split_tags(tags) or []
        joined = "|".join(hashes)

        def run():
            if mode == "add":
                if desired:
                    self._post("torrents/addTags", {"hashes": joined, "tags": ",".join(desired)})
                return
            if mode == "remove":
                if desired:
                    self._post("torrents/removeTags", {"hashes": joined, "tags": ",".join(desired)})
                return
            current = self._read_current_tags(hashes)
            stale = []
            for tag_list in current.values():
                for tag in tag_list:
                    if tag not in desired and tag not in stale:
                        stale.append(tag)
            if stale:
                self._post("torrents/removeTags", {"hashes": joined, "tags": ",".join(stale)})
            if desired:
                self._post("torrents/addTags", {"hashes": joined, "tags": ",".join(desired)})

        return self._run_action("set_tags", run)

    def _read_current_tags(self, hashes):
        data = self._get("torrents/info", {"hashes": "|".join(hashes)})
        if not isinstance(data, list):
            raise ValidationError("torrents/info did not return a list")
        by_hash = {t.get("hash"): t for t in data if isinstance(t, Mapping)}
        current = {}
        for h in hashes:
            entry = by_hash.get(h)
            if has_key(entry, "tags"):
                current[h] = split_tags(entry["tags"]) or []
            else:
                # Key missing is "unknown", not "no tags": fall back to the sync cache.
                cached = self.engine.get_torrent(h)
                current[h] = list(cached.tags) if cached is not None else []
        return current

    def get_categories(self):
        data = self._get("torrents/categories")
        if not isinstance(data, Mapping):
            raise ValidationError("torrents/categories did not return an object")
        return {
            name: Category(name=name, save_path=str(c.get("savePath") or "") if isinstance(c, Mapping) else "")
            for name, c in data.items()
        }

    def create_category(self, name, save_path=""):
        return self._run_action(
            "createCategory", lambda: self._post("torrents/createCategory", {"category": name, "savePath": save_path or ""})
        )

    def edit_category(self, name, save_path=None, new_name=None):
        if new_name and new_name != name:
            return self._run_action("renameCategory", lambda: self._rename_category(name, new_name, save_path))
        if save_path is None:
            return True
        return self.set_category_save_path(name, save_path)

    def set_category_save_path(self, category, save_path):
        return self._run_action(
            "editCategory",
            lambda: self._post("torrents/editCategory", {"category": category, "savePath": save_path or ""}),
        )

    def _rename_category(self, name, new_name, save_path):
        # The Web API cannot rename a category: create the new one, move members, drop the old one.
        if save_path is None:
            current = self.get_categories().get(name)
            save_path = current.save_path if current is not None else ""
        self._post("torrents/createCategory", {"category": new_name, "savePath": save_path})
        members = self._get("torrents/info", {"category": name})
        if not isinstance(members, list):
            raise ValidationError("torrents/info did not return a list")
        hashes = [t["hash"] for t in members if isinstance(t, Mapping) and t.get("hash")]
        if hashes:
            self._post("torrents/setCategory", {"hashes": "|".join(hashes), "category": new_name})
        self._post("torrents/removeCategories", {"categories": name})
        logger.info("Renamed category {} to {} ({} torrent(s) moved)", name, new_name, len(hashes))

    def delete_categories(self, names):
        if isinstance(names, str):
            names = [names]
        if not names:
            return True
        return self._run_action(
            "removeCategories", lambda: self._post("torrents/removeCategories", {"categories": "\n".join(names)})
        )

    def get_tags(self):
        data = self._get("torrents/tags")
        if not isinstance(data, list):
            raise ValidationError("torrents/tags did not return a list")
        return split_tags(data) or []

    def create_tags(self, tags):
        tag_list = split_tags(tags) or []
        if not tag_list:
            return True
        return self._run_action("createTags", lambda: self._post("torrents/createTags", {"tags": ",".join(tag_list)}))

    def delete_tags(self, tags):
        tag_list = split_tags(tags) or []
        if not tag_list:
            return True
        return self._run_action("deleteTags", lambda: self._post("torrents/deleteTags", {"tags": ",".join(tag_list)}))

    # --------------------------------------------------- transfer settings

    def get_transfer_settings(self):
        data = self._sync_maindata(0)
        state = data.get("server_state")
        if not isinstance(state, Mapping):
            state = {}
        partial = False

        try:
            alt_enabled = safe_bool(self._get("transfer/speedLimitsMode"))
        except BackendError as e:
            if not is_endpoint_unavailable(e):
                raise
            logger.info("transfer/speedLimitsMode unavailable, using server_state: {}", e)
            alt_enabled = safe_bool(state.get("use_alt_speed_limits", state.get("use_alt_speed")))
            partial = True

        try:
            prefs = self._get("app/preferences")
            if not isinstance(prefs, Mapping):
                raise ValidationError("app/preferences did not return an object")
            # preferences are KiB/s
            alt_download = max(0, int(safe_num(prefs.get("alt_dl_limit"), 0))) * 1024
            alt_upload = max(0, int(safe_num(prefs.get("alt_up_limit"), 0))) * 1024
        except BackendError as e:
            if not (is_endpoint_unavailable(e) or isinstance(e, ValidationError)):
                raise
            logger.info("app/preferences unavailable, using server_state: {}", e)
            alt_download = max(0, int(safe_num(state.get("alt_dl_limit"), 0)))
            alt_upload = max(0, int(safe_num(state.get("alt_up_limit"), 0)))
            partial = True

        return TransferSettings(
            download_limit=max(0, int(safe_num(state.get("dl_rate_limit"), 0))),
            upload_limit=max(0, int(safe_num(state.get("up_rate_limit"), 0))),
            alt_enabled=alt_enabled,
            alt_download_limit=alt_download,
            alt_upload_limit=alt_upload,
            partial=partial,
        )

    def set_transfer_settings(self, patch):
        self._check_transfer_patch(patch)
        if "download_limit" in patch:
            self._post("transfer/setDownloadLimit", {"limit": max(0, int(safe_num(patch["download_limit"], 0)))})
        if "upload_limit" in patch:
            self._post("transfer/setUploadLimit", {"limit": max(0, int(safe_num(patch["upload_limit"], 0)))})
        if "alt_enabled" in patch:
            self._set_alt_mode(bool(patch["alt_enabled"]))

        has_dl = "alt_download_limit" in patch
        has_up = "alt_upload_limit" in patch
        if has_dl and has_up:
            dl = max(0, int(safe_num(patch["alt_download_limit"], 0)))
            up = max(0, int(safe_num(patch["alt_upload_limit"], 0)))
            try:
                self._post("transfer/setAlternativeSpeedLimits", params={"downloadLimit": dl, "uploadLimit": up})
                return
            except BackendError as e:
                if not is_endpoint_unavailable(e):
                    raise
                logger.info("setAlternativeSpeedLimits unavailable, writing preferences: {}", e)
        if has_dl or has_up:
            prefs = {}
            if has_dl:
                prefs["alt_dl_limit"] = round(max(0, safe_num(patch["alt_download_limit"], 0)) / 1024)
            if has_up:
                prefs["alt_up_limit"] = round(max(0, safe_num(patch["alt_upload_limit"], 0)) / 1024)
            self._post("app/setPreferences", {"json": json.dumps(prefs)})

    def _set_alt_mode(self, enabled):
        try:
            self._post("transfer/setSpeedLimitsMode", {"mode": 1 if enabled else 0})
            return
        except BackendError as e:
            if not is_endpoint_unavailable(e):
                raise
            logger.info("setSpeedLimitsMode unavailable, toggling instead: {}", e)
        current = safe_bool(self._get("transfer/speedLimitsMode"))
        if current != enabled:
            self._post("transfer/toggleSpeedLimitsMode")

    # --------------------------------------------------------- preferences

    def get_preferences(self):
        prefs = self._get("app/preferences")
        if not isinstance(prefs, Mapping):
            raise ValidationError("app/preferences did not return an object")
        values = {
            name: coerce_preference(name, pick(prefs, *keys))
            for name, keys in QBIT_PREFERENCE_KEYS.items()
        }
        if has_key(prefs, "encryption"):
            mode = safe_num(prefs["encryption"], None)
            values["encryption"] = QBIT_ENCRYPTION.get(mode, "prefer")
        return BackendPreferences(**values)

    def set_preferences(self, patch):
        self._check_preferences_patch(patch)
        prefs = {}
        for name, keys in QBIT_PREFERENCE_KEYS.items():
            if patch.get(name) is not None:
                # queue_download_enabled wins over queue_seed_enabled for the shared switch
                prefs.setdefault(keys[0], patch[name])
        if patch.get("queue_stalled_enabled") is not None or patch.get("queue_stalled_minutes") is not None:
            warn_once("qbit.prefs.stalled", "qBittorrent has no stalled-queue settings, ignoring them")
        if patch.get("encryption") is not None:
            prefs["encryption"] = QBIT_ENCRYPTION_VALUES[patch["encryption"]]
        if not prefs:
            return
        self._post("app/setPreferences", {"json": json.dumps(prefs)})
