import base64
import itertools
import posixpath
from typing import Any, Dict, List, Mapping

from loguru import logger

from backend_errors import AuthError, BackendError, HTTPStatusError, ValidationError
from clients import BaseAdapter, coerce_preference
from merge_engine import SNAPSHOT
from normalizer import clamp_progress, pick, resolve_swarm_count, safe_bool, safe_num, split_tags, warn_once
from torrent_models import BackendPreferences, Peer, TorrentFile, TorrentState, Tracker, TransferSettings

SESSION_HEADER = "X-Transmission-Session-Id"

LEGACY = "legacy"
JSONRPC2 = "json-rpc2"

STATUS_MAP = {
    0: TorrentState.PAUSED,
    1: TorrentState.QUEUED,  # queued to verify
    2: TorrentState.CHECKING,
    3: TorrentState.QUEUED,  # queued to download
    4: TorrentState.DOWNLOADING,
    5: TorrentState.QUEUED,  # queued to seed
    6: TorrentState.SEEDING,
}

# torrent-get field names: (legacy camelCase, json-rpc2 snake_case)
LIST_FIELDS = [
    ("hashString", "hash_string"),
    ("id", "id"),
    ("name", "name"),
    ("status", "status"),
    ("error", "error"),
    ("errorString", "error_string"),
    ("percentDone", "percent_done"),
    ("totalSize", "total_size"),
    ("rateDownload", "rate_download"),
    ("rateUpload", "rate_upload"),
    ("eta", "eta"),
    ("uploadRatio", "upload_ratio"),
    ("addedDate", "added_date"),
    ("downloadDir", "download_dir"),
    ("peersSendingToUs", "peers_sending_to_us"),
    ("peersGettingFromUs", "peers_getting_from_us"),
    ("trackerStats", "tracker_stats"),
]

DETAIL_FIELDS = [
    ("hashString", "hash_string"),
    ("name", "name"),
    ("totalSize", "total_size"),
    ("downloadedEver", "downloaded_ever"),
    ("uploadedEver", "uploaded_ever"),
    ("downloadLimit", "download_limit"),
    ("downloadLimited", "download_limited"),
    ("uploadLimit", "upload_limit"),
    ("uploadLimited", "upload_limited"),
    ("secondsSeeding", "seconds_seeding"),
    ("addedDate", "added_date"),
    ("doneDate", "done_date"),
    ("downloadDir", "download_dir"),
    ("peersConnected", "peers_connected"),
    ("peersGettingFromUs", "peers_getting_from_us"),
    ("peersSendingToUs", "peers_sending_to_us"),
    ("trackerStats", "tracker_stats"),
]


# BackendPreferences field -> session-get/session-set key (legacy, json-rpc2)
PREFERENCE_KEYS = {
    "max_connections": ("peer-limit-global", "peer_limit_global"),
    "max_connections_per_torrent": ("peer-limit-per-torrent", "peer_limit_per_torrent"),
    "queue_download_enabled": ("download-queue-enabled", "download_queue_enabled"),
    "queue_download_max": ("download-queue-size", "download_queue_size"),
    "queue_seed_enabled": ("seed-queue-enabled", "seed_queue_enabled"),
    "queue_seed_max": ("seed-queue-size", "seed_queue_size"),
    "queue_stalled_enabled": ("queue-stalled-enabled", "queue_stalled_enabled"),
    "queue_stalled_minutes": ("queue-stalled-minutes", "queue_stalled_minutes"),
    "listen_port": ("peer-port", "peer_port"),
    "random_port": ("peer-port-random-on-start", "peer_port_random_on_start"),
    "upnp_enabled": ("port-forwarding-enabled", "port_forwarding_enabled"),
    "dht_enabled": ("dht-enabled", "dht_enabled"),
    "pex_enabled": ("pex-enabled", "pex_enabled"),
    "lsd_enabled": ("lpd-enabled", "lpd_enabled"),
    "share_ratio_limit": ("seedRatioLimit", "seed_ratio_limit"),
    "share_ratio_limited": ("seedRatioLimited", "seed_ratio_limited"),
    "seeding_time_limit": ("idle-seeding-limit", "idle_seeding_limit"),
    "seeding_time_limited": ("idle-seeding-limit-enabled", "idle_seeding_limit_enabled"),
    "save_path": ("download-dir", "download_dir"),
    "incomplete_dir_enabled": ("incomplete-dir-enabled", "incomplete_dir_enabled"),
    "incomplete_dir": ("incomplete-dir", "incomplete_dir"),
    "incomplete_files_suffix": ("rename-partial-files", "rename_partial_files"),
}
ENCRYPTION_FROM_DAEMON = {"required": "require", "preferred": "prefer", "tolerated": "tolerate"}
ENCRYPTION_TO_DAEMON = {"require": "required", "prefer": "preferred", "tolerate": "tolerated", "disable": "tolerated"}


class TransmissionRPCError(BackendError):
    """The daemon answered but reported a failed RPC call."""


def protocol_for_semver(rpc_semver):
    if not rpc_semver:
        return LEGACY
    major = safe_num(str(rpc_semver).split(".", 1)[0], 0)
    return JSONRPC2 if major >= 6 else LEGACY


def map_transmission_state(status, error):
    if safe_num(error, 0) != 0:
        return TorrentState.ERROR
    state = STATUS_MAP.get(safe_num(status, -1))
    if state is None:
        warn_once("transmission.status:" + str(status), "Unknown Transmission status {!r}, treating as error", status)
        return TorrentState.ERROR
    return state


def sum_tracker_counts(stats, *keys):
    """Sum swarm counts over trackerStats; None when no tracker reported one."""
    if not isinstance(stats, list):
        return None
    total = None
    for stat in stats:
        count = resolve_swarm_count(pick(stat, *keys))
        if count is not None:
            total = (total or 0) + count
    return total


def _kib_limit(limited, kib):
    if not safe_bool(limited):
        return -1
    return max(0, int(safe_num(kib, 0))) * 1024


class TransmissionAdapter(BaseAdapter):
    backend_name = "Transmission"

    def __init__(self, transport, rpc_semver=None, preserve_missing_sections=True):
        super().__init__(transport, preserve_missing_sections=preserve_missing_sections)
        self.protocol = protocol_for_semver(rpc_semver)
        self.labels_supported = True
        self._tags = itertools.count(1)

    # -------------------------------------------------------------- rpc

    def _name(self, legacy, modern=None):
        """Pick the field/method spelling for the active protocol."""
        if self.protocol == JSONRPC2:
            return modern or legacy.replace("-", "_")
        return legacy

    def _fields(self, pairs):
        return [self._name(legacy, modern) for legacy, modern in pairs]

    def _rpc(self, method, params=None):
        tag = next(self._tags)
        if self.protocol == JSONRPC2:
            body = {"jsonrpc": "2.0", "method": method.replace("-", "_"), "params": params or {}, "id": tag}
        else:
            body = {"method": method, "arguments": params or {}, "tag": tag}

        data = self._post_rpc(body)
        if data is None:
            # json-rpc2 notifications answer 204
            return {}
        if not isinstance(data, Mapping):
            raise ValidationError(f"Transmission {method} returned {type(data).__name__}, expected an object")

        if self.protocol == JSONRPC2:
            error = data.get("error")
            if error:
                detail = (error.get("data") or {}).get("errorString") if isinstance(error, Mapping) else None
                message = error.get("message") if isinstance(error, Mapping) else error
                raise TransmissionRPCError(f"{method}: {message}" + (f": {detail}" if detail else ""))
            result = data.get("result")
        else:
            if data.get("result") != "success":
                raise TransmissionRPCError(f"{method}: {data.get('result')}")
            result = data.get("arguments")
        return result if isinstance(result, Mapping) else {}

    def _post_rpc(self, body):
        for attempt in range(2):
            try:
                return self.transport.post("", json=body)
            except HTTPStatusError as e:
                if e.status == 409 and attempt == 0:
                    session_id = next((v for k, v in e.headers.items() if k.lower() == SESSION_HEADER.lower()), None)
                    if session_id:
                        logger.debug("Transmission session id refreshed")
                        self.transport.headers[SESSION_HEADER] = session_id
                        continue
                if e.status in (401, 403):
                    raise AuthError(f"Transmission rejected the session (HTTP {e.status})") from e
                raise

    def _torrent_get(self, fields, ids=None):
        params = {"fields": fields}
        if ids is not None:
            params["ids"] = list(ids)
        torrents = self._rpc("torrent-get", params).get("torrents", [])
        if not isinstance(torrents, list):
            raise ValidationError("torrent-get torrents is not an array")
        return [t for t in torrents if isinstance(t, Mapping)]

    def _torrent_get_with_labels(self, fields, ids=None):
        if not self.labels_supported:
            return self._torrent_get(fields, ids)
        try:
            return self._torrent_get(fields + ["labels"], ids)
        except TransmissionRPCError as e:
            # Old daemons reject unknown fields outright.
            logger.warning("Transmission rejected the labels field, disabling labels: {}", e)
            self.labels_supported = False
            return self._torrent_get(fields, ids)

    # ------------------------------------------------------------- sync

    def _fetch_sync_payload(self):
        raw_torrents = self._torrent_get_with_labels(self._fields(LIST_FIELDS))

        torrents = {}
        categories = {}
        tags = []
        for raw in raw_torrents:
            torrent_hash = pick(raw, "hash_string", "hashString")
            if not torrent_hash:
                continue
            torrents[torrent_hash] = self._translate_torrent(raw)
            labels = split_tags(raw.get("labels")) if "labels" in raw else None
            if labels:
                categories.setdefault(labels[0], {})
                for label in labels:
                    if label not in tags:
                        tags.append(label)

        payload = {"torrents": torrents}
        if self.labels_supported:
            payload["categories"] = categories
            payload["tags"] = tags
        server_state = self._fetch_server_state()
        if server_state is not None:
            payload["server_state"] = server_state
        return payload, SNAPSHOT

    def _translate_torrent(self, raw):
        out = {}
        # Only what the daemon sent; omitted fields keep their cached values.
        if raw.get("name") is not None:
            out["name"] = raw["name"]
        if "status" in raw:
            out["state"] = map_transmission_state(raw["status"], raw.get("error"))
        for field, keys in (
            ("progress", ("percent_done", "percentDone")),
            ("size", ("total_size", "totalSize")),
            ("dlspeed", ("rate_download", "rateDownload")),
            ("upspeed", ("rate_upload", "rateUpload")),
            ("eta", ("eta",)),
            ("ratio", ("upload_ratio", "uploadRatio")),
            ("added_time", ("added_date", "addedDate")),
            ("save_path", ("download_dir", "downloadDir")),
            ("connected_seeds", ("peers_sending_to_us", "peersSendingToUs")),
            ("connected_peers", ("peers_getting_from_us", "peersGettingFromUs")),
        ):
            value = pick(raw, *keys)
            if value is not None:
                out[field] = value
        # Transmission reports -1 for "no ratio yet"
        if safe_num(out.get("ratio"), 0) < 0:
            out["ratio"] = 0

        stats = pick(raw, "tracker_stats", "trackerStats")
        if stats is not None:
            out["total_seeds"] = sum_tracker_counts(stats, "seeder_count", "seederCount")
            out["total_peers"] = sum_tracker_counts(stats, "leecher_count", "leecherCount")

        if "labels" in raw:
            labels = split_tags(raw["labels"]) or []
            out["category"] = labels[0] if labels else None
            out["tags"] = labels
        return out

    def _fetch_server_state(self):
        try:
            stats = self._rpc("session-stats")
        except AuthError:
            raise
        except BackendError as e:
            logger.info("Transmission session-stats unavailable: {}", e)
            return None
        state = {"backend_name": self.backend_name, "connection_status": "connected"}
        dl = pick(stats, "download_speed", "downloadSpeed")
        up = pick(stats, "upload_speed", "uploadSpeed")
        if dl is not None:
            state["dl_info_speed"] = dl
        if up is not None:
            state["up_info_speed"] = up
        return state

    # ----------------------------------------------------------- detail

    def _detail_sources(self):
        return {
            "files": self._fetch_files,
            "trackers": self._fetch_trackers,
            "peers": self._fetch_peers,
        }

    def _fetch_detail_primary(self, torrent_id):
        found = self._torrent_get_with_labels(self._fields(DETAIL_FIELDS), ids=[torrent_id])
        if not found:
            return None
        raw = found[0]
        stats = pick(raw, "tracker_stats", "trackerStats")
        out = {
            "name": pick(raw, "name"),
            "size": safe_num(pick(raw, "total_size", "totalSize"), None),
            "completed": safe_num(pick(raw, "downloaded_ever", "downloadedEver"), None),
            "uploaded": safe_num(pick(raw, "uploaded_ever", "uploadedEver"), None),
            "dl_limit": _kib_limit(
                pick(raw, "download_limited", "downloadLimited"), pick(raw, "download_limit", "downloadLimit")
            ),
            "up_limit": _kib_limit(
                pick(raw, "upload_limited", "uploadLimited"), pick(raw, "upload_limit", "uploadLimit")
            ),
            "seeding_time": safe_num(pick(raw, "seconds_seeding", "secondsSeeding"), None),
            "added_time": safe_num(pick(raw, "added_date", "addedDate"), None),
            "completion_on": safe_num(pick(raw, "done_date", "doneDate"), None),
            "save_path": pick(raw, "download_dir", "downloadDir"),
            "connections": resolve_swarm_count(pick(raw, "peers_connected", "peersConnected")),
            "num_seeds": resolve_swarm_count(pick(raw, "peers_sending_to_us", "peersSendingToUs")),
            "num_leechers": resolve_swarm_count(pick(raw, "peers_getting_from_us", "peersGettingFromUs")),
            "total_seeds": sum_tracker_counts(stats, "seeder_count", "seederCount"),
            "total_leechers": sum_tracker_counts(stats, "leecher_count", "leecherCount"),
        }
        if "labels" in raw:
            labels = split_tags(raw["labels"]) or []
            out["category"] = labels[0] if labels else None
            out["tags"] = tuple(labels)
        return out

    def _one(self, torrent_id, fields):
        found = self._torrent_get(fields, ids=[torrent_id])
        if not found:
            raise ValidationError(f"torrent-get returned nothing for {torrent_id}")
        return found[0]

    def _fetch_files(self, torrent_id):
        raw = self._one(torrent_id, ["files", "priorities", "wanted"])
        files = raw.get("files") or []
        priorities = raw.get("priorities") or []
        wanted = raw.get("wanted") or []
        out = []
        for idx, f in enumerate(files):
            if not isinstance(f, Mapping):
                continue
            length = max(0, int(safe_num(f.get("length"), 0)))
            done = safe_num(pick(f, "bytes_completed", "bytesCompleted"), 0)
            is_wanted = True if idx >= len(wanted) else bool(wanted[idx])
            prio = safe_num(priorities[idx], 0) if idx < len(priorities) else 0
            if not is_wanted:
                priority = "do_not_download"
            elif prio == 1:
                priority = "high"
            elif prio == -1:
                priority = "low"
            else:
                priority = "normal"
            out.append(TorrentFile(
                id=idx,
                name=str(f.get("name", "")),
                size=length,
                progress=clamp_progress(done / length) if length else 0.0,
                priority=priority,
            ))
        return out

    def _fetch_trackers(self, torrent_id):
        raw = self._one(torrent_id, self._fields([("trackers", "trackers"), ("trackerStats", "tracker_stats")]))
        stats = pick(raw, "tracker_stats", "trackerStats")
        if not isinstance(stats, list):
            stats = []
        out = []
        for i, t in enumerate(raw.get("trackers") or []):
            if not isinstance(t, Mapping):
                continue
            stat = stats[i] if i < len(stats) and isinstance(stats[i], Mapping) else {}
            status = "not_working"
            if safe_num(pick(stat, "announce_state", "announceState"), 0) > 0:
                status = "updating"
            elif pick(stat, "has_announced", "hasAnnounced") and pick(
                stat, "last_announce_succeeded", "lastAnnounceSucceeded"
            ):
                status = "working"
            out.append(Tracker(
                url=str(t.get("announce", "")),
                status=status,
                msg=str(pick(stat, "last_announce_result", "lastAnnounceResult", default="")),
                peers=resolve_swarm_count(pick(stat, "last_announce_peer_count", "lastAnnouncePeerCount")) or 0,
                tier=max(0, int(safe_num(t.get("tier"), 0))),
            ))
        return out

    def _fetch_peers(self, torrent_id):
        raw = self._one(torrent_id, ["peers"])
        out = []
        for p in raw.get("peers") or []:
            if not isinstance(p, Mapping):
                continue
            out.append(Peer(
                ip=str(p.get("address", "")),
                port=int(safe_num(p.get("port"), 0)),
                client=str(pick(p, "client_name", "clientName", default="")),
                progress=clamp_progress(safe_num(p.get("progress"), 0)),
                dl_speed=max(0, int(safe_num(pick(p, "rate_to_client", "rateToClient"), 0))),
                up_speed=max(0, int(safe_num(pick(p, "rate_to_peer", "rateToPeer"), 0))),
            ))
        return out

    # ---------------------------------------------------------- actions

    def _ids_action(self, method, ids, **extra):
        hashes = self._normalize_hashes(ids)
        # Transmission treats a missing ids list as "every torrent".
        if not hashes:
            return True
        params = {"ids": hashes}
        params.update(extra)
        return self._run_action(method, lambda: self._rpc(method, params))

    def pause(self, ids):
        return self._ids_action("torrent-stop", ids)

    def resume(self, ids):
        return self._ids_action("torrent-start", ids)

    def delete(self, ids, delete_files=False):
        key = self._name("delete-local-data")
        return self._ids_action("torrent-remove", ids, **{key: self._normalize_delete_files(delete_files)})

    def recheck(self, ids):
        return self._ids_action("torrent-verify", ids)

    def reannounce(self, ids):
        return self._ids_action("torrent-reannounce", ids)

    def set_force_start(self, ids, value=True):
        return self._ids_action("torrent-start-now" if value else "torrent-start", ids)

    def _set_limit(self, ids, limit, limited_key, limit_key):
        value = safe_num(limit, 0)
        limited = value > 0
        kib = max(1, round(value / 1024)) if limited else 0
        return self._ids_action("torrent-set", ids, **{self._name(*limited_key): limited, self._name(*limit_key): kib})

    def set_download_limit(self, ids, limit):
        return self._set_limit(ids, limit, ("downloadLimited", "download_limited"), ("downloadLimit", "download_limit"))

    def set_upload_limit(self, ids, limit):
        return self._set_limit(ids, limit, ("uploadLimited", "upload_limited"), ("uploadLimit", "upload_limit"))

    def set_location(self, ids, location):
        return self._ids_action("torrent-set-location", ids, location=location, move=True)

    def set_file_priority(self, torrent_id, file_ids, priority):
        self._check_file_priority(priority)
        if isinstance(file_ids, int):
            file_ids = [file_ids]
        file_ids = list(file_ids)
        if priority == "do_not_download":
            extra = {self._name("files-unwanted"): file_ids}
        else:
            extra = {self._name("files-wanted"): file_ids, self._name("priority-" + priority): file_ids}
        return self._ids_action("torrent-set", [torrent_id], **extra)

    def _rename_path(self, torrent_id, path, name):
        return self._ids_action("torrent-rename-path", [torrent_id], path=path, name=name)

    def rename_torrent(self, torrent_id, new_name):
        torrent_hash = self._normalize_hash(torrent_id)
        cached = self.engine.get_torrent(torrent_hash)
        if cached is not None and cached.name:
            return self._rename_path(torrent_hash, cached.name, new_name)

        def run():
            current = pick(self._one(torrent_hash, ["name"]), "name")
            if not current:
                raise ValidationError(f"torrent-get returned no name for {torrent_hash}")
            self._rpc("torrent-rename-path", {"ids": [torrent_hash], "path": current, "name": new_name})

        return self._run_action("torrent-rename-path", run)

    def rename_file(self, torrent_id, old_path, new_path):
        # torrent-rename-path only changes the last path component.
        old_path, new_path = old_path.strip("/"), new_path.strip("/")
        if posixpath.dirname(old_path) != posixpath.dirname(new_path):
            raise ValueError("Transmission can only rename within the same folder")
        return self._rename_path(torrent_id, old_path, posixpath.basename(new_path))

    rename_folder = rename_file

    def add_torrent(self, urls=None, files=None, save_path=None, category=None, tags=None, paused=False):
        if not urls and not files:
            raise ValueError("add_torrent needs urls or files")
        if isinstance(urls, str):
            urls = [urls]
        labels = split_tags(tags) or []
        if category:
            labels = [category] + [t for t in labels if t != category]

        requests_to_send = [{"filename": u} for u in urls or []]
        for _name, content in files or []:
            requests_to_send.append({"metainfo": base64.b64encode(content).decode("ascii")})

        def run():
            for params in requests_to_send:
                if save_path:
                    params[self._name("download-dir")] = save_path
                if paused:
                    params["paused"] = True
                if labels and self.labels_supported:
                    params["labels"] = labels
                self._rpc("torrent-add", params)

        return self._run_action("torrent-add", run)

    # -------------------------------------------------- labels (tags/category)

    def _read_labels(self, hashes) -> Dict[str, List[str]]:
        found = self._torrent_get(self._fields([("hashString", "hash_string"), ("labels", "labels")]), ids=hashes)
        out = {}
        for raw in found:
            torrent_hash = pick(raw, "hash_string", "hashString")
            if torrent_hash:
                out[torrent_hash] = split_tags(raw.get("labels")) or []
        return out

    def set_tags(self, ids, tags, mode="set"):
        self._check_tag_mode(mode)
        hashes = self._normalize_hashes(ids)
        if not hashes:
            return True
        target = split_tags(tags) or []

        def run():
            if mode == "set":
                self._rpc("torrent-set", {"ids": hashes, "labels": target})
                return
            for torrent_hash, current in self._read_labels(hashes).items():
                if mode == "add":
                    labels = current + [t for t in target if t not in current]
                else:
                    labels = [t for t in current if t not in target]
                if labels != current:
                    self._rpc("torrent-set", {"ids": [torrent_hash], "labels": labels})

        return self._run_action("set_tags", run)

    def set_category(self, ids, category):
        hashes = self._normalize_hashes(ids)
        if not hashes:
            return True

        def run():
            # The category is the first label; the rest are kept.
            for torrent_hash, current in self._read_labels(hashes).items():
                rest = current[1:]
                labels = [category] + [t for t in rest if t != category] if category else rest
                self._rpc("torrent-set", {"ids": [torrent_hash], "labels": labels})

        return self._run_action("set_category", run)

    def get_categories(self):
        return dict(self.engine.snapshot().categories)

    def create_category(self, name, save_path=""):
        raise NotImplementedError("Transmission has no standalone categories")

    def edit_category(self, name, save_path=None, new_name=None):
        raise NotImplementedError("Transmission has no standalone categories")

    def set_category_save_path(self, category, save_path):
        raise NotImplementedError("Transmission categories have no save path")

    def delete_categories(self, names):
        raise NotImplementedError("Transmission has no standalone categories")

    def get_tags(self):
        tags = []
        for raw in self._torrent_get(["labels"]):
            for label in split_tags(raw.get("labels")) or []:
                if label not in tags:
                    tags.append(label)
        return tags

    def create_tags(self, tags):
        raise NotImplementedError("Transmission labels exist only on torrents")

    def delete_tags(self, tags):
        raise NotImplementedError("Transmission labels exist only on torrents")

    # ------------------------------------------------- transfer settings

    def get_transfer_settings(self):
        args = self._rpc("session-get")

        def kib(*keys):
            return max(0, int(safe_num(pick(args, *keys), 0))) * 1024

        dl_enabled = safe_bool(pick(args, "speed_limit_down_enabled", "speed-limit-down-enabled"))
        up_enabled = safe_bool(pick(args, "speed_limit_up_enabled", "speed-limit-up-enabled"))
        return TransferSettings(
            download_limit=kib("speed_limit_down", "speed-limit-down") if dl_enabled else 0,
            upload_limit=kib("speed_limit_up", "speed-limit-up") if up_enabled else 0,
            alt_enabled=safe_bool(pick(args, "alt_speed_enabled", "alt-speed-enabled")),
            alt_download_limit=kib("alt_speed_down", "alt-speed-down"),
            alt_upload_limit=kib("alt_speed_up", "alt-speed-up"),
        )

    def set_transfer_settings(self, patch):
        self._check_transfer_patch(patch)
        args: Dict[str, Any] = {}

        def to_kib(value):
            return max(0, round(safe_num(value, 0) / 1024))

        if "download_limit" in patch:
            value = to_kib(patch["download_limit"])
            args[self._name("speed-limit-down-enabled")] = value > 0
            args[self._name("speed-limit-down")] = value
        if "upload_limit" in patch:
            value = to_kib(patch["upload_limit"])
            args[self._name("speed-limit-up-enabled")] = value > 0
            args[self._name("speed-limit-up")] = value
        if "alt_enabled" in patch:
            args[self._name("alt-speed-enabled")] = bool(patch["alt_enabled"])
        if "alt_download_limit" in patch:
            args[self._name("alt-speed-down")] = to_kib(patch["alt_download_limit"])
        if "alt_upload_limit" in patch:
            args[self._name("alt-speed-up")] = to_kib(patch["alt_upload_limit"])
        if args:
            self._rpc("session-set", args)

    # --------------------------------------------------------- preferences

    def get_preferences(self):
        args = self._rpc("session-get")
        values = {
            name: coerce_preference(name, pick(args, modern, legacy))
            for name, (legacy, modern) in PREFERENCE_KEYS.items()
        }
        mode = args.get("encryption")
        if mode is not None:
            values["encryption"] = ENCRYPTION_FROM_DAEMON.get(str(mode).lower(), "tolerate")
        return BackendPreferences(**values)

    def set_preferences(self, patch):
        self._check_preferences_patch(patch)
        args: Dict[str, Any] = {}
        for name, (legacy, modern) in PREFERENCE_KEYS.items():
            if patch.get(name) is not None:
                args[self._name(legacy, modern)] = patch[name]
        if patch.get("encryption") is not None:
            args["encryption"] = ENCRYPTION_TO_DAEMON[patch["encryption"]]
        if patch.get("create_subfolder_enabled") is not None:
            warn_once("transmission.prefs.subfolder", "Transmission has no create-subfolder setting, ignoring it")
        if args:
            self._rpc("session-set", args)
