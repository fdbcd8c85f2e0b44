"""Unified, backend-independent data model.

All sizes are bytes, all speeds bytes/second, all times unix seconds.
Records are frozen: the merge engine builds new ones instead of mutating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

ETA_UNKNOWN = -1


class TorrentState(str, Enum):
    DOWNLOADING = "downloading"
    SEEDING = "seeding"
    PAUSED = "paused"
    QUEUED = "queued"
    CHECKING = "checking"
    ERROR = "error"


@dataclass(frozen=True)
class UnifiedTorrent:
    id: str
    name: str = ""
    state: TorrentState = TorrentState.ERROR
    progress: float = 0.0  # 0.0 - 1.0
    size: int = 0
    dlspeed: int = 0
    upspeed: int = 0
    eta: int = ETA_UNKNOWN
    ratio: float = 0.0
    added_time: int = 0
    save_path: str = ""
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    # connected_*: peers we are talking to right now; total_*: whole swarm.
    # None means the backend did not tell us.
    connected_seeds: Optional[int] = None
    connected_peers: Optional[int] = None
    total_seeds: Optional[int] = None
    total_peers: Optional[int] = None
    num_seeds: int = 0
    num_peers: int = 0


@dataclass(frozen=True)
class Category:
    name: str
    save_path: str = ""


@dataclass(frozen=True)
class ServerState:
    dl_info_speed: Optional[int] = None
    up_info_speed: Optional[int] = None
    dl_rate_limit: Optional[int] = None
    up_rate_limit: Optional[int] = None
    connection_status: Optional[str] = None
    peers: Optional[int] = None
    free_space_on_disk: Optional[int] = None
    use_alt_speed: Optional[bool] = None
    alt_dl_limit: Optional[int] = None
    alt_up_limit: Optional[int] = None
    backend_name: Optional[str] = None
    backend_version: Optional[str] = None
    api_version: Optional[str] = None


@dataclass(frozen=True)
class TransferSettings:
    """Global and alternative speed limits. 0 means unlimited."""

    download_limit: int = 0
    upload_limit: int = 0
    alt_enabled: bool = False
    alt_download_limit: int = 0
    alt_upload_limit: int = 0
    # True when some source was blocked and a fallback/default was used instead.
    partial: bool = False


@dataclass(frozen=True)
class TorrentFile:
    id: int
    name: str
    size: int
    progress: float
    priority: str  # high | normal | low | do_not_download


@dataclass(frozen=True)
class Tracker:
    url: str
    status: str  # working | updating | not_working | disabled
    msg: str = ""
    peers: int = 0
    tier: int = 0


@dataclass(frozen=True)
class Peer:
    ip: str
    port: int
    client: str = ""
    progress: float = 0.0
    dl_speed: int = 0
    up_speed: int = 0
    downloaded: int = 0
    uploaded: int = 0


@dataclass(frozen=True)
class UnifiedTorrentDetail:
    hash: str
    name: str = ""
    size: int = 0
    completed: int = 0
    uploaded: int = 0
    dl_limit: int = -1  # -1 unlimited
    up_limit: int = -1
    seeding_time: int = 0
    added_time: int = 0
    completion_on: int = 0
    save_path: str = ""
    category: Optional[str] = None
    tags: Tuple[str, ...] = ()
    connections: Optional[int] = None
    num_seeds: Optional[int] = None
    num_leechers: Optional[int] = None
    total_seeds: Optional[int] = None
    total_leechers: Optional[int] = None
    # None: the source failed and the section is omitted; () is a confirmed empty list.
    files: Optional[Tuple[TorrentFile, ...]] = None
    trackers: Optional[Tuple[Tracker, ...]] = None
    peers: Optional[Tuple[Peer, ...]] = None
    partial: bool = False


@dataclass(frozen=True)
class SyncSnapshot:
    torrents: Mapping[str, UnifiedTorrent] = field(default_factory=lambda: MappingProxyType({}))
    categories: Mapping[str, Category] = field(default_factory=lambda: MappingProxyType({}))
    tags: Tuple[str, ...] = ()
    server_state: ServerState = field(default_factory=ServerState)


ENCRYPTION_MODES = ("tolerate", "prefer", "require", "disable")


@dataclass(frozen=True)
class BackendPreferences:
    """Global daemon preferences. None means the backend did not report the field.

    Limits and counts are plain numbers; ``seeding_time_limit`` is minutes.
    """

    max_connections: Optional[int] = None
    max_connections_per_torrent: Optional[int] = None
    queue_download_enabled: Optional[bool] = None
    queue_download_max: Optional[int] = None
    queue_seed_enabled: Optional[bool] = None
    queue_seed_max: Optional[int] = None
    queue_stalled_enabled: Optional[bool] = None
    queue_stalled_minutes: Optional[int] = None
    listen_port: Optional[int] = None
    random_port: Optional[bool] = None
    upnp_enabled: Optional[bool] = None
    dht_enabled: Optional[bool] = None
    pex_enabled: Optional[bool] = None
    lsd_enabled: Optional[bool] = None
    encryption: Optional[str] = None  # one of ENCRYPTION_MODES
    share_ratio_limit: Optional[float] = None
    share_ratio_limited: Optional[bool] = None
    seeding_time_limit: Optional[int] = None
    seeding_time_limited: Optional[bool] = None
    save_path: Optional[str] = None
    incomplete_dir_enabled: Optional[bool] = None
    incomplete_dir: Optional[str] = None
    incomplete_files_suffix: Optional[bool] = None
    create_subfolder_enabled: Optional[bool] = None


PREFERENCE_FIELDS = tuple(BackendPreferences.__dataclass_fields__)
