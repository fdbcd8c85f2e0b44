"""Best-effort assembly of a single torrent's detail view.

One primary source gives the core fields; supplementary sources (properties,
files, trackers, peers) run concurrently and fail independently. Whatever fails is
left out of the result and flagged with ``partial=True``.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Mapping, Optional

from loguru import logger

from backend_errors import BackendError, TorrentNotFoundError, is_endpoint_unavailable
from torrent_models import UnifiedTorrent, UnifiedTorrentDetail

# Section sources map to detail attributes directly; anything else is a field source.
SECTION_SOURCES = ("files", "trackers", "peers")

Source = Callable[[str], Any]


def detail_from_cache(torrent: UnifiedTorrent) -> Dict[str, Any]:
    return {
        "hash": torrent.id,
        "name": torrent.name,
        "size": torrent.size,
        "completed": int(torrent.size * torrent.progress),
        "added_time": torrent.added_time,
        "save_path": torrent.save_path,
        "category": torrent.category,
        "tags": tuple(torrent.tags),
        "num_seeds": torrent.connected_seeds,
        "num_leechers": torrent.connected_peers,
        "total_seeds": torrent.total_seeds,
        "total_leechers": torrent.total_peers,
    }


class DetailComposer:
    """Compose ``UnifiedTorrentDetail`` from a primary and supplementary sources.

    ``primary(id)`` returns a mapping of detail fields, or None when the backend
    does not know the id. Each supplementary callable returns a mapping of fields
    (field sources) or a sequence of ``TorrentFile``/``Tracker``/``Peer`` records
    (section sources named in ``SECTION_SOURCES``). ``cache_lookup(id)`` returns
    the last cached ``UnifiedTorrent`` or None.
    """

    def __init__(
        self,
        primary: Source,
        supplementary: Optional[Mapping[str, Source]] = None,
        cache_lookup: Optional[Callable[[str], Optional[UnifiedTorrent]]] = None,
    ) -> None:
        self.primary = primary
        self.supplementary = dict(supplementary or {})
        self.cache_lookup = cache_lookup or (lambda _id: None)

    def compose(self, torrent_id: str) -> UnifiedTorrentDetail:
        partial = False
        # One worker per source: every request is in flight at the same time.
        with ThreadPoolExecutor(max_workers=len(self.supplementary) + 1, thread_name_prefix="detail") as pool:
            primary_future = pool.submit(self.primary, torrent_id)
            futures = {name: pool.submit(fn, torrent_id) for name, fn in self.supplementary.items()}

            results: Dict[str, Any] = {}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except Exception as e:
                    # One failing source never takes the others down, parse slips included.
                    logger.warning("Detail source {} failed for {}: {!r}", name, torrent_id, e)
                    partial = True

            try:
                primary_fields = primary_future.result()
            except BackendError as e:
                if not is_endpoint_unavailable(e):
                    raise
                logger.info("Primary detail source unavailable for {}: {}", torrent_id, e)
                primary_fields = None

        cached = self.cache_lookup(torrent_id)
        if primary_fields is None:
            if cached is None:
                raise TorrentNotFoundError(torrent_id)
            partial = True

        # Later layers win; None never overrides a known value.
        values: Dict[str, Any] = {"hash": torrent_id}
        layers = []
        if cached is not None:
            layers.append(detail_from_cache(cached))
        for name, result in results.items():
            if name not in SECTION_SOURCES and isinstance(result, Mapping):
                layers.append(result)
        if primary_fields:
            layers.append(primary_fields)
        for layer in layers:
            for key, value in layer.items():
                if value is not None and key in _DETAIL_FIELDS:
                    values[key] = value

        for name in SECTION_SOURCES:
            if isinstance(results.get(name), (list, tuple)):
                values[name] = tuple(results[name])
            elif name in self.supplementary:
                # Failed or empty-handed source: omitted, not defaulted.
                partial = True

        if "tags" in values:
            values["tags"] = tuple(values["tags"])
        values["partial"] = partial
        return UnifiedTorrentDetail(**values)


_DETAIL_FIELDS = frozenset(UnifiedTorrentDetail.__dataclass_fields__) - {"partial", "hash", *SECTION_SOURCES}
