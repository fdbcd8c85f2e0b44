"""Backend session: the one live adapter + polling driver pair.

Switching backends tears the old pair down before the new one is built, and every
callback is tagged with the generation it belongs to so late results from a
superseded adapter are dropped instead of overwriting the new backend's view.
"""

from __future__ import annotations

import contextlib
import threading
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from clients import BaseAdapter, QbitFeatures, QBittorrentAdapter
from polling import DEFAULT_POLLING, PollingDriver
from torrent_models import SyncSnapshot
from transmission_client import TransmissionAdapter
from transport import DEFAULT_TIMEOUT, HttpTransport

CLIENT_TYPES = ("qbittorrent", "transmission")


def create_adapter(
    profile: Dict[str, Any],
    transport: Any = None,
    preserve_missing_sections: bool = True,
    timeout: float = DEFAULT_TIMEOUT,
) -> BaseAdapter:
    client_type = str(profile.get("type", "")).strip().lower()
    if client_type not in CLIENT_TYPES:
        raise ValueError(f"Unknown profile type: {profile.get('type')}")
    if transport is None:
        transport = HttpTransport(
            profile["url"],
            username=profile.get("user") or None,
            password=profile.get("password") or None,
            timeout=timeout,
        )

    if client_type == "qbittorrent":
        features = QbitFeatures.for_major(profile["api_major"]) if profile.get("api_major") else None
        return QBittorrentAdapter(transport, features=features, preserve_missing_sections=preserve_missing_sections)
    return TransmissionAdapter(
        transport, rpc_semver=profile.get("rpc_semver"), preserve_missing_sections=preserve_missing_sections
    )


class BackendSession:
    def __init__(
        self,
        polling: Optional[Dict[str, Any]] = None,
        scheduler: Any = None,
        adapter_factory: Callable[..., BaseAdapter] = create_adapter,
    ) -> None:
        self.polling = dict(DEFAULT_POLLING)
        self.polling.update(polling or {})
        self.scheduler = scheduler
        self.adapter_factory = adapter_factory

        self.generation = 0
        self.profile: Optional[Dict[str, Any]] = None
        self.adapter: Optional[BaseAdapter] = None
        self.driver: Optional[PollingDriver] = None
        self.snapshot = SyncSnapshot()
        self.visible = True

        self._lock = threading.RLock()
        self._mutations = 0
        self._owns_transport = False
        self._update_listeners: List[Callable[[SyncSnapshot], None]] = []
        self._fatal_listeners: List[Callable[[BaseException], None]] = []

    # ------------------------------------------------------------ listeners

    def add_update_listener(self, callback: Callable[[SyncSnapshot], None]) -> None:
        self._update_listeners.append(callback)

    def add_fatal_listener(self, callback: Callable[[BaseException], None]) -> None:
        self._fatal_listeners.append(callback)

    # ------------------------------------------------------------ lifecycle

    @property
    def connected(self) -> bool:
        return self.adapter is not None

    def connect(self, profile: Dict[str, Any], transport: Any = None, start: bool = True) -> BaseAdapter:
        """Build a fresh adapter/driver pair for ``profile``, replacing any current one."""
        self.disconnect()
        adapter = self.adapter_factory(
            profile,
            transport=transport,
            preserve_missing_sections=self.polling["preserve_missing_sections"],
            timeout=self.polling["request_timeout"],
        )
        with self._lock:
            self.generation += 1
            generation = self.generation
            self.profile = profile
            self.adapter = adapter
            self._owns_transport = transport is None
            self.driver = PollingDriver(
                fetch=adapter.fetch_list,
                on_update=lambda snap: self._on_update(generation, snap),
                on_fatal_error=lambda exc: self._on_fatal(generation, exc),
                should_skip=self.has_pending_mutations,
                base_interval=self.polling["base_interval"],
                max_interval=self.polling["max_interval"],
                circuit_breaker_threshold=self.polling["circuit_breaker_threshold"],
                circuit_breaker_delay=self.polling["circuit_breaker_delay"],
                scheduler=self.scheduler,
            )
            driver = self.driver
        logger.info("Connected to {} ({})", profile.get("name") or profile.get("url"), adapter.backend_name)
        if self.polling["pause_when_hidden"] and not self.visible:
            driver.set_visible(False)
        if start:
            driver.start()
        return adapter

    switch = connect

    def disconnect(self) -> None:
        with self._lock:
            driver = self.driver
            adapter = self.adapter
            owns_transport = self._owns_transport
            self.generation += 1
            self.driver = None
            self.adapter = None
            self.profile = None
            self.snapshot = SyncSnapshot()
            self._mutations = 0
            self._owns_transport = False
        if driver is not None:
            driver.stop()
        if adapter is not None:
            if owns_transport:
                self._close_transport(adapter)
            logger.info("Disconnected from backend")

    @staticmethod
    def _close_transport(adapter: Any) -> None:
        close = getattr(getattr(adapter, "transport", None), "close", None)
        if close is not None:
            close()

    def set_visible(self, visible: bool) -> None:
        self.visible = bool(visible)
        driver = self.driver
        if driver is not None and self.polling["pause_when_hidden"]:
            driver.set_visible(self.visible)

    def refresh(self) -> None:
        if self.driver is not None:
            self.driver.poll_now()

    # ------------------------------------------------------------ mutations

    def has_pending_mutations(self) -> bool:
        return self._mutations > 0

    def begin_mutation(self) -> None:
        with self._lock:
            self._mutations += 1

    def end_mutation(self) -> None:
        with self._lock:
            self._mutations = max(0, self._mutations - 1)

    @contextlib.contextmanager
    def mutation(self):
        """Hold off polling while a write is in flight so a stale list doesn't undo it."""
        self.begin_mutation()
        try:
            yield self.adapter
        finally:
            self.end_mutation()

    # ------------------------------------------------------------ callbacks

    def _on_update(self, generation: int, snapshot: SyncSnapshot) -> None:
        with self._lock:
            if generation != self.generation:
                logger.debug("Dropping result from superseded backend (generation {})", generation)
                return
            self.snapshot = snapshot
            listeners = list(self._update_listeners)
        for callback in listeners:
            callback(snapshot)

    def _on_fatal(self, generation: int, exc: BaseException) -> None:
        with self._lock:
            if generation != self.generation:
                return
            listeners = list(self._fatal_listeners)
        logger.error("Backend session needs re-authentication: {}", exc)
        for callback in listeners:
            callback(exc)
