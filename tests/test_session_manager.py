import pytest

from backend_errors import AuthError
from clients import QBittorrentAdapter
from fakes import FakeTransport, ManualScheduler
from polling import PollState
from session_manager import BackendSession, create_adapter
from torrent_models import SyncSnapshot
from transmission_client import JSONRPC2, TransmissionAdapter
from transport import HttpTransport


class FakeAdapter:
    backend_name = "fake"

    def __init__(self, profile):
        self.profile = profile
        self.fetches = 0
        self.error = None

    def fetch_list(self):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return SyncSnapshot(tags=(self.profile["name"],))


class FakeClosable:
    def __init__(self):
        self.closed = False

    def close(self):
        self.closed = True


class FakeFactory:
    def __init__(self):
        self.built = []
        self.kwargs = []

    def __call__(self, profile, **kwargs):
        adapter = FakeAdapter(profile)
        adapter.transport = kwargs.get("transport") or FakeClosable()
        self.built.append(adapter)
        self.kwargs.append(kwargs)
        return adapter


def make_session(**polling):
    scheduler = ManualScheduler()
    factory = FakeFactory()
    session = BackendSession(polling=polling, scheduler=scheduler, adapter_factory=factory)
    return session, scheduler, factory


def test_connect_starts_polling_and_publishes_snapshots():
    session, scheduler, factory = make_session()
    seen = []
    session.add_update_listener(seen.append)
    session.connect({"name": "a", "url": "http://a"})
    assert session.connected
    assert seen[0].tags == ("a",)
    assert session.snapshot.tags == ("a",)
    scheduler.advance(2.0)
    assert factory.built[0].fetches == 2


def test_factory_receives_polling_settings():
    session, _, factory = make_session(request_timeout=3.0, preserve_missing_sections=False)
    session.connect({"name": "a"}, transport="t", start=False)
    assert factory.kwargs == [{"transport": "t", "preserve_missing_sections": False, "timeout": 3.0}]
    assert factory.built[0].fetches == 0


def test_switch_stops_old_driver_and_clears_state():
    session, scheduler, factory = make_session()
    session.connect({"name": "a"})
    old_driver = session.driver
    session.switch({"name": "b"})

    assert old_driver.state == PollState.IDLE
    assert session.snapshot.tags == ("b",)
    scheduler.advance(2.0)
    assert factory.built[0].fetches == 1
    assert factory.built[1].fetches == 2


def test_late_result_from_previous_backend_is_dropped():
    session, _, _ = make_session()
    session.connect({"name": "a"}, start=False)
    stale_update = session.driver.on_update
    session.switch({"name": "b"}, start=False)
    seen = []
    session.add_update_listener(seen.append)

    stale_update(SyncSnapshot(tags=("a",)))
    assert seen == []
    assert session.snapshot.tags == ()


def test_switch_from_inside_a_fetch_discards_that_fetch():
    session, _, factory = make_session()
    seen = []
    session.add_update_listener(seen.append)
    session.connect({"name": "a"}, start=False)
    adapter = factory.built[0]

    original = adapter.fetch_list

    def fetch_and_switch():
        session.switch({"name": "b"}, start=False)
        return original()

    adapter.fetch_list = fetch_and_switch
    session.driver.fetch = fetch_and_switch
    session.driver.start()
    assert seen == []
    assert session.profile == {"name": "b"}


def test_pending_mutation_skips_polling():
    session, scheduler, factory = make_session()
    session.connect({"name": "a"})
    with session.mutation() as adapter:
        assert adapter is factory.built[0]
        scheduler.advance(2.0)
        assert adapter.fetches == 1
    scheduler.advance(2.0)
    assert factory.built[0].fetches == 2


def test_fatal_error_notifies_listeners():
    session, scheduler, factory = make_session()
    errors = []
    session.add_fatal_listener(errors.append)
    session.connect({"name": "a"}, start=False)
    factory.built[0].error = AuthError("expired")
    session.driver.start()
    assert len(errors) == 1
    assert session.driver.state == PollState.STOPPED
    scheduler.advance(120.0)
    assert factory.built[0].fetches == 1


def test_hidden_session_pauses_new_driver():
    session, _, factory = make_session()
    session.set_visible(False)
    session.connect({"name": "a"})
    assert session.driver.state == PollState.PAUSED
    assert factory.built[0].fetches == 0
    session.set_visible(True)
    assert factory.built[0].fetches == 1


def test_visibility_ignored_when_pause_disabled():
    session, _, _ = make_session(pause_when_hidden=False)
    session.connect({"name": "a"})
    session.set_visible(False)
    assert session.driver.state == PollState.POLLING


def test_refresh_polls_immediately():
    session, _, factory = make_session()
    session.connect({"name": "a"})
    session.refresh()
    assert factory.built[0].fetches == 2


def test_disconnect_is_safe_twice():
    session, scheduler, _ = make_session()
    session.connect({"name": "a"})
    session.disconnect()
    session.disconnect()
    assert not session.connected
    assert scheduler.pending == []


def test_disconnect_and_switch_close_session_built_transport():
    session, _, factory = make_session()
    session.connect({"name": "a"})
    session.switch({"name": "b"})
    assert factory.built[0].transport.closed is True
    assert factory.built[1].transport.closed is False
    session.disconnect()
    assert factory.built[1].transport.closed is True


def test_caller_supplied_transport_is_left_open():
    session, _, factory = make_session()
    transport = FakeClosable()
    session.connect({"name": "a"}, transport=transport)
    session.disconnect()
    assert factory.built[0].transport is transport
    assert transport.closed is False


# ------------------------------------------------------------ create_adapter


def test_create_qbittorrent_adapter():
    adapter = create_adapter({"type": "qBittorrent", "api_major": 5}, transport=FakeTransport())
    assert isinstance(adapter, QBittorrentAdapter)
    assert adapter.features.pause_endpoint == "stop"


def test_create_transmission_adapter():
    adapter = create_adapter({"type": "transmission", "rpc_semver": "6.0.0"}, transport=FakeTransport())
    assert isinstance(adapter, TransmissionAdapter)
    assert adapter.protocol == JSONRPC2


def test_create_adapter_builds_http_transport():
    adapter = create_adapter(
        {"type": "transmission", "url": "http://localhost:9091/transmission/rpc", "user": "u", "password": "p"},
        timeout=4.0,
    )
    assert isinstance(adapter.transport, HttpTransport)
    assert adapter.transport.timeout == 4.0
    assert adapter.transport.session.auth == ("u", "p")


def test_create_adapter_rejects_unknown_type():
    with pytest.raises(ValueError):
        create_adapter({"type": "deluge"}, transport=FakeTransport())
