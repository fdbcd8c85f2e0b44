from types import MappingProxyType

from list_torrents import format_rows, format_size, format_swarm, format_time, resolve_profile
from torrent_models import SyncSnapshot, TorrentState, UnifiedTorrent


def test_format_size():
    assert format_size(100) == "100.00 B"
    assert format_size(1024) == "1.00 KB"
    assert format_size(1024 * 1024) == "1.00 MB"
    assert format_size(1024 * 1024 * 1024) == "1.00 GB"
    assert format_size(1024 * 1024 * 1024 * 1024) == "1.00 TB"


def test_format_time():
    assert format_time(-1) == "∞"
    assert format_time(8640000) == "∞"
    assert format_time(30) == "30s"
    assert format_time(90) == "1m 30s"
    assert format_time(3600) == "1h 0m 0s"
    assert format_time(3665) == "1h 1m 5s"
    assert format_time(86400) == "1d 0h 0m"
    assert format_time(90065) == "1d 1h 1m"


def test_format_swarm():
    assert format_swarm(3, None) == "3"
    assert format_swarm(3, 40) == "3 (40)"


def test_format_rows_sorted_by_name():
    snapshot = SyncSnapshot(torrents=MappingProxyType({
        "h2": UnifiedTorrent(id="h2", name="beta", state=TorrentState.SEEDING, progress=1.0, size=1024),
        "h1": UnifiedTorrent(id="h1", name="Alpha", state=TorrentState.PAUSED, progress=0.5, eta=90, num_seeds=2),
    }))
    header, rule, first, second = format_rows(snapshot)
    assert header.startswith("Name | Size")
    assert set(rule) == {"-"}
    assert first == "Alpha | 0.00 B | Paused | 50.0% | 1m 30s | 2 | 0"
    assert second.startswith("beta | 1.00 KB | Seeding | 100.0% | ∞")


class FakeConfig:
    def __init__(self, profiles, default=""):
        self.profiles = profiles
        self.default = default

    def get_profiles(self):
        return self.profiles

    def get_default_profile_id(self):
        return self.default


def test_resolve_profile():
    config = FakeConfig({"p1": {"name": "one"}, "p2": {"name": "two"}}, default="p1")
    assert resolve_profile(config) == {"name": "one"}
    assert resolve_profile(config, "p2") == {"name": "two"}
    assert resolve_profile(config, "missing") is None
    assert resolve_profile(FakeConfig({})) is None
