import pytest

from backend_errors import ValidationError
from merge_engine import MergeEngine
from torrent_models import Category, TorrentState


def make_engine(**torrents):
    engine = MergeEngine()
    engine.apply({"torrents": torrents, "categories": {}, "tags": []}, "snapshot")
    return engine


def test_diff_overwrites_present_fields_and_keeps_absent_ones():
    engine = make_engine(h1={"name": "one", "dlspeed": 50, "upspeed": 10})
    snap = engine.apply({"torrents": {"h1": {"dlspeed": 100}}}, "diff")
    assert snap.torrents["h1"].dlspeed == 100
    assert snap.torrents["h1"].upspeed == 10
    assert snap.torrents["h1"].name == "one"


def test_explicit_zero_false_and_empty_values_overwrite():
    engine = make_engine(h1={"dlspeed": 50, "category": "movies", "tags": "a,b", "save_path": "/x"})
    snap = engine.apply(
        {"torrents": {"h1": {"dlspeed": 0, "category": "", "tags": "", "save_path": ""}}}, "diff"
    )
    t = snap.torrents["h1"]
    assert t.dlspeed == 0
    assert t.category is None
    assert t.tags == ()
    assert t.save_path == ""


def test_reapplying_a_diff_is_idempotent():
    engine = make_engine(h1={"name": "one", "progress": 0.1}, h2={"name": "two"})
    diff = {
        "torrents": {"h1": {"progress": 0.5, "total_seeds": 3}, "h3": {"name": "three"}},
        "torrents_removed": ["h2"],
        "categories_changed": {"tv": {"save_path": "/tv"}},
        "tags_added": ["new"],
        "server_state": {"dl_info_speed": 9},
    }
    first = engine.apply(diff, "diff")
    second = engine.apply(diff, "diff")
    assert dict(first.torrents) == dict(second.torrents)
    assert dict(first.categories) == dict(second.categories)
    assert first.tags == second.tags
    assert first.server_state == second.server_state


def test_removal_list_deletes_ids():
    engine = make_engine(h1={"name": "one"}, h2={"name": "two"})
    snap = engine.apply({"torrents_removed": ["h2", "missing"]}, "diff")
    assert set(snap.torrents) == {"h1"}


def test_new_torrent_in_diff_is_built_whole_from_defaults():
    engine = MergeEngine()
    snap = engine.apply({"torrents": {"h9": {"dlspeed": 5}}}, "diff")
    t = snap.torrents["h9"]
    assert t.id == "h9"
    assert t.dlspeed == 5
    assert t.name == ""
    assert t.eta == -1
    assert t.num_seeds == 0


def test_snapshot_replaces_torrent_set_but_merges_fields():
    engine = make_engine(h1={"name": "one", "upspeed": 7}, h2={"name": "two"})
    snap = engine.apply({"torrents": {"h1": {"dlspeed": 3}}}, "snapshot")
    assert set(snap.torrents) == {"h1"}
    assert snap.torrents["h1"].upspeed == 7
    assert snap.torrents["h1"].dlspeed == 3


def test_snapshot_missing_categories_keeps_cached_categories():
    engine = MergeEngine()
    engine.apply({"torrents": {}, "categories": {"movies": {"save_path": "/m"}}, "tags": ["x"]}, "snapshot")
    snap = engine.apply({"torrents": {}}, "snapshot")
    assert dict(snap.categories) == {"movies": Category("movies", "/m")}
    assert snap.tags == ("x",)


def test_snapshot_missing_sections_cleared_when_policy_disabled():
    engine = MergeEngine(preserve_missing_sections=False)
    engine.apply({"torrents": {"h1": {}}, "categories": {"movies": {}}, "tags": ["x"]}, "snapshot")
    snap = engine.apply({}, "snapshot")
    assert dict(snap.torrents) == {}
    assert dict(snap.categories) == {}
    assert snap.tags == ()


def test_categories_and_tags_incremental_keys():
    engine = MergeEngine()
    engine.apply({"categories": {"a": {"save_path": "/a"}, "b": {}}, "tags": ["t1", "t2"]}, "snapshot")
    snap = engine.apply(
        {
            "categories_changed": {"c": {"save_path": "/c"}, "a": {}},
            "categories_removed": ["b"],
            "tags_added": ["t3", "t1"],
            "tags_removed": ["t2"],
        },
        "diff",
    )
    assert set(snap.categories) == {"a", "c"}
    # a category patch without save_path keeps the known path
    assert snap.categories["a"].save_path == "/a"
    assert snap.tags == ("t1", "t3")


def test_authoritative_categories_in_diff_replace_cache():
    engine = MergeEngine()
    engine.apply({"categories": {"a": {}, "b": {}}}, "snapshot")
    snap = engine.apply({"categories": {"b": {}}}, "diff")
    assert set(snap.categories) == {"b"}


def test_server_state_merges_per_field():
    engine = MergeEngine()
    engine.apply({"server_state": {"dl_info_speed": 10, "dl_rate_limit": 100, "use_alt_speed": True}}, "diff")
    snap = engine.apply({"server_state": {"dl_info_speed": 0, "connection_status": "firewalled"}}, "diff")
    state = snap.server_state
    assert state.dl_info_speed == 0
    assert state.dl_rate_limit == 100
    assert state.use_alt_speed is True
    assert state.connection_status == "firewalled"
    assert state.up_info_speed is None


def test_unknown_connection_status_becomes_disconnected():
    engine = MergeEngine()
    snap = engine.apply({"server_state": {"connection_status": "weird"}}, "diff")
    assert snap.server_state.connection_status == "disconnected"


def test_swarm_breakdown_drives_best_available_counts():
    engine = MergeEngine()
    snap = engine.apply(
        {"torrents": {"h1": {"connected_seeds": 2, "total_seeds": -1, "connected_peers": -1}}}, "diff"
    )
    t = snap.torrents["h1"]
    assert t.total_seeds is None
    assert t.connected_seeds == 2
    assert t.num_seeds == 2
    assert t.connected_peers is None
    assert t.num_peers == 0

    snap = engine.apply({"torrents": {"h1": {"total_seeds": 40}}}, "diff")
    assert snap.torrents["h1"].num_seeds == 40
    assert snap.torrents["h1"].connected_seeds == 2


def test_legacy_swarm_fields_are_last_resort():
    engine = MergeEngine()
    snap = engine.apply({"torrents": {"h1": {"num_seeds": 4, "num_peers": 6}}}, "diff")
    assert snap.torrents["h1"].num_seeds == 4
    assert snap.torrents["h1"].num_peers == 6
    snap = engine.apply({"torrents": {"h1": {"connected_peers": 1}}}, "diff")
    assert snap.torrents["h1"].num_peers == 1
    assert snap.torrents["h1"].num_seeds == 4


def test_legacy_swarm_fields_update_independently():
    engine = MergeEngine()
    engine.apply({"torrents": {"h1": {"num_seeds": 4, "num_peers": 6}}}, "diff")
    snap = engine.apply({"torrents": {"h1": {"num_peers": "bogus"}}}, "diff")
    assert snap.torrents["h1"].num_seeds == 4
    assert snap.torrents["h1"].num_peers == 6
    snap = engine.apply({"torrents": {"h1": {"num_seeds": 9}}}, "diff")
    assert snap.torrents["h1"].num_seeds == 9
    assert snap.torrents["h1"].num_peers == 6


def test_malformed_fields_fall_back_to_cached_value():
    engine = make_engine(h1={"size": 100, "progress": 0.5, "state": "seeding"})
    snap = engine.apply({"torrents": {"h1": {"size": "lots", "progress": 7, "state": "bogus"}}}, "diff")
    t = snap.torrents["h1"]
    assert t.size == 100
    assert t.progress == 1.0
    assert t.state == TorrentState.ERROR


def test_numeric_strings_are_coerced():
    engine = MergeEngine()
    snap = engine.apply({"torrents": {"h1": {"size": "2048", "ratio": "1.5", "eta": "8640000"}}}, "diff")
    t = snap.torrents["h1"]
    assert t.size == 2048
    assert t.ratio == 1.5
    assert t.eta == -1


def test_non_mapping_torrent_entry_is_skipped():
    engine = make_engine(h1={"name": "one"})
    snap = engine.apply({"torrents": {"h1": "garbage", "h2": {"name": "two"}}}, "snapshot")
    assert snap.torrents["h1"].name == "one"
    assert snap.torrents["h2"].name == "two"


def test_null_section_is_treated_as_absent():
    engine = make_engine(h1={"name": "one"})
    snap = engine.apply({"torrents": None}, "diff")
    assert snap.torrents["h1"].name == "one"


@pytest.mark.parametrize(
    "payload",
    [
        [],
        "nope",
        {"torrents": ["h1"]},
        {"torrents_removed": "h1"},
        {"server_state": 5},
        {"tags": "a,b"},
    ],
)
def test_structurally_unusable_payload_raises(payload):
    engine = make_engine(h1={"name": "one"})
    with pytest.raises(ValidationError):
        engine.apply(payload, "diff")
    assert engine.get_torrent("h1").name == "one"


def test_invalid_mode_raises():
    with pytest.raises(ValueError):
        MergeEngine().apply({}, "partial")


def test_returned_snapshot_is_read_only():
    engine = make_engine(h1={"name": "one"})
    snap = engine.snapshot()
    with pytest.raises(TypeError):
        snap.torrents["h2"] = None
    engine.apply({"torrents": {"h2": {}}}, "diff")
    assert "h2" not in snap.torrents


def test_clear_empties_cache():
    engine = make_engine(h1={"name": "one"})
    engine.clear()
    assert dict(engine.snapshot().torrents) == {}
    assert "h1" not in engine
