from __future__ import annotations

from typing import Any

import pytest

from skytrack.exceptions import DetachedNodeError, PathIndexError, TypeMismatchError
from skytrack.state.history import MutationKind
from skytrack.state.nodes import ABSENT, KeyedMap, MapNode, RecordNode, SequenceNode
from skytrack.state.store import StateStore


def _store() -> StateStore:
    return StateStore(
        {
            "live": {"aircraft": KeyedMap(), "connectionStatus": "connecting"},
            "user": {"watchlist": ["abc123"], "geofences": [], "settings": {"units": "imperial"}},
        }
    )


def _recorder(store: StateStore, pattern: str) -> list[tuple[str, Any, Any]]:
    calls: list[tuple[str, Any, Any]] = []
    store.subscribe(pattern, lambda path, new, old: calls.append((path, new, old)))
    return calls


def test_get_returns_independent_clone() -> None:
    store = _store()
    settings = store.get("user.settings")
    settings["units"] = "metric"

    assert store.get("user.settings.units") == "imperial"


def test_get_missing_path_returns_absent() -> None:
    store = _store()
    assert store.get("user.nope") is ABSENT
    assert store.get("user.watchlist[5]") is ABSENT
    assert store.get("live.connectionStatus.deeper") is ABSENT
    assert not ABSENT


def test_set_creates_intermediate_records_and_notifies_target_only() -> None:
    store = _store()
    calls = _recorder(store, "*")

    store.set("ui.map.zoom", 7)

    assert store.get("ui") == {"map": {"zoom": 7}}
    assert calls == [("ui.map.zoom", 7, ABSENT)]


def test_set_through_scalar_raises_type_mismatch() -> None:
    store = _store()
    with pytest.raises(TypeMismatchError):
        store.set("live.connectionStatus.detail", 1)
    assert store.get("live.connectionStatus") == "connecting"


def test_set_index_into_record_raises_type_mismatch() -> None:
    store = _store()
    with pytest.raises(TypeMismatchError):
        store.set(("user", "settings", 0), "x")


def test_set_sequence_index_out_of_range() -> None:
    store = _store()
    with pytest.raises(PathIndexError):
        store.set("user.watchlist[3]", "def456")


def test_setting_absent_deletes_key() -> None:
    store = _store()
    calls = _recorder(store, "user.settings.*")

    store.set("user.settings.units", ABSENT)

    assert store.get("user.settings") == {}
    assert calls == [("user.settings.units", ABSENT, "imperial")]
    assert store.get_history()[-1].kind == MutationKind.DELETE


def test_stored_value_is_copied_on_insert() -> None:
    store = _store()
    region = {"id": "r1", "name": "Base"}
    store.node("user.geofences").append(region)
    region["name"] = "Changed"

    assert store.get("user.geofences[0].name") == "Base"


def test_containers_are_wrapped_by_kind() -> None:
    store = _store()
    assert isinstance(store.node("live.aircraft"), MapNode)
    assert isinstance(store.node("user.settings"), RecordNode)
    assert isinstance(store.node("user.watchlist"), SequenceNode)
    assert isinstance(store.get("live.aircraft"), KeyedMap)


def test_nested_wrappers_carry_their_own_path() -> None:
    store = _store()
    store.set("user.geofences", [{"id": "r1", "alerts": {"on_enter": True}}])

    alerts = store.node("user.geofences[0].alerts")
    assert alerts.path_str == "user.geofences[0].alerts"


def test_node_item_write_notifies_at_element_path() -> None:
    store = _store()
    calls = _recorder(store, "user.*")

    store.node("user.settings")["units"] = "metric"

    assert calls == [("user.settings.units", "metric", "imperial")]


def test_bulk_sequence_operations_notify_once_at_sequence_path() -> None:
    store = _store()
    calls = _recorder(store, "user.watchlist")
    watchlist = store.node("user.watchlist")

    watchlist.extend(["b", "c", "d"])
    watchlist.sort()
    watchlist.pop(0)

    assert [path for path, _new, _old in calls] == ["user.watchlist"] * 3
    assert calls[0][1] == ["abc123", "b", "c", "d"]
    assert calls[0][2] == ["abc123"]
    assert store.get("user.watchlist") == ["b", "c", "d"]
    kinds = [entry.kind for entry in store.get_history()]
    assert kinds == [MutationKind.APPEND, MutationKind.REORDER, MutationKind.REMOVE]


def test_map_update_notifies_once() -> None:
    store = _store()
    calls = _recorder(store, "live.*")

    store.node("live.aircraft").update({"a1": {"hex": "a1"}, "b2": {"hex": "b2"}})

    assert len(calls) == 1
    assert calls[0][0] == "live.aircraft"
    assert set(calls[0][1]) == {"a1", "b2"}


def test_removing_element_retags_following_siblings() -> None:
    store = _store()
    store.set("user.geofences", [{"id": "r1"}, {"id": "r2"}, {"id": "r3"}])
    third = store.node("user.geofences[2]")

    store.node("user.geofences").pop(0)

    assert third.path_str == "user.geofences[1]"
    calls = _recorder(store, "*")
    third["name"] = "renamed"
    assert calls[0][0] == "user.geofences[1].name"
    assert store.get("user.geofences[1]") == {"id": "r3", "name": "renamed"}


def test_replaced_node_is_detached() -> None:
    store = _store()
    settings = store.node("user.settings")

    store.set("user.settings", {"units": "metric"})

    assert not settings.attached
    with pytest.raises(DetachedNodeError):
        settings["units"] = "nautical"
    assert store.get("user.settings.units") == "metric"


def test_existing_node_inserted_elsewhere_is_copied() -> None:
    store = _store()
    settings = store.node("user.settings")

    store.set("user.backup", settings)
    store.set("user.settings.units", "metric")

    assert store.get("user.backup") == {"units": "imperial"}
    assert store.node("user.backup") is not settings


def test_set_empty_path_rejected() -> None:
    store = _store()
    with pytest.raises(ValueError):
        store.set("", {})


def test_get_state_is_a_deep_clone() -> None:
    store = _store()
    state = store.get_state()
    state["user"]["watchlist"].append("zzz")

    assert store.get("user.watchlist") == ["abc123"]


def test_named_mutations_commit() -> None:
    store = _store()
    store.register_mutation("select", lambda s, hex_code: s.set("ui.selectedAircraftHex", hex_code))

    store.commit("select", "abc123")
    store.commit("unknown")

    assert store.get("ui.selectedAircraftHex") == "abc123"


def test_reset_drops_subscribers_and_history() -> None:
    store = _store()
    calls = _recorder(store, "*")
    store.set("a", 1)

    store.reset({"b": 2})
    store.set("c", 3)

    assert len(calls) == 1
    assert store.get_state() == {"b": 2, "c": 3}
    assert [entry.path for entry in store.get_history()] == ["c"]


def test_update_with_bad_key_leaves_node_untouched() -> None:
    store = _store()
    calls = _recorder(store, "*")
    settings = store.node("user.settings")

    with pytest.raises(TypeMismatchError):
        settings.update({"units": "metric", 3: "bad"})

    assert store.get("user.settings") == {"units": "imperial"}
    assert calls == []
    assert store.get_history() == []
