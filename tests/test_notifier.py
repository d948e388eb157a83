from __future__ import annotations

from typing import Any

from skytrack.exceptions import ReentrantWriteError, SkytrackError, SubscriberError
from skytrack.state.notifier import ChangeNotifier
from skytrack.state.store import StateStore


def test_dispatch_order_exact_global_then_prefixes_nearest_first() -> None:
    notifier = ChangeNotifier()
    order: list[str] = []
    notifier.subscribe("a.*", lambda *_: order.append("a.*"))
    notifier.subscribe("a.b.*", lambda *_: order.append("a.b.*"))
    notifier.subscribe("*", lambda *_: order.append("*"))
    notifier.subscribe("a.b.c", lambda *_: order.append("exact-1"))
    notifier.subscribe("a.b.c", lambda *_: order.append("exact-2"))
    notifier.subscribe("x.*", lambda *_: order.append("x.*"))

    delivered = notifier.notify("a.b.c", 1, 0)

    assert order == ["exact-1", "exact-2", "*", "a.b.*", "a.*"]
    assert delivered == 5


def test_prefix_pattern_receives_descendants_and_itself() -> None:
    store = StateStore({"a": {"b": {}}})
    seen: list[str] = []
    store.subscribe("a.b.*", lambda path, _new, _old: seen.append(path))

    store.set("a.b.c", 1)
    store.set("a.b", {"d": 2})
    store.set("a.x", 3)

    assert seen == ["a.b.c", "a.b"]


def test_each_callback_gets_its_own_clone() -> None:
    notifier = ChangeNotifier()
    received: list[Any] = []

    def mutate(_path: str, new: Any, _old: Any) -> None:
        new["changed"] = True
        received.append(new)

    notifier.subscribe("*", mutate)
    notifier.subscribe("*", lambda _path, new, _old: received.append(new))
    value = {"v": 1}

    notifier.notify("p", value, None)

    assert value == {"v": 1}
    assert received[1] == {"v": 1}


def test_failing_subscriber_is_isolated_and_reported() -> None:
    errors: list[SkytrackError] = []
    store = StateStore(on_error=errors.append)
    later: list[str] = []

    def boom(_path: str, _new: Any, _old: Any) -> None:
        raise RuntimeError("boom")

    store.subscribe("*", boom)
    store.subscribe("*", lambda path, _new, _old: later.append(path))

    store.set("a", 1)

    assert later == ["a"]
    assert store.get("a") == 1
    assert len(errors) == 1
    assert isinstance(errors[0], SubscriberError)
    assert errors[0].path == "a"
    assert isinstance(errors[0].__cause__, RuntimeError)


def test_cancel_during_dispatch_suppresses_pending_delivery() -> None:
    notifier = ChangeNotifier()
    calls: list[str] = []
    second = None

    def first(*_: Any) -> None:
        calls.append("first")
        assert second is not None
        second.cancel()

    notifier.subscribe("p", first)
    second = notifier.subscribe("p", lambda *_: calls.append("second"))

    notifier.notify("p", 1, 0)

    assert calls == ["first"]
    assert notifier.subscriber_count == 1


def test_handle_is_callable_and_cancel_is_idempotent() -> None:
    notifier = ChangeNotifier()
    calls: list[str] = []
    handle = notifier.subscribe("p", lambda *_: calls.append("p"))

    handle()
    handle.cancel()
    notifier.notify("p", 1, 0)

    assert calls == []
    assert not handle.active


def test_direct_node_write_to_dispatching_path_is_rejected() -> None:
    errors: list[SkytrackError] = []
    store = StateStore({"user": {"settings": {"units": "imperial"}}}, on_error=errors.append)

    def rewrite(_path: str, _new: Any, _old: Any) -> None:
        store.node("user.settings")["units"] = "metric"

    store.subscribe("user.settings.units", rewrite)
    store.set("user.settings.units", "nautical")

    assert store.get("user.settings.units") == "nautical"
    assert isinstance(errors[0].__cause__, ReentrantWriteError)
