"""Path-addressable reactive state store.

This is the only owner of live state. Consumers read clones, write through
:meth:`StateStore.set` / :meth:`StateStore.delete` (or live node handles
from :meth:`StateStore.node`), and observe changes with
:meth:`StateStore.subscribe`.

Everything here is synchronous: a write, its history entry and the whole
notification fan-out complete before the write call returns.

Reentrancy
----------
A subscriber may write while a dispatch is in flight. The store tracks the
paths currently being dispatched and applies this policy to store writes:

* writes to a path related to an in-flight path (same, ancestor or
  descendant) are deferred;
* unrelated writes dispatch synchronously while the nesting depth is below
  ``max_dispatch_depth`` and are deferred beyond it.

Deferred writes run in FIFO order once the outermost dispatch returns.
Writes deferred while draining run in the next round; after
``max_deferred_rounds`` rounds anything still pending is dropped with a
warning, which bounds self-triggering subscribers. Writes through live node
handles cannot be queued and raise :class:`ReentrantWriteError` instead.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from typing import Any

from skytrack._redact import summarize_for_log
from skytrack.exceptions import PathIndexError, ReentrantWriteError, SkytrackError, TypeMismatchError
from skytrack.state.history import DEFAULT_HISTORY_CAPACITY, HistoryEntry, MutationHistory, MutationKind
from skytrack.state.nodes import (
    ABSENT,
    MapNode,
    RecordNode,
    SequenceNode,
    StateNode,
    _KeyedNode,
    clone_value,
)
from skytrack.state.notifier import ChangeNotifier, ErrorHook, SubscriberCallback, Subscription
from skytrack.state.paths import PathLike, PathTuple, format_path, is_related, parse_path

_logger = logging.getLogger(__name__)

DEFAULT_MAX_DISPATCH_DEPTH = 8
DEFAULT_MAX_DEFERRED_ROUNDS = 8


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StateStore:
    """Reactive state tree addressable by structured paths.

    Parameters
    ----------
    initial_state : mapping, optional
        Initial contents of the root record.
    history : MutationHistory, optional
        Audit log receiving every accepted mutation. Defaults to a new
        history with ``history_capacity`` entries.
    notifier : ChangeNotifier, optional
        Subscription registry. Defaults to a new notifier using ``on_error``.
    on_error : callable, optional
        Hook receiving isolated failures: subscriber errors and deferred
        writes that could not be applied.
    """

    def __init__(
        self,
        initial_state: Mapping[str, Any] | None = None,
        *,
        history: MutationHistory | None = None,
        history_capacity: int = DEFAULT_HISTORY_CAPACITY,
        notifier: ChangeNotifier | None = None,
        on_error: ErrorHook | None = None,
        clock: Callable[[], datetime] = _utcnow,
        max_dispatch_depth: int = DEFAULT_MAX_DISPATCH_DEPTH,
        max_deferred_rounds: int = DEFAULT_MAX_DEFERRED_ROUNDS,
    ) -> None:
        self._clock = clock
        self._on_error = on_error
        self._history = history if history is not None else MutationHistory(history_capacity, clock=clock)
        self._notifier = notifier if notifier is not None else ChangeNotifier(on_error=on_error)
        self._max_dispatch_depth = max_dispatch_depth
        self._max_deferred_rounds = max_deferred_rounds
        self._dispatching: list[PathTuple] = []
        self._deferred: deque[tuple[PathTuple, Any]] = deque()
        self._draining = False
        self._mutations: dict[str, Callable[[StateStore, Any], None]] = {}
        self._root = RecordNode(dict(initial_state or {}), (), self)
        _logger.debug("State store initialized with keys %s", self._root.keys())

    # ------------------------------------------------------------------
    # Mutation sink (called by nodes)
    # ------------------------------------------------------------------

    def _must_defer(self, path: PathTuple) -> bool:
        if not self._dispatching:
            return False
        if len(self._dispatching) >= self._max_dispatch_depth:
            return True
        return any(is_related(path, active) for active in self._dispatching)

    def admit_write(self, path: PathTuple) -> None:
        if self._must_defer(path):
            raise ReentrantWriteError(
                f"Direct write to {format_path(path)} from a notification callback; use StateStore.set to defer it",
                path=format_path(path),
            )

    def emit(self, kind: MutationKind, path: PathTuple, new_value: Any, old_value: Any) -> None:
        path_str = format_path(path)
        self._history.record_mutation(kind, path_str, new_value, old_value)
        self._dispatching.append(path)
        try:
            self._notifier.notify(path_str, new_value, old_value)
        finally:
            self._dispatching.pop()
        if not self._dispatching:
            self._drain_deferred()

    def _drain_deferred(self) -> None:
        if self._draining or not self._deferred:
            return
        self._draining = True
        try:
            rounds = 0
            while self._deferred:
                if rounds >= self._max_deferred_rounds:
                    first_path, first_value = self._deferred[0]
                    _logger.warning(
                        "Dropping %d deferred write(s) after %d rounds; first: %s = %s",
                        len(self._deferred),
                        rounds,
                        format_path(first_path),
                        summarize_for_log(first_value),
                    )
                    self._deferred.clear()
                    break
                batch = list(self._deferred)
                self._deferred.clear()
                for path, value in batch:
                    try:
                        self._apply(path, value)
                    except SkytrackError as err:
                        _logger.warning(
                            "Deferred write to %s failed: %s (value %s)",
                            format_path(path),
                            err,
                            summarize_for_log(value),
                        )
                        self._report(err)
                rounds += 1
        finally:
            self._draining = False

    def _report(self, err: SkytrackError) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(err)
        except Exception:
            _logger.exception("Error hook failed while reporting %s", type(err).__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _resolve(self, path: PathTuple) -> Any:
        current: Any = self._root
        for segment in path:
            if not isinstance(current, StateNode):
                return ABSENT
            current = current._lookup(segment)
            if current is ABSENT:
                return ABSENT
        return current

    def get(self, path: PathLike) -> Any:
        """Cloned value at *path*, or ``ABSENT``."""
        return clone_value(self._resolve(parse_path(path)))

    def has(self, path: PathLike) -> bool:
        return self._resolve(parse_path(path)) is not ABSENT

    def get_state(self) -> dict[str, Any]:
        """Clone of the whole tree."""
        return self._root.to_value()

    def get_state_at(self, path: PathLike) -> Any:
        return self.get(path)

    def node(self, path: PathLike = ()) -> StateNode:
        """Live wrapper of the container at *path* (write handle).

        Values read through the handle are still clones; mutations through it
        are recorded and notified like store writes.
        """
        parsed = parse_path(path)
        target = self._resolve(parsed)
        if target is ABSENT:
            raise KeyError(format_path(parsed))
        if not isinstance(target, StateNode):
            raise TypeMismatchError(f"{format_path(parsed)} holds a scalar, not a container", path=format_path(parsed))
        return target

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, path: PathLike, value: Any) -> None:
        """Write *value* at *path*, creating intermediate records.

        Writing ``ABSENT`` deletes. Raises :class:`TypeMismatchError` when a
        segment passes through a scalar or does not fit its container.
        """
        parsed = parse_path(path)
        if not parsed:
            raise ValueError("Cannot replace the root record with set(); use reset()")
        # Removing a sequence element shifts its siblings, so guard the sequence too.
        guarded = parsed[:-1] if value is ABSENT and isinstance(parsed[-1], int) else parsed
        if self._must_defer(guarded):
            _logger.debug("Deferring reentrant write to %s", format_path(parsed))
            self._deferred.append((parsed, value))
            return
        self._apply(parsed, value)

    def set_state(self, path: PathLike, value: Any) -> None:
        self.set(path, value)

    def delete(self, path: PathLike) -> None:
        self.set(path, ABSENT)

    def _apply(self, path: PathTuple, value: Any) -> None:
        parent = self._parent_for_write(path, create=value is not ABSENT)
        if parent is None:
            return
        key = path[-1]
        if isinstance(parent, _KeyedNode):
            if not isinstance(key, str):
                raise TypeMismatchError(
                    f"Cannot index {parent.kind} at {parent.path_str or '<root>'} with {key!r}",
                    path=format_path(path),
                )
            if value is ABSENT:
                parent._remove(key)
            else:
                parent._assign(key, value)
            return
        if isinstance(parent, SequenceNode):
            if isinstance(key, bool) or not isinstance(key, int):
                raise TypeMismatchError(
                    f"Cannot index sequence at {parent.path_str} with {key!r}", path=format_path(path)
                )
            if not 0 <= key < len(parent):
                if value is ABSENT:
                    return
                raise PathIndexError(
                    f"Index {key} out of range for sequence at {parent.path_str} (len {len(parent)})",
                    path=format_path(path),
                )
            parent._assign(key, value)
            return
        raise TypeMismatchError(f"Unsupported node at {parent.path_str}", path=format_path(path))

    def _parent_for_write(self, path: PathTuple, *, create: bool) -> StateNode | None:
        current: StateNode = self._root
        for depth, segment in enumerate(path[:-1]):
            child = current._lookup(segment)
            if child is ABSENT:
                if not create:
                    return None
                if isinstance(current, _KeyedNode) and isinstance(segment, str):
                    child = current._ensure_record(segment)
                elif isinstance(current, SequenceNode):
                    raise PathIndexError(
                        f"Index {segment!r} out of range for sequence at {current.path_str}",
                        path=format_path(path[: depth + 1]),
                    )
                else:
                    raise TypeMismatchError(
                        f"Cannot index {current.kind} at {current.path_str or '<root>'} with {segment!r}",
                        path=format_path(path[: depth + 1]),
                    )
            if not isinstance(child, StateNode):
                raise TypeMismatchError(
                    f"Cannot write {format_path(path)}: {format_path(path[: depth + 1])} is a scalar",
                    path=format_path(path),
                )
            current = child
        return current

    def reset(self, state: Mapping[str, Any] | None = None) -> None:
        """Replace the whole tree and drop history and subscribers."""
        self._root._detach()
        self._root = RecordNode(dict(state or {}), (), self)
        self._history.clear()
        self._notifier.clear()
        self._mutations.clear()
        self._deferred.clear()

    # ------------------------------------------------------------------
    # Subscriptions, history, named mutations
    # ------------------------------------------------------------------

    def subscribe(self, pattern: str, callback: SubscriberCallback) -> Subscription:
        return self._notifier.subscribe(pattern, callback)

    def get_history(self) -> list[HistoryEntry]:
        return self._history.get_history()

    def clear_history(self) -> None:
        self._history.clear()

    def register_mutation(self, name: str, mutation: Callable[[StateStore, Any], None]) -> None:
        self._mutations[name] = mutation

    def commit(self, name: str, payload: Any = None) -> None:
        mutation = self._mutations.get(name)
        if mutation is None:
            _logger.warning("Mutation %r not found", name)
            return
        _logger.debug("Committing mutation %s with %s", name, summarize_for_log(payload))
        mutation(self, payload)

    def debug_info(self) -> dict[str, Any]:
        return {
            "subscriber_count": self._notifier.subscriber_count,
            "history_length": len(self._history),
            "mutation_count": len(self._mutations),
            "state_keys": self._root.keys(),
            "pending_deferred": len(self._deferred),
        }


__all__ = ["ABSENT", "MapNode", "RecordNode", "SequenceNode", "StateNode", "StateStore"]
