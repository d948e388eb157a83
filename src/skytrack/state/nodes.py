"""Reactive wrapper nodes for the state tree.

Every container reachable from the store root is wrapped exactly once in a
typed node that knows its own path. Nodes perform a mutation, then report
``(kind, path, new, old)`` to their sink (the owning store) before
returning, so a change two levels deep is observable without re-assigning
any ancestor.

* :class:`RecordNode` wraps ``dict`` values (named fields).
* :class:`MapNode` wraps :class:`KeyedMap` values (keyed collections such
  as aircraft by hex code) and adds bulk ``clear``/``update``/``pop``.
* :class:`SequenceNode` wraps ``list``/``tuple`` values.

Anything else is a Scalar and is stored as a deep copy.

Reads through a node always return clones. Use :meth:`StateNode.child` to
obtain the live handle of a nested container for in-place mutation.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any, ClassVar, Protocol

from skytrack.exceptions import DetachedNodeError, PathIndexError, TypeMismatchError
from skytrack.state.history import MutationKind
from skytrack.state.paths import PathTuple, Segment, format_path


class _Absent:
    """Marker for a path that holds no value."""

    _instance: ClassVar[_Absent | None] = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __copy__(self) -> _Absent:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Absent:
        return self

    def __reduce__(self) -> str:
        return "ABSENT"


ABSENT: Any = _Absent()
"""Returned for reads of missing paths; writing it deletes."""


class KeyedMap(dict):
    """A ``dict`` whose entries form a keyed collection rather than fields.

    Values of this type are wrapped in :class:`MapNode` and cloned back to
    ``KeyedMap`` so the node kind survives a ``get``/``set`` round trip.
    """

    def __repr__(self) -> str:
        return f"KeyedMap({dict.__repr__(self)})"


class MutationSink(Protocol):
    """Receiver of node mutations (implemented by the store)."""

    def admit_write(self, path: PathTuple) -> None: ...

    def emit(self, kind: MutationKind, path: PathTuple, new_value: Any, old_value: Any) -> None: ...


def clone_value(value: Any) -> Any:
    """Detached deep copy of a node or plain value."""
    if isinstance(value, StateNode):
        return value.to_value()
    return copy.deepcopy(value)


def wrap_value(value: Any, path: PathTuple, sink: MutationSink | None) -> Any:
    """Wrap *value* for insertion at *path*.

    Containers are wrapped recursively, each descendant tagged with its own
    path. An existing node is never re-wrapped: its value is copied out and
    wrapped afresh, so the new subtree shares nothing with the old one.
    """
    if isinstance(value, StateNode):
        value = value.to_value()
    if isinstance(value, KeyedMap):
        return MapNode(value, path, sink)
    if isinstance(value, dict):
        return RecordNode(value, path, sink)
    if isinstance(value, (list, tuple)):
        return SequenceNode(value, path, sink)
    return copy.deepcopy(value)


class StateNode:
    """Common surface of the wrapper nodes."""

    __slots__ = ("_path", "_sink")

    kind: ClassVar[str] = "node"

    def __init__(self, path: PathTuple, sink: MutationSink | None) -> None:
        self._path = path
        self._sink = sink

    @property
    def path(self) -> PathTuple:
        return self._path

    @property
    def path_str(self) -> str:
        return format_path(self._path)

    @property
    def attached(self) -> bool:
        return self._sink is not None

    def to_value(self) -> Any:
        raise NotImplementedError

    def child(self, key: Segment) -> StateNode:
        """Live handle of the nested container stored under *key*."""
        value = self._lookup(key)
        if value is ABSENT:
            raise KeyError(key)
        if not isinstance(value, StateNode):
            raise TypeMismatchError(
                f"{format_path((*self._path, key))} holds a scalar, not a container",
                path=format_path((*self._path, key)),
            )
        return value

    def get(self, key: Segment, default: Any = ABSENT) -> Any:
        value = self._lookup(key)
        if value is ABSENT:
            return default
        return clone_value(value)

    def _lookup(self, key: Segment) -> Any:
        raise NotImplementedError

    def _children(self) -> Iterable[tuple[Segment, Any]]:
        raise NotImplementedError

    def _writable(self, path: PathTuple) -> MutationSink:
        if self._sink is None:
            raise DetachedNodeError(f"Node at {format_path(self._path) or '<root>'} is no longer part of the tree")
        self._sink.admit_write(path)
        return self._sink

    def _notify(self, kind: MutationKind, path: PathTuple, new_value: Any, old_value: Any) -> None:
        if self._sink is not None:
            self._sink.emit(kind, path, new_value, old_value)

    def _detach(self) -> None:
        self._sink = None
        for _key, value in self._children():
            if isinstance(value, StateNode):
                value._detach()

    def _retag(self, path: PathTuple) -> None:
        self._path = path
        for key, value in self._children():
            if isinstance(value, StateNode):
                value._retag((*path, key))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path_str or '<root>'})"


def _detach_if_node(value: Any) -> None:
    if isinstance(value, StateNode):
        value._detach()


class _KeyedNode(StateNode):
    """Shared implementation of string-keyed containers."""

    __slots__ = ("_data",)

    def __init__(self, value: Mapping[str, Any], path: PathTuple, sink: MutationSink | None) -> None:
        super().__init__(path, sink)
        self._data: dict[str, Any] = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeMismatchError(
                    f"Keys under {format_path(path) or '<root>'} must be strings, got {key!r}",
                    path=format_path(path),
                )
            if item is ABSENT:
                continue
            self._data[key] = wrap_value(item, (*path, key), sink)

    def _lookup(self, key: Segment) -> Any:
        if not isinstance(key, str):
            return ABSENT
        return self._data.get(key, ABSENT)

    def _children(self) -> Iterable[tuple[Segment, Any]]:
        return list(self._data.items())

    def _check_key(self, key: Segment) -> str:
        if not isinstance(key, str):
            raise TypeMismatchError(
                f"Cannot index {self.kind} at {self.path_str or '<root>'} with {key!r}",
                path=format_path((*self._path, key)),
            )
        return key

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def keys(self) -> list[str]:
        return list(self._data)

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*; ``ABSENT`` deletes the key."""
        key = self._check_key(key)
        self._writable((*self._path, key))
        self._assign(key, value)

    def delete(self, key: str) -> bool:
        key = self._check_key(key)
        self._writable((*self._path, key))
        return self._remove(key)

    def update(self, values: Mapping[str, Any]) -> None:
        """Bulk write. Notifies once at this node's own path."""
        self._writable(self._path)
        # A bad key or value leaves the node untouched.
        staged: list[tuple[str, Any]] = []
        for key, value in values.items():
            key = self._check_key(key)
            staged.append((key, value if value is ABSENT else wrap_value(value, (*self._path, key), self._sink)))
        old = self.to_value()
        for key, value in staged:
            _detach_if_node(self._data.pop(key, ABSENT))
            if value is not ABSENT:
                self._data[key] = value
        self._notify(MutationKind.SET, self._path, self.to_value(), old)

    __setitem__ = set

    def __delitem__(self, key: str) -> None:
        if not self.delete(key):
            raise KeyError(key)

    def _assign(self, key: str, value: Any) -> None:
        if value is ABSENT:
            self._remove(key)
            return
        previous = self._data.get(key, ABSENT)
        old = clone_value(previous)
        _detach_if_node(previous)
        wrapped = wrap_value(value, (*self._path, key), self._sink)
        self._data[key] = wrapped
        self._notify(MutationKind.SET, (*self._path, key), clone_value(wrapped), old)

    def _remove(self, key: str) -> bool:
        if key not in self._data:
            return False
        previous = self._data.pop(key)
        old = clone_value(previous)
        _detach_if_node(previous)
        self._notify(MutationKind.DELETE, (*self._path, key), ABSENT, old)
        return True

    def _ensure_record(self, key: str) -> StateNode:
        """Silently create an empty record under *key* (intermediate path)."""
        node = RecordNode({}, (*self._path, key), self._sink)
        self._data[key] = node
        return node


class RecordNode(_KeyedNode):
    """Wrapper for a record (``dict``) node."""

    __slots__ = ()

    kind = "record"

    def to_value(self) -> dict[str, Any]:
        return {key: clone_value(value) for key, value in self._data.items()}


class MapNode(_KeyedNode):
    """Wrapper for a keyed collection (:class:`KeyedMap`)."""

    __slots__ = ()

    kind = "map"

    def to_value(self) -> KeyedMap:
        return KeyedMap((key, clone_value(value)) for key, value in self._data.items())

    def clear(self) -> None:
        self._writable(self._path)
        old = self.to_value()
        for value in self._data.values():
            _detach_if_node(value)
        self._data.clear()
        self._notify(MutationKind.CLEAR, self._path, self.to_value(), old)

    def pop(self, key: str, default: Any = ABSENT) -> Any:
        key = self._check_key(key)
        self._writable((*self._path, key))
        if key not in self._data:
            if default is ABSENT:
                raise KeyError(key)
            return default
        value = clone_value(self._data[key])
        self._remove(key)
        return value


class SequenceNode(StateNode):
    """Wrapper for an ordered sequence (``list``) node.

    Item assignment notifies at the element path. Every operation that
    shifts indices (append, insert, pop, remove, sort, ...) is a bulk
    mutation: it notifies once at the sequence path with the whole old and
    new lists, and re-tags the descendants with their new indices.
    """

    __slots__ = ("_items",)

    kind = "sequence"

    def __init__(self, value: Iterable[Any], path: PathTuple, sink: MutationSink | None) -> None:
        super().__init__(path, sink)
        self._items: list[Any] = [wrap_value(item, (*path, index), sink) for index, item in enumerate(value)]

    def to_value(self) -> list[Any]:
        return [clone_value(item) for item in self._items]

    def _lookup(self, key: Segment) -> Any:
        if isinstance(key, bool) or not isinstance(key, int):
            return ABSENT
        if 0 <= key < len(self._items):
            return self._items[key]
        return ABSENT

    def _children(self) -> Iterable[tuple[Segment, Any]]:
        return list(enumerate(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def _check_index(self, index: Segment) -> int:
        if isinstance(index, bool) or not isinstance(index, int):
            raise TypeMismatchError(
                f"Cannot index sequence at {self.path_str or '<root>'} with {index!r}",
                path=format_path((*self._path, index)),
            )
        if not 0 <= index < len(self._items):
            raise PathIndexError(
                f"Index {index} out of range for sequence at {self.path_str} (len {len(self._items)})",
                path=format_path((*self._path, index)),
            )
        return index

    def _renumber(self) -> None:
        for index, item in enumerate(self._items):
            if isinstance(item, StateNode) and item.path != (*self._path, index):
                item._retag((*self._path, index))

    def _bulk(self, kind: MutationKind, operation: Callable[[], Any]) -> Any:
        self._writable(self._path)
        old = self.to_value()
        result = operation()
        self._renumber()
        self._notify(kind, self._path, self.to_value(), old)
        return result

    def set(self, index: int, value: Any) -> None:
        """Replace the element at *index*; ``ABSENT`` removes it."""
        index = self._check_index(index)
        if value is ABSENT:
            self.delete(index)
            return
        self._writable((*self._path, index))
        self._assign(index, value)

    __setitem__ = set

    def _assign(self, index: int, value: Any) -> None:
        if value is ABSENT:
            self._bulk(MutationKind.REMOVE, lambda: _detach_if_node(self._items.pop(index)))
            return
        previous = self._items[index]
        old = clone_value(previous)
        _detach_if_node(previous)
        wrapped = wrap_value(value, (*self._path, index), self._sink)
        self._items[index] = wrapped
        self._notify(MutationKind.SET, (*self._path, index), clone_value(wrapped), old)

    def append(self, value: Any) -> None:
        self._bulk(
            MutationKind.APPEND,
            lambda: self._items.append(wrap_value(value, (*self._path, len(self._items)), self._sink)),
        )

    def extend(self, values: Iterable[Any]) -> None:
        values = list(values)

        def _extend() -> None:
            for value in values:
                self._items.append(wrap_value(value, (*self._path, len(self._items)), self._sink))

        self._bulk(MutationKind.APPEND, _extend)

    def insert(self, index: int, value: Any) -> None:
        self._bulk(
            MutationKind.APPEND,
            lambda: self._items.insert(index, wrap_value(value, (*self._path, index), self._sink)),
        )

    def pop(self, index: int = -1) -> Any:
        if not self._items:
            raise PathIndexError(f"pop from empty sequence at {self.path_str}", path=self.path_str)

        def _pop() -> Any:
            item = self._items.pop(index)
            value = clone_value(item)
            _detach_if_node(item)
            return value

        return self._bulk(MutationKind.REMOVE, _pop)

    def delete(self, index: int) -> None:
        index = self._check_index(index)
        self._bulk(MutationKind.REMOVE, lambda: _detach_if_node(self._items.pop(index)))

    __delitem__ = delete

    def remove(self, value: Any) -> None:
        """Remove the first element equal to *value*."""
        for index, item in enumerate(self._items):
            if clone_value(item) == value:
                self.delete(index)
                return
        raise ValueError(f"{value!r} not in sequence at {self.path_str}")

    def clear(self) -> None:
        def _clear() -> None:
            for item in self._items:
                _detach_if_node(item)
            self._items.clear()

        self._bulk(MutationKind.CLEAR, _clear)

    def sort(self, *, key: Callable[[Any], Any] | None = None, reverse: bool = False) -> None:
        """Sort in place; *key* receives cloned element values."""

        def _sort() -> None:
            decorated = [(clone_value(item), item) for item in self._items]
            decorated.sort(key=lambda pair: key(pair[0]) if key is not None else pair[0], reverse=reverse)
            self._items[:] = [item for _value, item in decorated]

        self._bulk(MutationKind.REORDER, _sort)

    def reverse(self) -> None:
        self._bulk(MutationKind.REORDER, self._items.reverse)
