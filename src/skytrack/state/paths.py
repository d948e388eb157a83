"""Structured state paths and subscription patterns.

A path is a tuple of segments: ``str`` for record/map keys and ``int`` for
sequence indices. The canonical string form joins keys with ``.`` and
renders indices as ``[i]``, e.g. ``("live", "aircraft", "abc123")`` is
``live.aircraft.abc123`` and ``("app", "errors", 0)`` is ``app.errors[0]``.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Union

Segment = Union[str, int]
PathTuple = tuple[Segment, ...]
PathLike = Union[str, Sequence[Segment]]

GLOBAL_WILDCARD = "*"
_PREFIX_SUFFIX = ".*"

_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]|(\.)")


def parse_path(path: PathLike) -> PathTuple:
    """Normalize a string or segment sequence into a path tuple.

    ``""`` and ``()`` both denote the root.
    """
    if isinstance(path, tuple) and all(isinstance(s, (str, int)) for s in path):
        return path
    if not isinstance(path, str):
        segments = tuple(path)
        for segment in segments:
            if isinstance(segment, bool) or not isinstance(segment, (str, int)):
                raise ValueError(f"Invalid path segment {segment!r}")
        return segments

    if not path:
        return ()

    segments_list: list[Segment] = []
    pos = 0
    expect_key = True
    while pos < len(path):
        match = _TOKEN.match(path, pos)
        if match is None:
            raise ValueError(f"Malformed path {path!r} at offset {pos}")
        key, index, dot = match.groups()
        if key is not None:
            if not expect_key:
                raise ValueError(f"Malformed path {path!r}: missing '.' before {key!r}")
            segments_list.append(key)
            expect_key = False
        elif index is not None:
            if expect_key and segments_list:
                raise ValueError(f"Malformed path {path!r}: empty key before index")
            segments_list.append(int(index))
            expect_key = False
        elif dot is not None:
            if expect_key:
                raise ValueError(f"Malformed path {path!r}: empty key")
            expect_key = True
        pos = match.end()
    if expect_key:
        raise ValueError(f"Malformed path {path!r}: trailing '.'")
    return tuple(segments_list)


def format_path(path: Sequence[Segment]) -> str:
    """Render a path tuple in canonical string form."""
    parts: list[str] = []
    for segment in path:
        if isinstance(segment, int):
            parts.append(f"[{segment}]")
        elif parts:
            parts.append(f".{segment}")
        else:
            parts.append(segment)
    return "".join(parts)


def ancestors(path: PathTuple) -> list[PathTuple]:
    """Proper ancestors of *path*, nearest first, excluding the root."""
    return [path[:i] for i in range(len(path) - 1, 0, -1)]


def is_related(a: PathTuple, b: PathTuple) -> bool:
    """True when one path equals or contains the other."""
    shorter = min(len(a), len(b))
    return a[:shorter] == b[:shorter]


class Pattern:
    """Parsed subscription pattern.

    ``"*"`` matches everything, ``"a.b.*"`` matches ``a.b`` itself and any
    descendant, anything else matches exactly one path.
    """

    __slots__ = ("raw", "kind", "path")

    EXACT = "exact"
    GLOBAL = "global"
    PREFIX = "prefix"

    def __init__(self, raw: str) -> None:
        if not isinstance(raw, str):
            raise ValueError(f"Subscription pattern must be a string, got {raw!r}")
        self.raw = raw
        if raw == GLOBAL_WILDCARD:
            self.kind = self.GLOBAL
            self.path: PathTuple = ()
        elif raw.endswith(_PREFIX_SUFFIX):
            self.kind = self.PREFIX
            self.path = parse_path(raw[: -len(_PREFIX_SUFFIX)])
        else:
            self.kind = self.EXACT
            self.path = parse_path(raw)
        if "*" in format_path(self.path):
            raise ValueError(f"Wildcards are only allowed as '*' or a trailing '.*': {raw!r}")

    @property
    def key(self) -> str:
        """Canonical lookup key used by the notifier."""
        if self.kind == self.GLOBAL:
            return GLOBAL_WILDCARD
        if self.kind == self.PREFIX:
            return format_path(self.path) + _PREFIX_SUFFIX
        return format_path(self.path)

    def matches(self, path: PathTuple) -> bool:
        if self.kind == self.GLOBAL:
            return True
        if self.kind == self.PREFIX:
            return path[: len(self.path)] == self.path
        return path == self.path

    def __repr__(self) -> str:
        return f"Pattern({self.raw!r})"


def prefix_key(path: PathTuple) -> str:
    """Lookup key of the ``prefix.*`` pattern rooted at *path*."""
    return format_path(path) + _PREFIX_SUFFIX
