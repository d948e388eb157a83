"""Cooldown-based alert deduplication."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping

#: Default minimum seconds between two firings of the same key (5 minutes).
DEFAULT_COOLDOWN_SECONDS: float = 300.0

_KEY_SEPARATOR = ":"


class AlertDeduplicator:
    """Suppress repeat alerts for the same logical event.

    A deduplication key names one logical event, conventionally
    ``"<kind>:<entity>[:<region>]"`` (see :meth:`make_key`). The key's kind
    prefix selects the cooldown, so distinct kinds never share a bucket.

    Parameters
    ----------
    cooldown : float
        Default cooldown in seconds.
    cooldown_per_kind : mapping, optional
        Cooldown overrides keyed by kind prefix.
    clock : callable
        Monotonic time source in seconds.
    """

    def __init__(
        self,
        *,
        cooldown: float = DEFAULT_COOLDOWN_SECONDS,
        cooldown_per_kind: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if cooldown < 0:
            raise ValueError("cooldown must be non-negative")
        self._cooldown = cooldown
        self._per_kind = dict(cooldown_per_kind or {})
        self._clock = clock
        self._last_fired: dict[str, float] = {}

    @staticmethod
    def make_key(kind: str, entity_id: str, region_id: str | None = None) -> str:
        parts = [str(kind), str(entity_id)]
        if region_id is not None:
            parts.append(str(region_id))
        return _KEY_SEPARATOR.join(parts)

    def cooldown_for(self, key: str) -> float:
        kind = key.split(_KEY_SEPARATOR, 1)[0]
        return self._per_kind.get(kind, self._cooldown)

    def should_fire(self, key: str, *, emergency: bool = False) -> bool:
        """True when *key* never fired or its cooldown has elapsed.

        Emergency events always fire.
        """
        if emergency:
            return True
        last = self._last_fired.get(key)
        if last is None:
            return True
        return (self._clock() - last) >= self.cooldown_for(key)

    def mark_fired(self, key: str) -> None:
        self._last_fired[key] = self._clock()

    def check_and_mark(self, key: str, *, emergency: bool = False) -> bool:
        """``should_fire`` and, when it does, ``mark_fired`` in one step."""
        if not self.should_fire(key, emergency=emergency):
            return False
        self.mark_fired(key)
        return True

    def purge_expired(self) -> int:
        """Drop cooldown entries that have expired; returns how many."""
        now = self._clock()
        expired = [key for key, last in self._last_fired.items() if now - last >= self.cooldown_for(key)]
        for key in expired:
            del self._last_fired[key]
        return len(expired)

    def clear(self) -> None:
        self._last_fired.clear()

    def __len__(self) -> int:
        return len(self._last_fired)
