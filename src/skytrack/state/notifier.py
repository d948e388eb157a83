"""Path-pattern subscriptions and deterministic change dispatch.

Dispatch order for a change at path ``P``:

1. subscribers registered on exactly ``P``, in registration order;
2. global ``*`` subscribers, in registration order;
3. ``prefix.*`` subscribers for ``P`` itself and then each ancestor of
   ``P``, nearest first, registration order within one prefix.

Every callback receives its own deep clone of the new and old values. A
raising callback is logged and reported to ``on_error``; delivery to the
remaining subscribers continues.
"""

from __future__ import annotations

import copy
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from skytrack._redact import summarize_for_log
from skytrack.exceptions import SkytrackError, SubscriberError
from skytrack.state.paths import GLOBAL_WILDCARD, PathLike, PathTuple, Pattern, format_path, parse_path, prefix_key

_logger = logging.getLogger(__name__)

SubscriberCallback = Callable[[str, Any, Any], None]
ErrorHook = Callable[[SkytrackError], None]


@dataclass(slots=True, eq=False)
class Subscription:
    """Handle returned by :meth:`ChangeNotifier.subscribe`.

    Calling the handle or :meth:`cancel` removes the subscription. Removal
    takes effect immediately, including for a dispatch already in flight.
    """

    id: int
    pattern: Pattern
    callback: SubscriberCallback
    _notifier: ChangeNotifier | None = field(default=None, repr=False)
    active: bool = True

    def cancel(self) -> None:
        if not self.active:
            return
        self.active = False
        if self._notifier is not None:
            self._notifier._remove(self)
            self._notifier = None

    def __call__(self) -> None:
        self.cancel()


class ChangeNotifier:
    """Registry of subscriptions keyed by canonical pattern."""

    def __init__(self, *, on_error: ErrorHook | None = None) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}
        self._ids = itertools.count(1)
        self._on_error = on_error

    def subscribe(self, pattern: str, callback: SubscriberCallback) -> Subscription:
        parsed = Pattern(pattern)
        subscription = Subscription(id=next(self._ids), pattern=parsed, callback=callback, _notifier=self)
        self._subscribers.setdefault(parsed.key, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        bucket = self._subscribers.get(subscription.pattern.key)
        if not bucket:
            return
        try:
            bucket.remove(subscription)
        except ValueError:
            return
        if not bucket:
            del self._subscribers[subscription.pattern.key]

    @property
    def subscriber_count(self) -> int:
        return sum(len(bucket) for bucket in self._subscribers.values())

    def clear(self) -> None:
        for bucket in list(self._subscribers.values()):
            for subscription in list(bucket):
                subscription.active = False
                subscription._notifier = None
        self._subscribers.clear()

    def recipients(self, path: PathLike) -> list[Subscription]:
        """Subscriptions a change at *path* would reach, in dispatch order."""
        parsed: PathTuple = parse_path(path)
        ordered: list[Subscription] = []
        ordered.extend(self._subscribers.get(format_path(parsed), ()))
        ordered.extend(self._subscribers.get(GLOBAL_WILDCARD, ()))
        for length in range(len(parsed), 0, -1):
            ordered.extend(self._subscribers.get(prefix_key(parsed[:length]), ()))
        return ordered

    def notify(self, path: PathLike, new_value: Any, old_value: Any) -> int:
        """Dispatch a change; returns the number of callbacks invoked."""
        path_str = path if isinstance(path, str) else format_path(path)
        delivered = 0
        for subscription in self.recipients(path):
            if not subscription.active:
                continue
            try:
                subscription.callback(path_str, copy.deepcopy(new_value), copy.deepcopy(old_value))
            except Exception as err:
                _logger.exception(
                    "Subscriber %d on %r failed for change at %s (new value %s)",
                    subscription.id,
                    subscription.pattern.raw,
                    path_str,
                    summarize_for_log(new_value),
                )
                self._report(subscription, path_str, err)
            delivered += 1
        return delivered

    def _report(self, subscription: Subscription, path: str, err: Exception) -> None:
        if self._on_error is None:
            return
        failure = SubscriberError(
            f"Subscriber {subscription.id} on {subscription.pattern.raw!r} failed: {err}",
            subscription_id=subscription.id,
            pattern=subscription.pattern.raw,
            path=path,
        )
        failure.__cause__ = err
        try:
            self._on_error(failure)
        except Exception:
            _logger.exception("Error hook failed while reporting subscriber failure")
