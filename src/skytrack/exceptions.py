"""Custom exception hierarchy for skytrack."""

from __future__ import annotations


class SkytrackError(Exception):
    """Base exception for all skytrack errors."""


class ConfigError(SkytrackError):
    """Invalid or missing configuration."""


class TypeMismatchError(SkytrackError):
    """Structural write through a node that cannot hold the segment.

    Raised when a path walks through a Scalar, or when a segment type does
    not fit the container (an index into a record, a key into a sequence).
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class PathIndexError(SkytrackError, IndexError):
    """Sequence index out of range on write."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class DetachedNodeError(SkytrackError):
    """Write through a node handle that is no longer part of the tree."""


class ReentrantWriteError(SkytrackError):
    """Direct write from a notification callback that must be deferred.

    Only raised for writes through live node handles; writes issued through
    the store API are queued instead.
    """

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)


class SubscriberError(SkytrackError):
    """A subscriber callback raised during dispatch.

    Never propagated out of ``notify``; handed to the ``on_error`` hook.
    The original exception is available as ``__cause__``.
    """

    def __init__(self, message: str, *, subscription_id: int, pattern: str, path: str) -> None:
        self.subscription_id = subscription_id
        self.pattern = pattern
        self.path = path
        super().__init__(message)


class PersistenceError(SkytrackError):
    """A single persisted path could not be written or read."""

    def __init__(self, message: str, *, key: str = "") -> None:
        self.key = key
        super().__init__(message)


class StorageUnavailableError(PersistenceError):
    """The durable medium cannot be reached at all."""


class FallbackCapacityError(PersistenceError):
    """Snapshot exceeds the size limit of the fallback medium."""


class GeometryEvaluationError(SkytrackError):
    """A region geometry is malformed and cannot be evaluated."""

    def __init__(self, message: str, *, region_id: str = "") -> None:
        self.region_id = region_id
        super().__init__(message)


class FeedError(SkytrackError):
    """Ingestion feed failure (network, non-200, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        source: str = "",
    ) -> None:
        self.status_code = status_code
        self.source = source
        super().__init__(message)
