"""skytrack - Reactive state core for a live aircraft tracker."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("skytrack")
except PackageNotFoundError:
    __version__ = "0+local"
from skytrack.config import DataSource, TrackerConfig
from skytrack.exceptions import (
    ConfigError,
    DetachedNodeError,
    FallbackCapacityError,
    FeedError,
    GeometryEvaluationError,
    PathIndexError,
    PersistenceError,
    ReentrantWriteError,
    SkytrackError,
    StorageUnavailableError,
    SubscriberError,
    TypeMismatchError,
)
from skytrack.models import (
    Aircraft,
    Alert,
    AlertKind,
    AlertSeverity,
    Geofence,
    GeofenceEvent,
    GeofenceEventKind,
)
from skytrack.state import ABSENT, KeyedMap, StateStore, Subscription
from skytrack.tracker import SkyTracker

__all__ = [
    "__version__",
    "ABSENT",
    "Aircraft",
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "ConfigError",
    "DataSource",
    "DetachedNodeError",
    "FallbackCapacityError",
    "FeedError",
    "Geofence",
    "GeofenceEvent",
    "GeofenceEventKind",
    "GeometryEvaluationError",
    "KeyedMap",
    "PathIndexError",
    "PersistenceError",
    "ReentrantWriteError",
    "SkyTracker",
    "SkytrackError",
    "StateStore",
    "StorageUnavailableError",
    "Subscription",
    "SubscriberError",
    "TrackerConfig",
    "TypeMismatchError",
]
