"""State/store layer.

This package is the single source of truth for the tracker: a reactive tree
addressed by paths such as ``live.aircraft`` or ``user.geofences[0].name``,
with change notification and a bounded mutation history.
"""

from skytrack.state.history import HistoryEntry, MutationHistory, MutationKind
from skytrack.state.nodes import ABSENT, KeyedMap, MapNode, RecordNode, SequenceNode, StateNode
from skytrack.state.notifier import ChangeNotifier, Subscription
from skytrack.state.paths import format_path, parse_path
from skytrack.state.store import StateStore

__all__ = [
    "ABSENT",
    "ChangeNotifier",
    "HistoryEntry",
    "KeyedMap",
    "MapNode",
    "MutationHistory",
    "MutationKind",
    "RecordNode",
    "SequenceNode",
    "StateNode",
    "StateStore",
    "Subscription",
    "format_path",
    "parse_path",
]
