"""Persistence of state subtrees to durable and fallback media."""

from skytrack.persistence.adapter import PersistenceAdapter, PersistOutcome, PersistStatus
from skytrack.persistence.storage import FallbackStorage, JsonDirectoryStorage, KeyValueStorage, MemoryStorage

__all__ = [
    "FallbackStorage",
    "JsonDirectoryStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "PersistOutcome",
    "PersistStatus",
    "PersistenceAdapter",
]
