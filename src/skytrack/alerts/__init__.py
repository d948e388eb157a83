"""Alert generation and deduplication."""

from skytrack.alerts.dedup import DEFAULT_COOLDOWN_SECONDS, AlertDeduplicator
from skytrack.alerts.manager import AlertManager

__all__ = ["DEFAULT_COOLDOWN_SECONDS", "AlertDeduplicator", "AlertManager"]
