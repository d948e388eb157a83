"""Tracker configuration for skytrack."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from skytrack.exceptions import ConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class DataSource:
    """One ADS-B HTTP endpoint.

    ``rate_limit`` is the minimum number of seconds between two requests;
    ``0`` disables client-side rate limiting.
    """

    name: str
    base_url: str
    endpoint: str = "/mil"
    rate_limit: float = 0.0

    @property
    def url(self) -> str:
        return f"{self.base_url.rstrip('/')}{self.endpoint}"


DEFAULT_SOURCES: tuple[DataSource, ...] = (
    DataSource(name="adsb.fi", base_url="https://api.adsb.fi/v2", rate_limit=1.0),
    DataSource(name="adsb.lol", base_url="https://api.adsb.lol/v2"),
)


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Tracker configuration.

    Parameters
    ----------
    primary_source : str
        Name of the data source polled first.
    sources : tuple of DataSource
        Known data sources, in failover order.
    update_interval : float
        Seconds between two background polls.
    request_timeout : float
        Per-request timeout in seconds.
    max_retries : int
        Consecutive failures before switching to the next source.
    max_seen : float
        Aircraft not heard from for this many seconds are dropped.
    history_capacity : int
        Mutation history ring buffer size.
    alert_cooldown : float
        Default alert deduplication cooldown in seconds.
    max_alert_history : int
        Bound on ``alerts.history``.
    storage_dir : str or None
        Directory of the JSON storage medium. ``None`` keeps state in memory.
    fallback_file : str or None
        File of the fallback medium. ``None`` disables the fallback.
    fallback_max_bytes : int
        Size limit of the fallback snapshot.
    max_dispatch_depth : int
        Nested notification depth before writes are deferred.
    max_deferred_rounds : int
        Drain rounds before pending deferred writes are dropped.
    persist_on_change : bool
        Persist ``user`` whenever it changes.
    """

    primary_source: str = "adsb.fi"
    sources: tuple[DataSource, ...] = DEFAULT_SOURCES
    update_interval: float = 5.0
    request_timeout: float = 10.0
    max_retries: int = 3
    max_seen: float = 60.0
    history_capacity: int = 100
    alert_cooldown: float = 300.0
    max_alert_history: int = 1000
    storage_dir: str | None = None
    fallback_file: str | None = None
    fallback_max_bytes: int = 64 * 1024
    max_dispatch_depth: int = 8
    max_deferred_rounds: int = 8
    persist_on_change: bool = False

    def __post_init__(self) -> None:
        if not self.sources:
            raise ConfigError("At least one data source is required")
        if self.primary_source not in {source.name for source in self.sources}:
            raise ConfigError(f"Unknown primary source {self.primary_source!r}")
        if self.update_interval <= 0:
            raise ConfigError("update_interval must be positive")
        if self.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")
        if self.max_retries < 1:
            raise ConfigError("max_retries must be at least 1")
        if self.history_capacity < 1:
            raise ConfigError("history_capacity must be at least 1")
        if self.alert_cooldown < 0:
            raise ConfigError("alert_cooldown must be non-negative")

    def source(self, name: str) -> DataSource:
        for source in self.sources:
            if source.name == name:
                return source
        raise ConfigError(f"Unknown data source {name!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads optional ``SKYTRACK_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        TrackerConfig
            Populated configuration.

        Raises
        ------
        ConfigError
            A numeric variable cannot be parsed or a value is out of range.
        """
        env = os.environ

        _ENV_STR_MAP = {
            "SKYTRACK_PRIMARY_SOURCE": "primary_source",
            "SKYTRACK_STORAGE_DIR": "storage_dir",
            "SKYTRACK_FALLBACK_FILE": "fallback_file",
        }
        _ENV_NUMERIC_MAP: dict[str, tuple[str, type]] = {
            "SKYTRACK_UPDATE_INTERVAL": ("update_interval", float),
            "SKYTRACK_REQUEST_TIMEOUT": ("request_timeout", float),
            "SKYTRACK_MAX_RETRIES": ("max_retries", int),
            "SKYTRACK_MAX_SEEN": ("max_seen", float),
            "SKYTRACK_HISTORY_CAPACITY": ("history_capacity", int),
            "SKYTRACK_ALERT_COOLDOWN": ("alert_cooldown", float),
            "SKYTRACK_MAX_ALERT_HISTORY": ("max_alert_history", int),
            "SKYTRACK_FALLBACK_MAX_BYTES": ("fallback_max_bytes", int),
            "SKYTRACK_MAX_DISPATCH_DEPTH": ("max_dispatch_depth", int),
            "SKYTRACK_MAX_DEFERRED_ROUNDS": ("max_deferred_rounds", int),
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        for env_key, (field_name, kind) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = kind(val)
            except ValueError as exc:
                raise ConfigError(f"{env_key} must be numeric, got {val!r}") from exc

        if "persist_on_change" not in overrides:
            config_kwargs["persist_on_change"] = _env_bool(env.get("SKYTRACK_PERSIST_ON_CHANGE"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
