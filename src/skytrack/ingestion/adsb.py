"""HTTP polling of ADS-B aggregator feeds with source failover."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import time
from collections.abc import Callable
from typing import Any

import aiohttp

from skytrack.config import DataSource, TrackerConfig
from skytrack.exceptions import FeedError
from skytrack.ingestion.normalize import normalize_batch
from skytrack.models.aircraft import Aircraft

_logger = logging.getLogger(__name__)

USER_AGENT = "skytrack/1.0"


@dataclasses.dataclass
class FeedStatistics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    aircraft_received: int = 0
    source_switches: int = 0
    last_response_time: float | None = None


class AdsbFeed:
    """Fetch and normalize aircraft batches from the configured sources.

    After ``config.max_retries`` consecutive failures the feed moves on to the
    next source in ``config.sources`` (wrapping around). Requests to a source
    with a ``rate_limit`` are spaced at least that many seconds apart.
    """

    def __init__(
        self,
        config: TrackerConfig,
        http_session: aiohttp.ClientSession,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._http = http_session
        self._clock = clock
        self._current = config.source(config.primary_source)
        self._consecutive_failures = 0
        self._last_request: dict[str, float] = {}
        self.statistics = FeedStatistics()

    @property
    def current_source(self) -> DataSource:
        return self._current

    def switch_source(self) -> DataSource:
        """Advance to the next configured source and return it."""
        sources = self._config.sources
        index = next(i for i, source in enumerate(sources) if source.name == self._current.name)
        following = sources[(index + 1) % len(sources)]
        if following.name != self._current.name:
            _logger.info("Switching data source from %s to %s", self._current.name, following.name)
            self._current = following
            self.statistics.source_switches += 1
        self._consecutive_failures = 0
        return self._current

    async def _respect_rate_limit(self, source: DataSource) -> None:
        if source.rate_limit <= 0:
            return
        last = self._last_request.get(source.name)
        if last is not None:
            wait = source.rate_limit - (self._clock() - last)
            if wait > 0:
                _logger.debug("Rate limit for %s, waiting %.2fs", source.name, wait)
                await asyncio.sleep(wait)
        self._last_request[source.name] = self._clock()

    async def fetch_raw(self) -> dict[str, Any]:
        """GET the current source and return the decoded JSON object.

        Raises
        ------
        FeedError
            Network failure, timeout, non-200 status or invalid JSON.
        """
        source = self._current
        await self._respect_rate_limit(source)
        headers = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)

        _logger.debug("GET %s", source.url)
        started = self._clock()
        try:
            async with self._http.get(source.url, headers=headers, timeout=timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise FeedError(
                        f"HTTP {resp.status} from {source.name}: {text[:200]}",
                        status_code=resp.status,
                        source=source.name,
                    )
        except FeedError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise FeedError(f"Request to {source.name} failed: {exc}", source=source.name) from exc
        self.statistics.last_response_time = self._clock() - started

        try:
            body = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FeedError(f"Invalid JSON from {source.name}: {text[:200]}", source=source.name) from exc
        if not isinstance(body, dict):
            raise FeedError(f"Unexpected payload type from {source.name}", source=source.name)
        return body

    async def fetch(self) -> list[Aircraft]:
        """Fetch one normalized batch, recording failures for failover."""
        self.statistics.total_requests += 1
        source = self._current
        try:
            payload = await self.fetch_raw()
        except FeedError:
            self.statistics.failed_requests += 1
            self._consecutive_failures += 1
            if self._consecutive_failures >= self._config.max_retries:
                self.switch_source()
            raise
        self._consecutive_failures = 0
        self.statistics.successful_requests += 1
        aircraft = normalize_batch(payload, source=source.name, max_seen=self._config.max_seen)
        self.statistics.aircraft_received += len(aircraft)
        _logger.debug("Fetched %d aircraft from %s", len(aircraft), source.name)
        return aircraft
