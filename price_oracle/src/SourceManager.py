"""SourceManager: Per-source health tracking with exponential backoff.

Every fetch outcome of a source is recorded here. A failing source enters a
backoff period that doubles with each consecutive failure, up to a maximum
(default 5 minutes), and is left out of the fan-out until it expires. A
successful fetch resets the counter.

The tracked status is what the oracle reports per source in status queries.

.. code-block:: python

    >>> manager = SourceManager(["coinbase", "kraken", "coingecko"])
    >>> manager.record_failure("kraken", "HTTP 503")
    5.0
    >>> manager.get_active_sources()
    ['coinbase', 'coingecko']
    >>> manager.get_source_status("kraken").online
    False
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class SourceStatus:
    """Tracks the status of a single source.

    :ivar name: Source name.
    :ivar consecutive_failures: Number of consecutive failures.
    :ivar backoff_until: Unix timestamp when backoff period ends.
    :ivar error_count: Total failures since tracking began.
    :ivar success_count: Total successes since tracking began.
    :ivar last_success_at: Unix timestamp of the last successful fetch.
    :ivar last_error: Message of the most recent failure.
    """

    name: str
    consecutive_failures: int = 0
    backoff_until: float = 0.0
    error_count: int = 0
    success_count: int = 0
    last_success_at: float | None = None
    last_error: str | None = None

    @property
    def online(self) -> bool:
        """A source is online when its most recent fetch succeeded."""
        return self.consecutive_failures == 0

    def as_dict(self) -> dict:
        """Return a plain-dict view for status reporting."""
        return {
            "name": self.name,
            "online": self.online,
            "last_success_at": self.last_success_at,
            "error_count": self.error_count,
            "success_count": self.success_count,
            "consecutive_failures": self.consecutive_failures,
            "backoff_until": self.backoff_until,
            "last_error": self.last_error,
        }


class SourceManager:
    """Manages source health tracking with exponential backoff.

    Backoff after the n-th consecutive failure is
    ``base_backoff_seconds * 2^(n-1)``, capped at max_backoff_seconds.

    :ivar sources: List of tracked source names.
    :ivar base_backoff_seconds: Initial backoff duration after first failure.
    :ivar max_backoff_seconds: Maximum backoff duration.
    """

    DEFAULT_BASE_BACKOFF_SECONDS = 5
    DEFAULT_MAX_BACKOFF_SECONDS = 300  # 5 minutes

    def __init__(
        self,
        sources: list[str],
        base_backoff_seconds: float = DEFAULT_BASE_BACKOFF_SECONDS,
        max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS,
        status: dict[str, SourceStatus] | None = None,
    ) -> None:
        """Initialize the source manager.

        :param sources: List of source names to track.
        :param base_backoff_seconds: Initial backoff duration after first failure.
        :param max_backoff_seconds: Maximum backoff duration (caps exponential growth).
        :param status: Optional existing status objects to update in place,
            e.g. the ones each fetcher reports from get_status().
        """
        self.sources = list(sources)
        self.base_backoff_seconds = base_backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        status = status or {}
        self._status: dict[str, SourceStatus] = {
            s: status.get(s) or SourceStatus(name=s) for s in sources
        }

    def _get_or_create(self, source: str) -> SourceStatus:
        if source not in self._status:
            self._status[source] = SourceStatus(name=source)
        return self._status[source]

    def record_failure(self, source: str, error: str | None = None) -> float:
        """Record a failure for a source and apply exponential backoff.

        :param source: Source name that failed.
        :param error: Optional failure message.
        :returns: The backoff duration in seconds.
        """
        status = self._get_or_create(source)
        status.consecutive_failures += 1
        status.error_count += 1
        status.last_error = error

        backoff_seconds = min(
            self.base_backoff_seconds * (2 ** (status.consecutive_failures - 1)),
            self.max_backoff_seconds,
        )
        status.backoff_until = time.time() + backoff_seconds

        return float(backoff_seconds)

    def record_success(self, source: str) -> None:
        """Record a successful fetch, resetting the failure counter.

        :param source: Source name that succeeded.
        """
        status = self._get_or_create(source)
        status.consecutive_failures = 0
        status.backoff_until = 0.0
        status.success_count += 1
        status.last_success_at = time.time()

    def get_active_sources(self) -> list[str]:
        """Get sources that are not currently in backoff.

        :returns: List of source names available for fetching.
        """
        now = time.time()
        return [s for s in self.sources if now >= self._status[s].backoff_until]

    def is_source_active(self, source: str) -> bool:
        """Check if a specific source is currently active (not in backoff).

        :param source: Source name to check.
        :returns: True if source is active, False if in backoff or unknown.
        """
        if source not in self._status:
            return False
        return time.time() >= self._status[source].backoff_until

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Get the status of a specific source.

        :param source: Source name to query.
        :returns: SourceStatus or None if source not tracked.
        """
        return self._status.get(source)

    def get_all_status(self) -> dict[str, SourceStatus]:
        """Get status of all sources.

        :returns: Dict mapping source names to their status.
        """
        return dict(self._status)
