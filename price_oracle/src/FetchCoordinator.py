"""FetchCoordinator: Concurrent fan-out to all price sources.

This module is the fetch stage of an update cycle. It asks every active
source for every configured pair at once and waits for all of them before
returning, so a slow source delays the cycle but cannot reorder it.

Architecture:
    - Groups all pairs by source
    - Calls fetch_batch() for batch-capable sources (single API call)
    - Falls back to concurrent individual fetch() for non-batch sources
    - Records each source's outcome in the SourceManager (backoff)
    - Returns the flat list of collected Observations
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .errors import FetchError
from .Observation import Observation
from .SourceManager import SourceManager, SourceStatus

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .TradingPair import TradingPair

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Coordinates concurrent fetching from multiple price sources.

    A source that produced no observation for any of its pairs counts as a
    failure and enters backoff; one or more observations count as success.
    Sources in backoff are skipped while any other source is active. When
    all of them are backing off, all are queried, so a retry within the same
    update cycle still reaches them.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar source_manager: Per-source health and backoff tracking.
    :ivar fetch_timeout: Timeout for one source's requests in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        source_manager: SourceManager | None = None,
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize the fetch coordinator.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param source_manager: Optional shared SourceManager; one is created
            for the given fetchers if omitted.
        :param fetch_timeout: Timeout for fetch requests (default: 10.0).
        """
        self.fetchers = fetchers
        self.source_manager = source_manager or SourceManager(
            list(fetchers),
            status={name: f.get_status() for name, f in fetchers.items()},
        )
        self.fetch_timeout = fetch_timeout

    async def __call__(self, pairs: list[TradingPair]) -> list[Observation]:
        """Alias of fetch_all, so the coordinator can be passed as a fetch strategy."""
        return await self.fetch_all(pairs)

    async def fetch_all(self, pairs: list[TradingPair]) -> list[Observation]:
        """Fetch observations for all pairs from all active sources.

        :param pairs: Trading pairs to fetch (inactive ones are skipped).
        :returns: Every observation collected, in source order.
        :raises FetchError: If no observation at all could be collected.
        """
        wanted = [(p.base, p.quote) for p in pairs if p.is_active]
        if not wanted:
            raise FetchError("No active trading pairs to fetch")

        candidates = self.source_manager.get_active_sources()
        if not candidates:
            # Every source is backing off; query them all rather than fail outright
            candidates = list(self.fetchers)
            logger.info(f"All sources in backoff, retrying all: {candidates}")

        # Group pairs by source based on support
        source_pairs: dict[str, list[tuple[str, str]]] = {}
        for source in candidates:
            fetcher = self.fetchers.get(source)
            if fetcher is None:
                continue
            supported = [pair for pair in wanted if fetcher.supports_pair(*pair)]
            if supported:
                source_pairs[source] = supported

        if not source_pairs:
            raise FetchError(
                "No price sources available",
                metadata={"sources": list(self.fetchers)},
            )

        # Fetch from all sources concurrently
        source_results = await asyncio.gather(
            *(self._fetch_source(source, p) for source, p in source_pairs.items())
        )

        observations: list[Observation] = []
        for source, result in zip(source_pairs, source_results, strict=True):
            collected = [r for r in result.values() if isinstance(r, Observation)]
            if collected:
                self.source_manager.record_success(source)
                observations.extend(collected)
            else:
                errors = "; ".join(str(r) for r in result.values())
                backoff = self.source_manager.record_failure(source, errors)
                logger.warning(
                    f"[{source}] No prices fetched, backing off {backoff:.0f}s: {errors}"
                )

        if not observations:
            raise FetchError(
                "Failed to fetch prices from any source",
                metadata={"sources": list(source_pairs)},
            )

        logger.debug(
            f"Collected {len(observations)} observations from {len(source_pairs)} sources"
        )
        return observations

    async def _fetch_source(
        self,
        source: str,
        pairs: list[tuple[str, str]],
    ) -> dict[tuple[str, str], Observation | Exception]:
        """Fetch all pairs from a single source.

        Uses batch fetching if supported, otherwise concurrent individual fetches.

        :param source: Source name.
        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or the error.
        """
        fetcher = self.fetchers[source]

        try:
            if fetcher.supports_batch:
                # Use batch fetching - single API call
                logger.debug(f"[{source}] Batch fetching {len(pairs)} pairs")
                return await asyncio.wait_for(
                    fetcher.fetch_batch(pairs),
                    timeout=self.fetch_timeout,
                )

            # Fall back to concurrent individual fetches
            logger.debug(f"[{source}] Individual fetching {len(pairs)} pairs")
            results = await asyncio.gather(
                *(self._fetch_single(fetcher, base, quote) for base, quote in pairs)
            )
            return dict(zip(pairs, results, strict=True))

        except asyncio.TimeoutError:
            logger.warning(f"[{source}] Batch fetch timeout")
            error = FetchError(f"[{source}] Timed out after {self.fetch_timeout}s")
            return {pair: error for pair in pairs}
        except Exception as e:
            logger.warning(f"[{source}] Batch fetch error: {e}")
            return {pair: e for pair in pairs}

    async def _fetch_single(
        self,
        fetcher: BaseFetcher,
        base: str,
        quote: str,
    ) -> Observation | Exception:
        """Fetch a single pair with timeout.

        :param fetcher: Fetcher instance to use.
        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: Observation, or the error that prevented it.
        """
        try:
            return await asyncio.wait_for(
                fetcher.fetch_price(base, quote),
                timeout=self.fetch_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{fetcher.name}] Timeout fetching {base}/{quote}")
            return FetchError(f"[{fetcher.name}] Timeout fetching {base}/{quote}")
        except Exception as e:
            logger.warning(f"[{fetcher.name}] Error fetching {base}/{quote}: {e}")
            return e

    def get_source_status(self, source: str) -> SourceStatus | None:
        """Status of one source: online flag, last success time, error count."""
        return self.source_manager.get_source_status(source)

    def get_all_source_status(self) -> dict[str, SourceStatus]:
        """Status of every tracked source."""
        return self.source_manager.get_all_status()
