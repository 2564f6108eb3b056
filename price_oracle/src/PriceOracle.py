"""PriceOracle: Wires sources, pipeline stages and the ledger together.

This module fetches prices from multiple API sources, validates them,
aggregates them per pair with outlier rejection, and commits the result
on-chain when it moved enough since the last commit.

Architecture:
    - FetchCoordinator fans out to all sources concurrently, with batch
      requests where supported and per-source exponential backoff
    - PriceValidator screens observations against the pair bounds
    - PriceAggregator rejects outliers and combines the rest
    - UpdateGate withholds commits for insignificant moves
    - SapphireLedgerClient commits through the ROFL appd (or directly on
      localnet)
    - OracleController runs the cycle on a fixed interval
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from .fetchers import BaseFetcher, get_available_fetchers, get_fetcher
from .FetchCoordinator import FetchCoordinator
from .ledger import LedgerClient, SapphireLedgerClient
from .Observation import AggregatedObservation
from .OracleController import CycleResult, HealthReport, OracleController
from .PriceAggregator import PriceAggregator
from .PriceValidator import PriceValidator
from .TradingPair import TradingPair
from .UpdateGate import UpdateGate

logger = logging.getLogger(__name__)


class PriceOracle:
    """Main orchestrator for quorum price feeds.

    :ivar network_name: Target network name.
    :ivar pairs: Configured trading pairs.
    :ivar sources: Enabled price source names.
    :ivar fetchers: Fetcher instance per source.
    :ivar coordinator: Fetch stage.
    :ivar ledger: Ledger client used for commits.
    :ivar controller: Lifecycle controller running the update cycle.
    """

    def __init__(
        self,
        network_name: str,
        pairs: list[str],
        sources: list[str],
        oracle_address: str | None = None,
        api_keys: dict[str, str] | None = None,
        pair_limits: Mapping[str, tuple[float, float, int]] | None = None,
        source_weights: Mapping[str, float] | None = None,
        update_interval: float = 300,
        deviation_threshold: float = 1.0,
        outlier_threshold: float = 2.0,
        min_sources: int = 2,
        max_price_age: float = 300,
        aggregation_method: str = "median",
        retry_attempts: int = 3,
        fetch_timeout: float = 10.0,
        ledger: LedgerClient | None = None,
        appd_url: str = "",
        account_address: str | None = None,
        rpc_url: str | None = None,
    ) -> None:
        """Initialize the price oracle.

        :param network_name: Network to connect to (sapphire, sapphire-testnet,
            sapphire-localnet).
        :param pairs: Trading pairs (e.g., ["btc/usd", "eth/usd"]).
        :param sources: Source names (e.g., ["coinbase", "kraken"]).
        :param oracle_address: Oracle contract address (default per network).
        :param api_keys: Dict mapping source names to API keys.
        :param pair_limits: Per-pair (min_price, max_price, decimal_places).
        :param source_weights: Per-source weights for the weighted method.
        :param update_interval: Seconds between update cycles (default: 300).
        :param deviation_threshold: Percent move that triggers a commit (default: 1.0).
        :param outlier_threshold: Outlier cut-off in standard deviations (default: 2.0).
        :param min_sources: Quorum of sources per pair (default: 2).
        :param max_price_age: Seconds before an observation is stale (default: 300).
        :param aggregation_method: average, median or weighted (default: median).
        :param retry_attempts: Fetch attempts and failure threshold (default: 3).
        :param fetch_timeout: Timeout for fetch requests (default: 10.0).
        :param ledger: Optional ledger client; a SapphireLedgerClient is
            created for network_name if omitted.
        :param appd_url: Optional ROFL appd URL or socket path override.
        :param account_address: Optional address for balance reporting.
        :param rpc_url: Optional RPC URL override.
        :raises ValueError: If sources, pairs or parameters are invalid.
        """
        self.network_name = network_name

        # Validate sources against registered fetchers
        available = get_available_fetchers()
        invalid = [s for s in sources if s not in available]
        if invalid:
            raise ValueError(f"Unknown sources: {invalid}. Available: {available}")
        if not sources:
            raise ValueError("At least one price source must be specified")
        self.sources = list(sources)

        self.pairs: list[TradingPair] = [
            TradingPair.from_string(p, pair_limits) for p in pairs
        ]
        if not self.pairs:
            raise ValueError("At least one trading pair must be specified")

        api_keys = api_keys or {}
        self.fetchers: dict[str, BaseFetcher] = {
            source: get_fetcher(source, api_key=api_keys.get(source), timeout=fetch_timeout)
            for source in self.sources
        }
        self.coordinator = FetchCoordinator(self.fetchers, fetch_timeout=fetch_timeout)

        self.ledger: LedgerClient = ledger or SapphireLedgerClient(
            network_name,
            oracle_address=oracle_address,
            appd_url=appd_url,
            account_address=account_address,
            rpc_url=rpc_url,
        )

        self.controller = OracleController(
            pairs=self.pairs,
            fetch=self.coordinator,
            validator=PriceValidator(
                min_sources_required=min_sources,
                max_price_age=max_price_age,
                outlier_threshold=outlier_threshold,
            ),
            aggregator=PriceAggregator(
                min_sources_required=min_sources,
                outlier_threshold=outlier_threshold,
                method=aggregation_method,
                weights=source_weights,
            ),
            gate=UpdateGate(deviation_threshold),
            ledger=self.ledger,
            update_interval=update_interval,
            retry_attempts=retry_attempts,
        )

        batch_sources = [s for s in self.sources if self.fetchers[s].supports_batch]
        logger.info(
            f"PriceOracle initialized: pairs={[str(p) for p in self.pairs]}, "
            f"sources={self.sources}, update_interval={update_interval}s"
        )
        if batch_sources:
            logger.info(f"Batch-capable sources: {batch_sources}")

    async def start(self) -> CycleResult:
        """Start the update schedule. See OracleController.start()."""
        return await self.controller.start()

    def stop(self) -> None:
        """Stop scheduling further cycles."""
        self.controller.stop()

    async def run(self) -> None:
        """Run until stopped or until the failure threshold is reached."""
        try:
            await self.controller.run()
        finally:
            await BaseFetcher.close_shared_client()

    async def force_update(self) -> CycleResult:
        """Run one update cycle immediately."""
        return await self.controller.force_update()

    def get_supported_pairs(self) -> list[str]:
        """Keys of the active trading pairs."""
        return [p.key for p in self.pairs if p.is_active]

    def get_current_price(self, pair_key: str) -> AggregatedObservation | None:
        """Latest aggregated price for a pair, or None if never aggregated."""
        return self.controller.get_price(pair_key)

    def get_all_current_prices(self) -> Mapping[str, AggregatedObservation]:
        """Latest aggregated price per pair key."""
        return self.controller.get_prices()

    def get_health(self) -> HealthReport:
        """Health report of the update cycle."""
        return self.controller.get_health()

    def get_status(self) -> dict:
        """Status summary: controller counters, prices and per-source health.

        :returns: Plain dict suitable for logging or JSON encoding.
        """
        state = self.controller.get_state()
        return {
            "network": self.network_name,
            "controller": state.as_dict(),
            "prices": {
                key: {
                    "price": agg.price,
                    "timestamp": agg.timestamp,
                    "sources": sorted(agg.contributing_sources),
                    "confidence": agg.confidence,
                }
                for key, agg in self.controller.get_prices().items()
            },
            "sources": {
                name: status.as_dict()
                for name, status in self.coordinator.get_all_source_status().items()
            },
            "last_error": state.last_error,
        }
