"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={BASE}{QUOTE}
Rate Limit: High (no key required)
ROSE Support: No (API returns "Unknown asset pair")
"""

import logging
from typing import Any

from ..Observation import Observation
from .base import BaseFetcher, BatchResult, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public API.

    Supports major USD pairs (BTC, ETH, etc.) but NOT ROSE.
    No API key required.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"
    CONFIDENCE = 97.0

    # Kraken uses non-standard ticker symbols
    SYMBOL_MAP = {
        "btc": "XBT",  # Kraken uses XBT instead of BTC
    }

    def _kraken_pair(self, base: str, quote: str) -> str:
        kraken_base = self.SYMBOL_MAP.get(base.lower(), base.upper())
        return f"{kraken_base}{quote.upper()}"

    async def _ticker(self, kraken_pairs: list[str]) -> dict[str, Any]:
        data = await self._get_json(
            f"{self.BASE_URL}/Ticker", params={"pair": ",".join(kraken_pairs)}
        )
        if data.get("error"):
            raise FetcherError(f"[kraken] API error for {kraken_pairs}: {data['error']}")
        result = data.get("result") or {}
        if not result:
            raise FetcherError(f"[kraken] No result for {kraken_pairs}")
        return result

    def _to_observation(self, base: str, quote: str, pair_data: dict) -> Observation:
        # 'c' is the last trade closed array: [price, lot volume]
        # 'v' is volume: [today, last 24 hours]; 'o' is today's opening price
        try:
            price = pair_data["c"][0]
            volume = pair_data.get("v", [None, None])[1]
            opening = float(pair_data["o"]) if pair_data.get("o") else None
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise FetcherError(f"[kraken] Failed to parse ticker for {base}/{quote}: {e}") from e

        change = None
        if opening:
            try:
                change = (float(price) - opening) / opening * 100
            except (TypeError, ValueError):
                change = None
        return self._observation(base, quote, price, volume_24h=volume, change_24h=change)

    @staticmethod
    def _find_pair_data(result: dict[str, Any], kraken_pair: str) -> dict | None:
        pair_data = result.get(kraken_pair)
        if pair_data is not None:
            return pair_data
        # Kraken sometimes prefixes with X or Z
        for key, value in result.items():
            normalized = key.replace("X", "").replace("Z", "")
            if kraken_pair in key or normalized == kraken_pair.replace("X", ""):
                return value
        return None

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from Kraken.

        :param base: Base currency (e.g., "btc", "eth").
        :param quote: Quote currency (e.g., "usd").
        :returns: Observation built from the ticker.
        :raises FetcherError: On request or parse failure.
        """
        kraken_pair = self._kraken_pair(base, quote)
        result = await self._ticker([kraken_pair])
        pair_data = self._find_pair_data(result, kraken_pair)
        if pair_data is None:
            # Single-pair queries return exactly one entry under Kraken's own key
            pair_data = next(iter(result.values()))
        return self._to_observation(base, quote, pair_data)

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if pair is supported (Kraken doesn't support ROSE).

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: True if pair is supported.
        """
        return base.lower() != "rose"

    @property
    def supports_batch(self) -> bool:
        """Kraken supports batch fetching multiple pairs."""
        return True

    async def fetch_batch(self, pairs: list[tuple[str, str]]) -> BatchResult:
        """Fetch prices for multiple pairs in a single API call.

        Kraken's /Ticker endpoint accepts comma-separated pairs
        for efficient batch queries.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or FetcherError.
        """
        results: BatchResult = {}
        pair_to_kraken: dict[tuple[str, str], str] = {}

        for base, quote in pairs:
            if not self.supports_pair(base, quote):
                results[(base, quote)] = FetcherError(
                    f"[kraken] Unsupported pair {base}/{quote}"
                )
                continue
            pair_to_kraken[(base, quote)] = self._kraken_pair(base, quote)

        if not pair_to_kraken:
            return results

        try:
            result_data = await self._ticker(list(pair_to_kraken.values()))
        except FetcherError as e:
            logger.warning(f"[kraken] Batch fetch failed: {e}")
            for key in pair_to_kraken:
                results[key] = e
            return results

        for (base, quote), kraken_pair in pair_to_kraken.items():
            pair_data = self._find_pair_data(result_data, kraken_pair)
            if pair_data is None:
                results[(base, quote)] = FetcherError(
                    f"[kraken] {kraken_pair} missing from batch response"
                )
                continue
            try:
                results[(base, quote)] = self._to_observation(base, quote, pair_data)
            except FetcherError as e:
                results[(base, quote)] = e

        return results
