"""CoinMarketCap fetcher.

Endpoint: https://pro-api.coinmarketcap.com/v2/cryptocurrency/quotes/latest
Rate Limit: 333 calls/day (free tier)
API Key: Required
"""

import logging
from datetime import datetime
from typing import Any

from ..Observation import Observation
from .base import (
    BaseFetcher,
    BatchResult,
    FetcherConfigError,
    FetcherError,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class CoinMarketCapFetcher(BaseFetcher):
    """Fetcher for CoinMarketCap API.

    Free tier: 333 calls/day. API key is REQUIRED.
    """

    name = "coinmarketcap"
    BASE_URL = "https://pro-api.coinmarketcap.com"
    CONFIDENCE = 96.0

    def _require_key(self) -> str:
        if not self.api_key:
            raise FetcherConfigError("[coinmarketcap] API key required but not provided")
        return self.api_key

    async def _quotes(self, bases: list[str], quote: str) -> dict[str, Any]:
        data = await self._get_json(
            f"{self.BASE_URL}/v2/cryptocurrency/quotes/latest",
            params={"symbol": ",".join(b.upper() for b in bases), "convert": quote.upper()},
            headers={"X-CMC_PRO_API_KEY": self._require_key()},
        )
        if not isinstance(data, dict) or "data" not in data:
            raise FetcherError(f"[coinmarketcap] No data in response: {data}")
        return data["data"]

    def _to_observation(self, base: str, quote: str, data: dict[str, Any]) -> Observation:
        symbol_data = data.get(base.upper())
        if not symbol_data:
            raise FetcherError(f"[coinmarketcap] Symbol {base.upper()} not found")

        # CMC returns a list of matches, take the first one
        if isinstance(symbol_data, list):
            symbol_data = symbol_data[0]

        quote_data = symbol_data.get("quote", {}).get(quote.upper())
        if not quote_data:
            raise FetcherError(
                f"[coinmarketcap] Quote {quote.upper()} not found for {base.upper()}"
            )

        return self._observation(
            base,
            quote,
            quote_data.get("price"),
            timestamp=_parse_time(quote_data.get("last_updated")),
            volume_24h=quote_data.get("volume_24h"),
            change_24h=quote_data.get("percent_change_24h"),
            market_cap=quote_data.get("market_cap"),
        )

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from CoinMarketCap.

        :param base: Base currency (e.g., "btc", "eth", "ton").
        :param quote: Quote currency (e.g., "usd").
        :returns: Observation with market data.
        :raises FetcherConfigError: If no API key is configured.
        :raises FetcherError: On request or parse failure.
        """
        data = await self._quotes([base], quote)
        return self._to_observation(base, quote, data)

    @property
    def supports_batch(self) -> bool:
        """CoinMarketCap supports batch fetching multiple symbols."""
        return True

    async def fetch_batch(self, pairs: list[tuple[str, str]]) -> BatchResult:
        """Fetch prices for multiple pairs in a single API call.

        CoinMarketCap's /quotes/latest endpoint accepts comma-separated
        symbols but only one convert currency per request.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or FetcherError.
        """
        if not pairs:
            return {}

        quotes = {quote.upper() for _, quote in pairs}
        # If multiple quote currencies, fall back to sequential
        if len(quotes) > 1:
            return await super().fetch_batch(pairs)

        try:
            data = await self._quotes([base for base, _ in pairs], pairs[0][1])
        except FetcherError as e:
            logger.warning(f"[coinmarketcap] Batch fetch failed: {e}")
            return {pair: e for pair in pairs}

        results: BatchResult = {}
        for base, quote in pairs:
            try:
                results[(base, quote)] = self._to_observation(base, quote, data)
            except FetcherError as e:
                results[(base, quote)] = e
        return results


def _parse_time(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return None
