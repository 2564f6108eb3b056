"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price?ids={id}&vs_currencies={quote}
Rate Limit: 30 calls/min (free), higher with API key
ROSE Support: Yes (id: "oasis-network")
"""

import logging
from typing import Any

from ..Observation import Observation
from .base import BaseFetcher, BatchResult, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko API.

    Requests 24h volume, 24h change, market cap and last update time along
    with the price.

    API tiers:
        - Free: api.coingecko.com (no key, 30 calls/min)
        - Demo: api.coingecko.com + x-cg-demo-api-key header
        - Pro: pro-api.coingecko.com + x-cg-pro-api-key header

    To use a demo key, prefix with "demo:": API_KEY_COINGECKO=demo:CG-xxxxx
    Pro keys need no prefix: API_KEY_COINGECKO=xxxxx
    """

    name = "coingecko"
    BASE_URL_FREE = "https://api.coingecko.com/api/v3"
    BASE_URL_PRO = "https://pro-api.coingecko.com/api/v3"
    CONFIDENCE = 95.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize with optional demo: prefix handling."""
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]  # Strip "demo:" prefix
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        # Demo keys use free URL, pro keys use pro URL
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def api_header(self) -> tuple[str, str] | None:
        """Return appropriate header name and value for API key."""
        if not self.api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return (header_name, self.api_key)

    # Map common symbols to CoinGecko IDs
    COIN_IDS = {
        "btc": "bitcoin",
        "eth": "ethereum",
        "ton": "the-open-network",
        "rose": "oasis-network",
        "usdt": "tether",
        "usdc": "usd-coin",
        "sol": "solana",
        "avax": "avalanche-2",
        "dot": "polkadot",
        "atom": "cosmos",
        "link": "chainlink",
    }

    async def _simple_price(self, coin_ids: list[str], quotes: list[str]) -> dict[str, Any]:
        headers = {}
        if self.api_header:
            header_name, header_value = self.api_header
            headers[header_name] = header_value

        data = await self._get_json(
            f"{self.base_url}/simple/price",
            params={
                "ids": ",".join(coin_ids),
                "vs_currencies": ",".join(quotes),
                "include_24hr_vol": "true",
                "include_24hr_change": "true",
                "include_market_cap": "true",
                "include_last_updated_at": "true",
            },
            headers=headers if headers else None,
        )
        if not isinstance(data, dict):
            raise FetcherError(f"[coingecko] Unexpected response: {data}")
        return data

    def _to_observation(self, base: str, quote: str, data: dict[str, Any]) -> Observation:
        coin_id = self.COIN_IDS[base.lower()]
        coin = data.get(coin_id)
        if not coin:
            raise FetcherError(f"[coingecko] Coin {coin_id} not in response")

        q = quote.lower()
        if q not in coin:
            raise FetcherError(f"[coingecko] Quote {q} not available for {coin_id}")

        return self._observation(
            base,
            quote,
            coin[q],
            timestamp=coin.get("last_updated_at"),
            volume_24h=coin.get(f"{q}_24h_vol"),
            change_24h=coin.get(f"{q}_24h_change"),
            market_cap=coin.get(f"{q}_market_cap"),
        )

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from CoinGecko.

        :param base: Base currency (e.g., "btc", "eth", "ton").
        :param quote: Quote currency (e.g., "usd").
        :returns: Observation with market data.
        :raises FetcherError: On unknown coin, request or parse failure.
        """
        coin_id = self.COIN_IDS.get(base.lower())
        if not coin_id:
            raise FetcherError(f"[coingecko] Unknown coin: {base}")

        data = await self._simple_price([coin_id], [quote.lower()])
        return self._to_observation(base, quote, data)

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if pair is supported (base must be in COIN_IDS).

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: True if pair is supported.
        """
        return base.lower() in self.COIN_IDS

    @property
    def supports_batch(self) -> bool:
        """CoinGecko supports batch fetching multiple coins in one request."""
        return True

    async def fetch_batch(self, pairs: list[tuple[str, str]]) -> BatchResult:
        """Fetch prices for multiple pairs in a single API call.

        CoinGecko's /simple/price endpoint accepts comma-separated coin IDs
        and vs_currencies, allowing efficient batch queries.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or FetcherError.
        """
        results: BatchResult = {}
        wanted: list[tuple[str, str]] = []
        coin_ids: list[str] = []
        quotes: list[str] = []

        for base, quote in pairs:
            coin_id = self.COIN_IDS.get(base.lower())
            if not coin_id:
                results[(base, quote)] = FetcherError(f"[coingecko] Unknown coin: {base}")
                continue
            wanted.append((base, quote))
            if coin_id not in coin_ids:
                coin_ids.append(coin_id)
            if quote.lower() not in quotes:
                quotes.append(quote.lower())

        if not wanted:
            return results

        try:
            data = await self._simple_price(coin_ids, quotes)
        except FetcherError as e:
            logger.warning(f"[coingecko] Batch fetch failed: {e}")
            for key in wanted:
                results[key] = e
            return results

        for base, quote in wanted:
            try:
                results[(base, quote)] = self._to_observation(base, quote, data)
            except FetcherError as e:
                results[(base, quote)] = e

        return results
