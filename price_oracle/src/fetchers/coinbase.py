"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
Rate Limit: High (no key required)
"""

import logging
from datetime import datetime

from ..Observation import Observation
from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for Coinbase Exchange API.

    Supports native USD pairs. No API key required for public ticker endpoint.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"
    CONFIDENCE = 97.0

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from Coinbase Exchange.

        :param base: Base currency (e.g., "btc", "eth").
        :param quote: Quote currency (e.g., "usd").
        :returns: Observation with price, 24h volume and trade time.
        :raises FetcherError: On request or parse failure.
        """
        symbol = f"{base.upper()}-{quote.upper()}"
        data = await self._get_json(f"{self.BASE_URL}/products/{symbol}/ticker")

        if not isinstance(data, dict) or "price" not in data:
            raise FetcherError(f"[coinbase] No price in response for {symbol}: {data}")

        return self._observation(
            base,
            quote,
            data["price"],
            timestamp=_parse_time(data.get("time")),
            volume_24h=data.get("volume"),
        )


def _parse_time(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.debug(f"[coinbase] Unparseable trade time: {value}")
        return None
