"""Bitstamp fetcher.

Endpoint: https://www.bitstamp.net/api/v2/ticker/{base}{quote}/
Rate Limit: High (no key required)
ROSE Support: No
"""

import logging

from ..Observation import Observation
from .base import BaseFetcher, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BitstampFetcher(BaseFetcher):
    """Fetcher for Bitstamp public API.

    Supports major USD pairs (BTC, ETH, etc.) but NOT ROSE.
    No API key required.
    """

    name = "bitstamp"
    BASE_URL = "https://www.bitstamp.net/api/v2"
    CONFIDENCE = 96.0

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from Bitstamp.

        :param base: Base currency (e.g., "btc", "eth").
        :param quote: Quote currency (e.g., "usd").
        :returns: Observation built from the ticker.
        :raises FetcherError: On request or parse failure.
        """
        pair = f"{base.lower()}{quote.lower()}"
        data = await self._get_json(f"{self.BASE_URL}/ticker/{pair}/")

        if not isinstance(data, dict) or "last" not in data:
            raise FetcherError(f"[bitstamp] No 'last' price for {pair}: {data}")

        try:
            timestamp = float(data["timestamp"]) if data.get("timestamp") else None
        except (TypeError, ValueError):
            timestamp = None

        return self._observation(
            base,
            quote,
            data["last"],
            timestamp=timestamp,
            volume_24h=data.get("volume"),
            change_24h=data.get("percent_change_24"),
        )

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if pair is supported (Bitstamp doesn't support ROSE).

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: True if pair is supported.
        """
        return base.lower() != "rose"
