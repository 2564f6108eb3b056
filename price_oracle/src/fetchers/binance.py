"""Binance fetcher with self-contained USD conversion.

Binance lists USDT pairs for most assets. For /usd quotes this fetcher reads
BASE/USDT and USDT/USD from one 24h ticker request and multiplies them. Other
quotes are fetched as a direct symbol.

Endpoint: https://api.binance.com/api/v3/ticker/24hr
Rate Limit: High (no key required for public endpoints)
"""

import json
import logging
from typing import Any

from ..Observation import Observation
from .base import BaseFetcher, BatchResult, FetcherError, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Binance fetcher with internal USD conversion.

    Includes USDT depeg detection: if USDT deviates more than 2% from 1.0,
    USD-quoted observations are refused.
    """

    name = "binance"
    BASE_URL = "https://api.binance.com/api/v3"
    CONFIDENCE = 98.0

    USDT_USD_SYMBOL = "USDTUSD"

    # USDT depeg threshold (2%)
    USDT_DEPEG_THRESHOLD = 0.02

    @staticmethod
    def _symbol_for(base: str, quote: str) -> tuple[str, bool]:
        """Binance symbol to fetch for a pair, and whether it needs USDT conversion."""
        if quote.lower() == "usd":
            return f"{base.upper()}USDT", True
        return f"{base.upper()}{quote.upper()}", False

    def _is_depeg(self, rate: float) -> bool:
        """Check if stablecoin has depegged (>2% from 1.0).

        :param rate: Stablecoin/USD rate.
        :returns: True if depegged beyond threshold.
        """
        return abs(rate - 1.0) > self.USDT_DEPEG_THRESHOLD

    async def _fetch_tickers(self, symbols: list[str]) -> dict[str, dict[str, Any]]:
        """Fetch 24h tickers for multiple symbols in a single API call.

        :param symbols: List of Binance symbols.
        :returns: Dict mapping symbol to its ticker.
        :raises FetcherError: On request or parse failure.
        """
        data = await self._get_json(
            f"{self.BASE_URL}/ticker/24hr", params={"symbols": json.dumps(symbols)}
        )
        if not isinstance(data, list):
            raise FetcherError(f"[binance] Unexpected ticker response: {data}")
        return {item["symbol"]: item for item in data if "symbol" in item}

    def _to_observation(
        self,
        base: str,
        quote: str,
        tickers: dict[str, dict[str, Any]],
    ) -> Observation:
        symbol, needs_conversion = self._symbol_for(base, quote)
        ticker = tickers.get(symbol)
        if ticker is None or "lastPrice" not in ticker:
            raise FetcherError(f"[binance] No ticker for {symbol}")

        try:
            price = float(ticker["lastPrice"])
        except (TypeError, ValueError) as e:
            raise FetcherError(f"[binance] Invalid price for {symbol}: {e}") from e

        if needs_conversion:
            rate_ticker = tickers.get(self.USDT_USD_SYMBOL)
            if rate_ticker is None:
                raise FetcherError(f"[binance] Missing {self.USDT_USD_SYMBOL} for conversion")
            usdt_rate = float(rate_ticker["lastPrice"])
            if self._is_depeg(usdt_rate):
                raise FetcherError(f"[binance] USDT depeg detected: rate={usdt_rate:.4f}")
            price *= usdt_rate

        close_time = ticker.get("closeTime")
        return self._observation(
            base,
            quote,
            price,
            timestamp=close_time / 1000 if close_time else None,
            volume_24h=ticker.get("volume"),
            change_24h=ticker.get("priceChangePercent"),
        )

    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch price from Binance.

        :param base: Base currency (e.g., "btc", "eth", "ton").
        :param quote: Quote currency (e.g., "usd", "usdt").
        :returns: Observation with 24h market data.
        :raises FetcherError: On request or parse failure, or USDT depeg.
        """
        symbol, needs_conversion = self._symbol_for(base, quote)
        symbols = [symbol, self.USDT_USD_SYMBOL] if needs_conversion else [symbol]
        tickers = await self._fetch_tickers(symbols)
        return self._to_observation(base, quote, tickers)

    @property
    def supports_batch(self) -> bool:
        """Binance supports batch fetching multiple symbols in one request."""
        return True

    async def fetch_batch(self, pairs: list[tuple[str, str]]) -> BatchResult:
        """Fetch prices for multiple pairs in a single API call.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or FetcherError.
        """
        results: BatchResult = {}
        if not pairs:
            return results

        symbols: list[str] = []
        for base, quote in pairs:
            symbol, needs_conversion = self._symbol_for(base, quote)
            if symbol not in symbols:
                symbols.append(symbol)
            if needs_conversion and self.USDT_USD_SYMBOL not in symbols:
                symbols.append(self.USDT_USD_SYMBOL)

        try:
            tickers = await self._fetch_tickers(symbols)
        except FetcherError as e:
            logger.warning(f"[binance] Batch fetch failed: {e}")
            return {pair: e for pair in pairs}

        for base, quote in pairs:
            try:
                results[(base, quote)] = self._to_observation(base, quote, tickers)
            except FetcherError as e:
                results[(base, quote)] = e
        return results
