"""Unit tests for price fetchers with mocked HTTP responses."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from price_oracle.src.errors import FetchError
from price_oracle.src.fetchers import (
    BaseFetcher,
    BinanceFetcher,
    BitstampFetcher,
    CoinbaseFetcher,
    CoinGeckoFetcher,
    CoinMarketCapFetcher,
    FetcherConfigError,
    FetcherError,
    FetcherHTTPError,
    KrakenFetcher,
    get_available_fetchers,
    get_fetcher,
)


class TestRegistry:
    """Test the fetcher registry."""

    def test_available_fetchers(self) -> None:
        """All bundled fetchers are registered."""
        assert get_available_fetchers() == [
            "binance",
            "bitstamp",
            "coinbase",
            "coingecko",
            "coinmarketcap",
            "kraken",
        ]

    def test_get_fetcher(self) -> None:
        """get_fetcher builds an instance with key and timeout."""
        fetcher = get_fetcher("coinmarketcap", api_key="k", timeout=3.0)
        assert isinstance(fetcher, CoinMarketCapFetcher)
        assert fetcher.has_api_key
        assert fetcher.timeout == 3.0

    def test_get_unknown_fetcher(self) -> None:
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown fetcher 'nope'"):
            get_fetcher("nope")

    def test_fetcher_error_is_fetch_error(self) -> None:
        """Fetcher errors count as fetch-stage errors."""
        assert issubclass(FetcherError, FetchError)

    def test_status_starts_online(self) -> None:
        """Each fetcher owns a status record named after it."""
        status = get_fetcher("kraken").get_status()
        assert status.name == "kraken"
        assert status.online


class TestBaseFetcher:
    """Test shared fetcher behavior."""

    def test_observation_rejects_non_positive(self) -> None:
        """Zero or negative prices are rejected."""
        fetcher = CoinbaseFetcher()
        with pytest.raises(FetcherError, match="Price must be positive"):
            fetcher._observation("btc", "usd", "0")

    def test_observation_rejects_non_numeric(self) -> None:
        """Non-numeric prices are rejected."""
        fetcher = CoinbaseFetcher()
        with pytest.raises(FetcherError, match="Invalid price"):
            fetcher._observation("btc", "usd", "abc")

    @patch("price_oracle.src.fetchers.base.time.time")
    def test_observation_defaults(self, mock_time) -> None:
        """Timestamp defaults to now; confidence comes from the source."""
        mock_time.return_value = 42.0
        obs = CoinbaseFetcher()._observation("BTC", "USD", "100.5", volume_24h="bad")

        assert obs.pair == "btc/usd"
        assert obs.price == 100.5
        assert obs.timestamp == 42.0
        assert obs.source == "coinbase"
        assert obs.confidence == CoinbaseFetcher.CONFIDENCE
        assert obs.volume_24h is None

    @pytest.mark.asyncio
    async def test_fetch_price_normalizes_parse_errors(self) -> None:
        """Parse errors from fetch() surface as FetcherError."""
        fetcher = CoinbaseFetcher()
        with patch.object(fetcher, "fetch", new=AsyncMock(side_effect=KeyError("price"))):
            with pytest.raises(FetcherError, match="Failed to parse response"):
                await fetcher.fetch_price("btc", "usd")

    @pytest.mark.asyncio
    async def test_default_fetch_batch_collects_errors(self) -> None:
        """The default batch keeps per-pair results and errors."""
        fetcher = BitstampFetcher()
        ok = fetcher._observation("btc", "usd", "100")
        err = FetcherError("boom")
        with patch.object(fetcher, "fetch", new=AsyncMock(side_effect=[ok, err])):
            results = await fetcher.fetch_batch([("btc", "usd"), ("eth", "usd")])

        assert results[("btc", "usd")] is ok
        assert results[("eth", "usd")] is err

    @pytest.mark.asyncio
    async def test_get_http_error(self) -> None:
        """Non-2xx responses raise FetcherHTTPError."""
        response = MagicMock(spec=httpx.Response)
        response.is_success = False
        response.status_code = 429
        response.text = "rate limited"
        client = MagicMock()
        client.get = AsyncMock(return_value=response)

        with patch.object(BaseFetcher, "get_shared_client", return_value=client):
            with pytest.raises(FetcherHTTPError) as exc_info:
                await CoinbaseFetcher()._get("https://example.com")

        assert exc_info.value.status_code == 429
        assert "HTTP 429" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_timeout(self) -> None:
        """Timeouts raise FetcherError."""
        client = MagicMock()
        client.get = AsyncMock(side_effect=httpx.ReadTimeout("slow"))

        with patch.object(BaseFetcher, "get_shared_client", return_value=client):
            with pytest.raises(FetcherError, match="Request timeout"):
                await CoinbaseFetcher()._get("https://example.com")


class TestCoinbaseFetcher:
    """Test Coinbase response parsing."""

    @pytest.mark.asyncio
    async def test_fetch(self) -> None:
        """Price, volume and trade time are read from the ticker."""
        fetcher = CoinbaseFetcher()
        payload = {"price": "50000.5", "volume": "123.4", "time": "2024-01-01T00:00:00.000000Z"}
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=payload)) as mock_get:
            obs = await fetcher.fetch("btc", "usd")

        assert mock_get.call_args.args[0].endswith("/products/BTC-USD/ticker")
        assert obs.price == 50000.5
        assert obs.volume_24h == 123.4
        assert obs.timestamp == 1704067200.0

    @pytest.mark.asyncio
    async def test_missing_price(self) -> None:
        """A ticker without a price is an error."""
        fetcher = CoinbaseFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value={"message": "NotFound"})):
            with pytest.raises(FetcherError, match="No price"):
                await fetcher.fetch("btc", "usd")


class TestKrakenFetcher:
    """Test Kraken response parsing."""

    TICKER = {
        "error": [],
        "result": {
            "XXBTZUSD": {"c": ["50000.1", "0.1"], "v": ["10", "20"], "o": "49000"},
            "XETHZUSD": {"c": ["3000", "1"], "v": ["5", "7"], "o": "3000"},
        },
    }

    @pytest.mark.asyncio
    async def test_fetch_maps_btc_to_xbt(self) -> None:
        """BTC is requested as XBT and prefixed keys are matched."""
        fetcher = KrakenFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.TICKER)) as mock_get:
            obs = await fetcher.fetch("btc", "usd")

        assert mock_get.call_args.kwargs["params"] == {"pair": "XBTUSD"}
        assert obs.price == 50000.1
        assert obs.volume_24h == 20.0
        assert obs.change_24h == pytest.approx((50000.1 - 49000) / 49000 * 100)

    @pytest.mark.asyncio
    async def test_api_error(self) -> None:
        """Kraken error arrays raise FetcherError."""
        fetcher = KrakenFetcher()
        payload = {"error": ["EQuery:Unknown asset pair"], "result": {}}
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=payload)):
            with pytest.raises(FetcherError, match="API error"):
                await fetcher.fetch("btc", "usd")

    @pytest.mark.asyncio
    async def test_batch(self) -> None:
        """Batch fetch queries all pairs at once and flags unsupported ones."""
        fetcher = KrakenFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.TICKER)) as mock_get:
            results = await fetcher.fetch_batch([("btc", "usd"), ("eth", "usd"), ("rose", "usd")])

        mock_get.assert_awaited_once()
        assert mock_get.call_args.kwargs["params"] == {"pair": "XBTUSD,ETHUSD"}
        assert results[("btc", "usd")].price == 50000.1
        assert results[("eth", "usd")].price == 3000.0
        assert isinstance(results[("rose", "usd")], FetcherError)

    def test_supports_pair(self) -> None:
        """ROSE is not listed on Kraken."""
        fetcher = KrakenFetcher()
        assert fetcher.supports_pair("btc", "usd")
        assert not fetcher.supports_pair("rose", "usd")
        assert fetcher.supports_batch


class TestCoinGeckoFetcher:
    """Test CoinGecko parsing and key handling."""

    PAYLOAD = {
        "bitcoin": {
            "usd": 50000,
            "usd_24h_vol": 1e9,
            "usd_24h_change": -1.2,
            "usd_market_cap": 1e12,
            "last_updated_at": 1700000000,
        }
    }

    @pytest.mark.asyncio
    async def test_fetch(self) -> None:
        """Market data fields are attached to the observation."""
        fetcher = CoinGeckoFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.PAYLOAD)):
            obs = await fetcher.fetch("btc", "usd")

        assert obs.price == 50000.0
        assert obs.timestamp == 1700000000
        assert obs.volume_24h == 1e9
        assert obs.change_24h == -1.2
        assert obs.market_cap == 1e12

    @pytest.mark.asyncio
    async def test_unknown_coin(self) -> None:
        """Coins without a known id are errors."""
        with pytest.raises(FetcherError, match="Unknown coin"):
            await CoinGeckoFetcher().fetch("zzz", "usd")

    def test_demo_key(self) -> None:
        """demo: keys use the free URL and the demo header."""
        fetcher = CoinGeckoFetcher(api_key="demo:CG-abc")
        assert fetcher.api_key == "CG-abc"
        assert fetcher.base_url == CoinGeckoFetcher.BASE_URL_FREE
        assert fetcher.api_header == ("x-cg-demo-api-key", "CG-abc")

    def test_pro_key(self) -> None:
        """Plain keys use the pro URL."""
        fetcher = CoinGeckoFetcher(api_key="abc")
        assert fetcher.base_url == CoinGeckoFetcher.BASE_URL_PRO
        assert fetcher.api_header == ("x-cg-pro-api-key", "abc")

    def test_supports_pair(self) -> None:
        """Support is limited to mapped coins."""
        fetcher = CoinGeckoFetcher()
        assert fetcher.supports_pair("ton", "usd")
        assert not fetcher.supports_pair("zzz", "usd")


class TestBinanceFetcher:
    """Test Binance USD conversion."""

    @staticmethod
    def tickers(usdt_rate: str) -> list[dict]:
        return [
            {
                "symbol": "BTCUSDT",
                "lastPrice": "50000",
                "closeTime": 1700000000000,
                "volume": "5",
                "priceChangePercent": "1.5",
            },
            {"symbol": "USDTUSD", "lastPrice": usdt_rate},
        ]

    @pytest.mark.asyncio
    async def test_fetch_converts_usdt(self) -> None:
        """USD quotes are derived from USDT pairs and the USDT/USD rate."""
        fetcher = BinanceFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.tickers("1.001"))):
            obs = await fetcher.fetch("btc", "usd")

        assert obs.price == pytest.approx(50050.0)
        assert obs.timestamp == 1700000000.0
        assert obs.change_24h == 1.5

    @pytest.mark.asyncio
    async def test_depeg_refused(self) -> None:
        """A USDT rate more than 2% off peg is refused."""
        fetcher = BinanceFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.tickers("0.95"))):
            with pytest.raises(FetcherError, match="depeg"):
                await fetcher.fetch("btc", "usd")

    @pytest.mark.asyncio
    async def test_batch_missing_symbol(self) -> None:
        """Pairs missing from the batch response get their own error."""
        fetcher = BinanceFetcher()
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=self.tickers("1.0"))):
            results = await fetcher.fetch_batch([("btc", "usd"), ("eth", "usd")])

        assert results[("btc", "usd")].price == 50000.0
        assert isinstance(results[("eth", "usd")], FetcherError)


class TestCoinMarketCapFetcher:
    """Test CoinMarketCap key handling."""

    @pytest.mark.asyncio
    async def test_requires_key(self) -> None:
        """Fetching without a key is a configuration error."""
        with pytest.raises(FetcherConfigError, match="API key required"):
            await CoinMarketCapFetcher().fetch("btc", "usd")

    @pytest.mark.asyncio
    async def test_fetch(self) -> None:
        """The first symbol match is used."""
        fetcher = CoinMarketCapFetcher(api_key="k")
        payload = {
            "data": {
                "BTC": [
                    {
                        "quote": {
                            "USD": {
                                "price": 50000.0,
                                "volume_24h": 1e9,
                                "percent_change_24h": 0.5,
                                "market_cap": 1e12,
                                "last_updated": "2024-01-01T00:00:00.000Z",
                            }
                        }
                    }
                ]
            }
        }
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=payload)) as mock_get:
            obs = await fetcher.fetch("btc", "usd")

        assert mock_get.call_args.kwargs["headers"] == {"X-CMC_PRO_API_KEY": "k"}
        assert obs.price == 50000.0
        assert obs.market_cap == 1e12
        assert obs.timestamp == 1704067200.0


class TestBitstampFetcher:
    """Test Bitstamp parsing."""

    @pytest.mark.asyncio
    async def test_fetch(self) -> None:
        """Price and timestamp come from the ticker."""
        fetcher = BitstampFetcher()
        payload = {"last": "50000", "volume": "12", "timestamp": "1700000000", "percent_change_24": "2.0"}
        with patch.object(fetcher, "_get_json", new=AsyncMock(return_value=payload)):
            obs = await fetcher.fetch("btc", "usd")

        assert obs.price == 50000.0
        assert obs.timestamp == 1700000000.0
        assert obs.change_24h == 2.0
