"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement the fetch() method,
which returns one Observation or raises FetcherError. A shared
httpx.AsyncClient is used across all fetchers to avoid connection overhead.

Fetchers can optionally implement batch fetching for APIs that support querying
multiple pairs in a single request.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch(self, base: str, quote: str) -> Observation:
            response = await self._get(f"https://api.example.com/{base}/{quote}")
            return self._observation(base, quote, response.json()["price"])
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from ..errors import FetchError
from ..Observation import Observation
from ..SourceManager import SourceStatus

logger = logging.getLogger(__name__)


class FetcherError(FetchError):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., missing API key)."""

    pass


class FetcherHTTPError(FetcherError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        """Initialize the HTTP error.

        :param status_code: HTTP status code.
        :param message: Error message from response.
        """
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {message}")


# Result of a batch fetch: an Observation, or the error for that pair.
BatchResult = dict[tuple[str, str], "Observation | FetcherError"]


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "coinbase", "kraken")
        - fetch(): Async method returning an Observation for a trading pair

    :cvar name: Unique identifier for this fetcher.
    :cvar CONFIDENCE: Confidence (0-100) attached to this source's observations.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""

    CONFIDENCE: ClassVar[float] = 100.0

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self._status = SourceStatus(name=self.name)

    def get_status(self) -> SourceStatus:
        """Health of this source: online flag, last success time, error count.

        Updated by the FetchCoordinator after every fan-out.
        """
        return self._status

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        The client is shared across all fetcher instances to reuse connections.

        :returns: Shared httpx.AsyncClient instance.
        """
        if BaseFetcher._shared_client is None or BaseFetcher._shared_client.is_closed:
            BaseFetcher._shared_client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                headers={"User-Agent": "quorum-price-oracle/1.0", "Accept": "application/json"},
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        if BaseFetcher._shared_client is not None and not BaseFetcher._shared_client.is_closed:
            await BaseFetcher._shared_client.aclose()
            BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, base: str, quote: str) -> Observation:
        """Fetch the current price for a trading pair.

        :param base: Base currency symbol (e.g., "btc", "eth", "ton").
        :param quote: Quote currency symbol (e.g., "usd").
        :returns: Observation for the pair.
        :raises FetcherError: On network, HTTP or parse failure.
        """
        pass

    async def fetch_price(self, base: str, quote: str) -> Observation:
        """Fetch one observation, normalizing any failure to FetcherError.

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: Observation for the pair.
        :raises FetcherError: On any failure of the underlying fetch().
        """
        try:
            return await self.fetch(base, quote)
        except FetcherError:
            raise
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise FetcherError(f"[{self.name}] Failed to parse response for {base}/{quote}: {e}") from e

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if this fetcher supports the given trading pair.

        Override in subclasses to restrict supported pairs.

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: True if pair is supported.
        """
        return True

    @property
    def supports_batch(self) -> bool:
        """Check if this fetcher supports batch fetching multiple pairs.

        Override in subclasses that implement fetch_batch() with actual
        batch API calls.

        :returns: True if batch fetching is supported.
        """
        return False

    async def fetch_batch(self, pairs: list[tuple[str, str]]) -> BatchResult:
        """Fetch prices for multiple trading pairs.

        Default implementation falls back to sequential individual fetches.
        Override in subclasses to implement actual batch API calls.

        :param pairs: List of (base, quote) tuples to fetch.
        :returns: Dict mapping (base, quote) to Observation or FetcherError.
        """
        results: BatchResult = {}
        for base, quote in pairs:
            try:
                results[(base, quote)] = await self.fetch_price(base, quote)
            except FetcherError as e:
                results[(base, quote)] = e
        return results

    def _observation(
        self,
        base: str,
        quote: str,
        price: Any,
        *,
        timestamp: float | None = None,
        volume_24h: Any = None,
        change_24h: Any = None,
        market_cap: Any = None,
    ) -> Observation:
        """Build a validated Observation from raw API values.

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :param price: Raw price value (str or number).
        :param timestamp: Unix timestamp reported by the API, if any.
        :param volume_24h: Optional raw 24h volume.
        :param change_24h: Optional raw 24h change percentage.
        :param market_cap: Optional raw market capitalization.
        :returns: Observation attributed to this source.
        :raises FetcherError: If the price is missing, non-numeric or not positive.
        """
        try:
            value = float(price)
        except (TypeError, ValueError) as e:
            raise FetcherError(f"[{self.name}] Invalid price for {base}/{quote}: {price!r}") from e
        if value <= 0:
            raise FetcherError(f"[{self.name}] Price must be positive for {base}/{quote}: {value}")

        return Observation(
            base=base,
            quote=quote,
            price=value,
            timestamp=timestamp if timestamp else time.time(),
            source=self.name,
            volume_24h=_optional_float(volume_24h),
            change_24h=_optional_float(change_24h),
            market_cap=_optional_float(market_cap),
            confidence=self.CONFIDENCE,
        )

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises FetcherHTTPError: On non-2xx response.
        :raises FetcherError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise FetcherHTTPError(response.status_code, response.text[:200])
        return response

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a URL and decode its JSON body.

        :raises FetcherError: On request failure or invalid JSON.
        """
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"[{self.name}] Invalid JSON from {url}: {e}") from e


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coinbase", "kraken").
    :param api_key: Optional API key.
    :param timeout: Optional request timeout in seconds.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
