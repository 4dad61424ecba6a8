"""Base fetcher interface and shared HTTP client management.

All market-data fetchers inherit from BaseFetcher and implement the fetch()
method, which returns one SourceReading covering ETH and BTC or None.
A shared httpx.AsyncClient is used across all fetchers to avoid connection overhead.

Fetchers never raise from fetch(): network errors, timeouts, HTTP errors and
malformed payloads are logged and folded into a ``None`` result. There are no
internal retries; the next decision cycle is the retry.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch(self) -> SourceReading | None:
            try:
                response = await self._get("https://api.example.com/prices")
                data = response.json()
            except FetcherError as e:
                logger.warning(f"[myfetcher] Failed to fetch: {e}")
                return None
            return self._build_reading(
                eth_price=parse_price(data.get("eth")),
                btc_price=parse_price(data.get("btc")),
            )
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from ..SourceReading import SourceReading

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """Base exception for fetcher errors."""

    pass


class FetcherConfigError(FetcherError):
    """Raised when fetcher configuration is invalid (e.g., malformed API key)."""

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


def parse_price(value: Any) -> float | None:
    """Parse an upstream price field, failing closed.

    Accepts numbers and numeric strings. Missing, non-numeric, non-finite
    and non-positive values all map to None.

    :param value: Raw field from the upstream payload.
    :returns: Positive price or None.
    """
    number = parse_number(value)
    if number is None or number <= 0:
        return None
    return number


def parse_number(value: Any) -> float | None:
    """Parse an upstream numeric field (may be negative), failing closed.

    :param value: Raw field from the upstream payload.
    :returns: Finite float or None.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def change_from_open(last: float | None, open_price: float | None) -> float | None:
    """Derive a 24h percent change from last and opening prices.

    :param last: Latest trade price.
    :param open_price: Price at the start of the 24h window.
    :returns: Percent change, or None if either side is missing.
    """
    if last is None or open_price is None or open_price <= 0:
        return None
    return (last - open_price) / open_price * 100


class BaseFetcher(ABC):
    """Abstract base class for market-data fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "coingecko", "kraken")
        - fetch(): Async method returning a SourceReading for ETH and BTC

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    # Fetcher identification
    name: ClassVar[str] = ""

    # Default timeout for HTTP requests (seconds)
    DEFAULT_TIMEOUT = 10.0

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

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
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
                follow_redirects=True,
            )
        return BaseFetcher._shared_client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Replace the shared HTTP client (e.g., with a mock transport).

        :param client: Client to use for all subsequent requests.
        """
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self) -> SourceReading | None:
        """Fetch the current ETH and BTC market data.

        :returns: SourceReading, or None if the fetch or parse failed.
        """
        pass

    def _build_reading(
        self,
        *,
        eth_price: float | None,
        btc_price: float | None,
        eth_change_24h: float | None = None,
        btc_change_24h: float | None = None,
    ) -> SourceReading | None:
        """Build a SourceReading, or None if no asset has a price.

        :param eth_price: Parsed ETH price.
        :param btc_price: Parsed BTC price.
        :param eth_change_24h: Parsed ETH 24h change percent.
        :param btc_change_24h: Parsed BTC 24h change percent.
        :returns: SourceReading stamped with this fetcher's name, or None.
        """
        if eth_price is None and btc_price is None:
            logger.warning(f"[{self.name}] Response carried no usable price")
            return None
        return SourceReading(
            source_id=self.name,
            eth_price=eth_price,
            btc_price=btc_price,
            eth_change_24h=eth_change_24h,
            btc_change_24h=btc_change_24h,
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
            if not response.is_success:
                logger.debug(
                    "HTTP GET %s failed with status %s: %s",
                    url,
                    response.status_code,
                    response.text[:200],
                )
                raise FetcherHTTPError(response.status_code, response.text[:200])
            return response
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

    async def _get_json(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> Any:
        """GET a URL and decode the JSON body.

        :raises FetcherError: On HTTP, network or JSON decoding errors.
        """
        response = await self._get(url, params=params, headers=headers)
        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"Invalid JSON body: {e}") from e


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.

    .. code-block:: python

        @register_fetcher
        class CoinCapFetcher(BaseFetcher):
            name = "coincap"
            ...
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coingecko", "kraken").
    :param api_key: Optional API key.
    :param timeout: Optional per-request timeout in seconds.
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
