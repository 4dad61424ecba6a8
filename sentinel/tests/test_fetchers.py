"""Unit tests for the market-data fetchers.

Upstream APIs are replaced with an httpx.MockTransport installed as the
shared client, so no request leaves the process.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from sentinel.src.fetchers import (
    BaseFetcher,
    CoinbaseFetcher,
    CoinCapFetcher,
    CoinGeckoFetcher,
    FetcherConfigError,
    KrakenFetcher,
    get_available_fetchers,
    get_fetcher,
)
from sentinel.src.fetchers.base import change_from_open, parse_number, parse_price


@pytest.fixture
def mock_api():
    """Install a MockTransport-backed shared client; yields a setter for the handler."""
    requests: list[httpx.Request] = []
    handler: dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def dispatch(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler["fn"](request)

    def install(fn: Callable[[httpx.Request], httpx.Response]) -> list[httpx.Request]:
        handler["fn"] = fn
        return requests

    BaseFetcher.set_shared_client(httpx.AsyncClient(transport=httpx.MockTransport(dispatch)))
    yield install
    BaseFetcher.set_shared_client(None)


def json_response(payload, status_code: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda request: httpx.Response(status_code, json=payload)


class TestParsing:
    """Test fail-closed field parsing."""

    def test_parse_price(self) -> None:
        """Numbers and numeric strings parse; everything else is None."""
        assert parse_price(3000) == 3000.0
        assert parse_price("3000.5") == 3000.5
        assert parse_price(None) is None
        assert parse_price("abc") is None
        assert parse_price(0) is None
        assert parse_price(-5) is None
        assert parse_price(float("nan")) is None
        assert parse_price("inf") is None
        assert parse_price(True) is None
        assert parse_price({"usd": 1}) is None

    def test_parse_number_allows_negative(self) -> None:
        """Changes may be negative."""
        assert parse_number("-3.5") == -3.5
        assert parse_number(0) == 0.0
        assert parse_number("x") is None

    def test_change_from_open(self) -> None:
        """Percent change from the opening price."""
        assert change_from_open(105.0, 100.0) == pytest.approx(5.0)
        assert change_from_open(95.0, 100.0) == pytest.approx(-5.0)
        assert change_from_open(None, 100.0) is None
        assert change_from_open(100.0, None) is None
        assert change_from_open(100.0, 0.0) is None


class TestRegistry:
    """Test the fetcher registry."""

    def test_available(self) -> None:
        """All bundled fetchers are registered."""
        assert get_available_fetchers() == ["coinbase", "coincap", "coingecko", "kraken"]

    def test_get_fetcher(self) -> None:
        """get_fetcher passes key and timeout through."""
        fetcher = get_fetcher("coincap", api_key="k", timeout=3.0)
        assert isinstance(fetcher, CoinCapFetcher)
        assert fetcher.api_key == "k"
        assert fetcher.timeout == 3.0

    def test_unknown_fetcher(self) -> None:
        """Unknown names raise ValueError."""
        with pytest.raises(ValueError, match="Unknown fetcher 'nope'"):
            get_fetcher("nope")


class TestCoinGeckoFetcher:
    """Test CoinGeckoFetcher."""

    PAYLOAD = {
        "ethereum": {"usd": 3000.5, "usd_24h_change": -2.1},
        "bitcoin": {"usd": 60000, "usd_24h_change": 6.3},
    }

    @pytest.mark.asyncio
    async def test_fetch(self, mock_api) -> None:
        """Prices and 24h changes are parsed from simple/price."""
        requests = mock_api(json_response(self.PAYLOAD))
        reading = await CoinGeckoFetcher().fetch()

        assert reading is not None
        assert reading.source_id == "coingecko"
        assert reading.eth_price == 3000.5
        assert reading.btc_price == 60000.0
        assert reading.eth_change_24h == -2.1
        assert reading.btc_change_24h == 6.3

        request = requests[0]
        assert request.url.host == "api.coingecko.com"
        assert request.url.params["ids"] == "ethereum,bitcoin"
        assert request.url.params["include_24hr_change"] == "true"

    @pytest.mark.asyncio
    async def test_demo_key(self, mock_api) -> None:
        """demo: keys use the free host and the demo header."""
        requests = mock_api(json_response(self.PAYLOAD))
        await CoinGeckoFetcher(api_key="demo:CG-abc").fetch()

        assert requests[0].url.host == "api.coingecko.com"
        assert requests[0].headers["x-cg-demo-api-key"] == "CG-abc"

    @pytest.mark.asyncio
    async def test_pro_key(self, mock_api) -> None:
        """Plain keys use the pro host and the pro header."""
        requests = mock_api(json_response(self.PAYLOAD))
        await CoinGeckoFetcher(api_key="pro-key").fetch()

        assert requests[0].url.host == "pro-api.coingecko.com"
        assert requests[0].headers["x-cg-pro-api-key"] == "pro-key"

    def test_empty_demo_key(self) -> None:
        """An empty demo key is a configuration error."""
        with pytest.raises(FetcherConfigError):
            CoinGeckoFetcher(api_key="demo:")

    @pytest.mark.asyncio
    async def test_partial_payload(self, mock_api) -> None:
        """A missing asset leaves only that field empty."""
        mock_api(json_response({"ethereum": {"usd": 3000}}))
        reading = await CoinGeckoFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == 3000.0
        assert reading.btc_price is None
        assert reading.eth_change_24h is None

    @pytest.mark.asyncio
    async def test_http_error(self, mock_api) -> None:
        """Non-2xx responses yield None."""
        mock_api(json_response({"error": "rate limited"}, status_code=429))
        assert await CoinGeckoFetcher().fetch() is None

    @pytest.mark.asyncio
    async def test_malformed_prices(self, mock_api) -> None:
        """Non-numeric prices fail closed to None."""
        mock_api(json_response({"ethereum": {"usd": "n/a"}, "bitcoin": {"usd": None}}))
        assert await CoinGeckoFetcher().fetch() is None

    @pytest.mark.asyncio
    async def test_invalid_json(self, mock_api) -> None:
        """A non-JSON body yields None."""
        mock_api(lambda request: httpx.Response(200, text="<html>oops</html>"))
        assert await CoinGeckoFetcher().fetch() is None

    @pytest.mark.asyncio
    async def test_network_error(self, mock_api) -> None:
        """Transport failures yield None."""
        def fail(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        mock_api(fail)
        assert await CoinGeckoFetcher().fetch() is None


class TestCoinCapFetcher:
    """Test CoinCapFetcher."""

    @pytest.mark.asyncio
    async def test_fetch(self, mock_api) -> None:
        """String prices and changes are parsed from the asset list."""
        requests = mock_api(json_response({
            "data": [
                {"id": "bitcoin", "priceUsd": "60123.45", "changePercent24Hr": "-1.5"},
                {"id": "ethereum", "priceUsd": "3001.10", "changePercent24Hr": "0.75"},
            ],
        }))
        reading = await CoinCapFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == pytest.approx(3001.10)
        assert reading.btc_price == pytest.approx(60123.45)
        assert reading.eth_change_24h == pytest.approx(0.75)
        assert reading.btc_change_24h == pytest.approx(-1.5)
        assert requests[0].url.params["ids"] == "ethereum,bitcoin"
        assert "authorization" not in requests[0].headers

    @pytest.mark.asyncio
    async def test_bearer_key(self, mock_api) -> None:
        """An API key is sent as a bearer token."""
        requests = mock_api(json_response({"data": [{"id": "ethereum", "priceUsd": "3000"}]}))
        await CoinCapFetcher(api_key="secret").fetch()
        assert requests[0].headers["authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_missing_data(self, mock_api) -> None:
        """A payload without a data list yields None."""
        mock_api(json_response({"error": "bad"}))
        assert await CoinCapFetcher().fetch() is None


class TestKrakenFetcher:
    """Test KrakenFetcher."""

    @pytest.mark.asyncio
    async def test_fetch(self, mock_api) -> None:
        """Last trade price and change from open are parsed."""
        requests = mock_api(json_response({
            "error": [],
            "result": {
                "XETHZUSD": {"c": ["3150.00", "0.1"], "o": "3000.00"},
                "XXBTZUSD": {"c": ["57000.0", "0.01"], "o": "60000.0"},
            },
        }))
        reading = await KrakenFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == 3150.0
        assert reading.btc_price == 57000.0
        assert reading.eth_change_24h == pytest.approx(5.0)
        assert reading.btc_change_24h == pytest.approx(-5.0)
        assert requests[0].url.params["pair"] == "XETHZUSD,XXBTZUSD"

    @pytest.mark.asyncio
    async def test_alternate_keys(self, mock_api) -> None:
        """Alternate result keys are accepted."""
        mock_api(json_response({
            "error": [],
            "result": {"ETHUSD": {"c": ["3000.0"]}, "XBTUSD": {"c": ["60000.0"]}},
        }))
        reading = await KrakenFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == 3000.0
        assert reading.btc_price == 60000.0
        assert reading.eth_change_24h is None

    @pytest.mark.asyncio
    async def test_api_error(self, mock_api) -> None:
        """A non-empty error list yields None."""
        mock_api(json_response({"error": ["EQuery:Unknown asset pair"], "result": {}}))
        assert await KrakenFetcher().fetch() is None


class TestCoinbaseFetcher:
    """Test CoinbaseFetcher."""

    @pytest.mark.asyncio
    async def test_fetch(self, mock_api) -> None:
        """One stats request per product."""
        stats = {
            "/products/ETH-USD/stats": {"last": "3300.00", "open": "3000.00"},
            "/products/BTC-USD/stats": {"last": "60000.00", "open": "60000.00"},
        }
        requests = mock_api(lambda request: httpx.Response(200, json=stats[request.url.path]))
        reading = await CoinbaseFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == 3300.0
        assert reading.btc_price == 60000.0
        assert reading.eth_change_24h == pytest.approx(10.0)
        assert reading.btc_change_24h == pytest.approx(0.0)
        assert sorted(r.url.path for r in requests) == sorted(stats)

    @pytest.mark.asyncio
    async def test_one_product_fails(self, mock_api) -> None:
        """A failed product only drops that asset."""
        def handler(request: httpx.Request) -> httpx.Response:
            if "BTC" in request.url.path:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(200, content=json.dumps({"last": "3000", "open": "3000"}))

        mock_api(handler)
        reading = await CoinbaseFetcher().fetch()

        assert reading is not None
        assert reading.eth_price == 3000.0
        assert reading.btc_price is None

    @pytest.mark.asyncio
    async def test_both_products_fail(self, mock_api) -> None:
        """No usable product yields None."""
        mock_api(json_response({"message": "NotFound"}, status_code=404))
        assert await CoinbaseFetcher().fetch() is None
