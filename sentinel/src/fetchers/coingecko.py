"""CoinGecko fetcher.

Endpoint: https://api.coingecko.com/api/v3/simple/price
    ?ids=ethereum,bitcoin&vs_currencies=usd&include_24hr_change=true
Rate Limit: 30 calls/min (free), higher with API key
"""

import logging

from ..SourceReading import SourceReading
from .base import (
    BaseFetcher,
    FetcherConfigError,
    FetcherError,
    parse_number,
    parse_price,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class CoinGeckoFetcher(BaseFetcher):
    """Fetcher for CoinGecko API.

    Returns prices and 24h change for ETH and BTC in one request.

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

    COIN_IDS = {
        "eth": "ethereum",
        "btc": "bitcoin",
    }

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize with optional demo: prefix handling.

        :raises FetcherConfigError: If a demo key is empty after the prefix.
        """
        self._is_demo = False
        if api_key and api_key.lower().startswith("demo:"):
            self._is_demo = True
            api_key = api_key[5:]
            if not api_key:
                raise FetcherConfigError("CoinGecko demo key is empty")
        super().__init__(api_key=api_key, timeout=timeout)

    @property
    def base_url(self) -> str:
        """Return appropriate base URL based on API key type."""
        if not self.has_api_key:
            return self.BASE_URL_FREE
        return self.BASE_URL_FREE if self._is_demo else self.BASE_URL_PRO

    @property
    def api_header(self) -> tuple[str, str] | None:
        """Return appropriate header name and value for API key."""
        if not self.api_key:
            return None
        header_name = "x-cg-demo-api-key" if self._is_demo else "x-cg-pro-api-key"
        return (header_name, self.api_key)

    async def fetch(self) -> SourceReading | None:
        """Fetch ETH and BTC prices from CoinGecko.

        :returns: SourceReading or None on failure.
        """
        headers = {}
        if self.api_header:
            header_name, header_value = self.api_header
            headers[header_name] = header_value

        try:
            data = await self._get_json(
                f"{self.base_url}/simple/price",
                params={
                    "ids": ",".join(self.COIN_IDS.values()),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                },
                headers=headers if headers else None,
            )
        except FetcherError as e:
            logger.warning(f"[coingecko] Failed to fetch: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"[coingecko] Unexpected response shape: {str(data)[:200]}")
            return None

        eth = data.get(self.COIN_IDS["eth"])
        btc = data.get(self.COIN_IDS["btc"])
        eth = eth if isinstance(eth, dict) else {}
        btc = btc if isinstance(btc, dict) else {}

        return self._build_reading(
            eth_price=parse_price(eth.get("usd")),
            btc_price=parse_price(btc.get("usd")),
            eth_change_24h=parse_number(eth.get("usd_24h_change")),
            btc_change_24h=parse_number(btc.get("usd_24h_change")),
        )
