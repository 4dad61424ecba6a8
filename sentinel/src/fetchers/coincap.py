"""CoinCap fetcher.

Endpoint: https://api.coincap.io/v2/assets?ids=ethereum,bitcoin
Rate Limit: 200 calls/min (no key), higher with API key
"""

import logging

from ..SourceReading import SourceReading
from .base import BaseFetcher, FetcherError, parse_number, parse_price, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinCapFetcher(BaseFetcher):
    """Fetcher for CoinCap assets API.

    Prices and 24h changes are returned as decimal strings
    (``priceUsd``, ``changePercent24Hr``). An API key, if configured,
    is sent as a bearer token.
    """

    name = "coincap"
    BASE_URL = "https://api.coincap.io/v2"

    ASSET_IDS = {
        "eth": "ethereum",
        "btc": "bitcoin",
    }

    async def fetch(self) -> SourceReading | None:
        """Fetch ETH and BTC prices from CoinCap.

        :returns: SourceReading or None on failure.
        """
        headers = None
        if self.has_api_key:
            headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            data = await self._get_json(
                f"{self.BASE_URL}/assets",
                params={"ids": ",".join(self.ASSET_IDS.values())},
                headers=headers,
            )
        except FetcherError as e:
            logger.warning(f"[coincap] Failed to fetch: {e}")
            return None

        assets = data.get("data") if isinstance(data, dict) else None
        if not isinstance(assets, list):
            logger.warning("[coincap] No asset list in response")
            return None

        # Response is a list; index it by asset id
        by_id = {
            a.get("id"): a for a in assets if isinstance(a, dict) and a.get("id")
        }
        eth = by_id.get(self.ASSET_IDS["eth"], {})
        btc = by_id.get(self.ASSET_IDS["btc"], {})

        return self._build_reading(
            eth_price=parse_price(eth.get("priceUsd")),
            btc_price=parse_price(btc.get("priceUsd")),
            eth_change_24h=parse_number(eth.get("changePercent24Hr")),
            btc_change_24h=parse_number(btc.get("changePercent24Hr")),
        )
