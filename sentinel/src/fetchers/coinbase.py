"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-USD/stats
Rate Limit: High (no key required)
"""

import asyncio
import logging

from ..SourceReading import SourceReading
from .base import (
    BaseFetcher,
    FetcherError,
    change_from_open,
    parse_price,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for Coinbase Exchange 24h stats.

    One request per product, issued concurrently. The price is ``last``
    and the 24h change is derived from ``open``. A failed product only
    drops that asset from the reading.
    No API key required for the public stats endpoint.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    PRODUCTS = {
        "eth": "ETH-USD",
        "btc": "BTC-USD",
    }

    async def fetch(self) -> SourceReading | None:
        """Fetch ETH and BTC stats from Coinbase Exchange.

        :returns: SourceReading or None on failure.
        """
        eth, btc = await asyncio.gather(
            self._fetch_product(self.PRODUCTS["eth"]),
            self._fetch_product(self.PRODUCTS["btc"]),
        )
        return self._build_reading(
            eth_price=eth[0],
            btc_price=btc[0],
            eth_change_24h=change_from_open(eth[0], eth[1]),
            btc_change_24h=change_from_open(btc[0], btc[1]),
        )

    async def _fetch_product(self, product: str) -> tuple[float | None, float | None]:
        """Fetch (last, open) for one product, or (None, None) on failure."""
        try:
            data = await self._get_json(f"{self.BASE_URL}/products/{product}/stats")
        except FetcherError as e:
            logger.warning(f"[coinbase] Failed to fetch {product}: {e}")
            return None, None

        if not isinstance(data, dict) or "last" not in data:
            logger.warning(f"[coinbase] No last price in response for {product}")
            return None, None

        return parse_price(data.get("last")), parse_price(data.get("open"))
