"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair=XETHZUSD,XXBTZUSD
Rate Limit: High (no key required)
"""

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
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public ticker API.

    Both assets are queried in a single request. The price is the last
    trade (``c[0]``); the 24h change is derived from the opening price
    (``o``), which Kraken resets at 00:00 UTC.
    No API key required.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    # Kraken uses non-standard ticker symbols (XBT for BTC, X/Z prefixes)
    PAIRS = {
        "eth": "XETHZUSD",
        "btc": "XXBTZUSD",
    }

    # Alternate names Kraken may use as result keys
    ALT_NAMES = {
        "XETHZUSD": "ETHUSD",
        "XXBTZUSD": "XBTUSD",
    }

    async def fetch(self) -> SourceReading | None:
        """Fetch ETH and BTC prices from Kraken.

        :returns: SourceReading or None on failure.
        """
        try:
            data = await self._get_json(
                f"{self.BASE_URL}/Ticker",
                params={"pair": ",".join(self.PAIRS.values())},
            )
        except FetcherError as e:
            logger.warning(f"[kraken] Failed to fetch: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning("[kraken] Unexpected response shape")
            return None

        if data.get("error"):
            logger.warning(f"[kraken] API error: {data['error']}")
            return None

        result = data.get("result")
        if not isinstance(result, dict) or not result:
            logger.warning("[kraken] No result in response")
            return None

        values: dict[str, tuple[float | None, float | None]] = {}
        for asset, pair in self.PAIRS.items():
            pair_data = self._find_pair(result, pair)
            values[asset] = self._parse_ticker(pair_data)

        eth_price, eth_open = values["eth"]
        btc_price, btc_open = values["btc"]
        return self._build_reading(
            eth_price=eth_price,
            btc_price=btc_price,
            eth_change_24h=change_from_open(eth_price, eth_open),
            btc_change_24h=change_from_open(btc_price, btc_open),
        )

    @classmethod
    def _find_pair(cls, result: dict, pair: str) -> dict | None:
        """Locate a pair entry in the result, tolerating key variations."""
        pair_data = result.get(pair)
        if pair_data is None:
            pair_data = result.get(cls.ALT_NAMES.get(pair, pair))
        return pair_data if isinstance(pair_data, dict) else None

    @staticmethod
    def _parse_ticker(pair_data: dict | None) -> tuple[float | None, float | None]:
        """Extract (last price, opening price) from a ticker entry."""
        if pair_data is None:
            return None, None
        last = pair_data.get("c")
        last_price = parse_price(last[0]) if isinstance(last, list) and last else None
        return last_price, parse_price(pair_data.get("o"))
