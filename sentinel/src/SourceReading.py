"""SourceReading: One source's view of ETH and BTC at fetch time.

Fetchers build a SourceReading from the upstream payload. Fields that the
upstream did not provide (or provided in a malformed way) are ``None``,
never zero, so the aggregator can tell "no data" apart from a real value.

.. code-block:: python

    >>> reading = SourceReading("coingecko", eth_price=3000.0, btc_price=None)
    >>> reading.price("eth")
    3000.0
    >>> reading.reported_assets()
    ['eth']
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

# Assets tracked by every reading, in display order.
ASSETS: tuple[str, ...] = ("eth", "btc")


@dataclass(frozen=True)
class SourceReading:
    """Immutable per-source price record.

    :ivar source_id: Name of the fetcher that produced the reading.
    :ivar eth_price: ETH/USD price, or None if not reported.
    :ivar btc_price: BTC/USD price, or None if not reported.
    :ivar eth_change_24h: ETH 24h change in percent, or None if unavailable.
    :ivar btc_change_24h: BTC 24h change in percent, or None if unavailable.
    :ivar fetched_at: Unix timestamp of the fetch.
    """

    source_id: str
    eth_price: float | None = None
    btc_price: float | None = None
    eth_change_24h: float | None = None
    btc_change_24h: float | None = None
    fetched_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        """Reject negative prices."""
        for asset in ASSETS:
            value = self.price(asset)
            if value is not None and value < 0:
                raise ValueError(f"{asset} price must be non-negative, got {value}")

    def price(self, asset: str) -> float | None:
        """Return the reported price for an asset.

        :param asset: Asset symbol ("eth" or "btc").
        :returns: Price, or None if not reported.
        :raises ValueError: If asset is unknown.
        """
        if asset == "eth":
            return self.eth_price
        if asset == "btc":
            return self.btc_price
        raise ValueError(f"Unknown asset '{asset}'. Expected one of {ASSETS}")

    def change_24h(self, asset: str) -> float | None:
        """Return the reported 24h change for an asset.

        :param asset: Asset symbol ("eth" or "btc").
        :returns: Change in percent, or None if not reported.
        :raises ValueError: If asset is unknown.
        """
        if asset == "eth":
            return self.eth_change_24h
        if asset == "btc":
            return self.btc_change_24h
        raise ValueError(f"Unknown asset '{asset}'. Expected one of {ASSETS}")

    def reported_assets(self) -> list[str]:
        """Return assets with a positive price in this reading."""
        return [a for a in ASSETS if (self.price(a) or 0.0) > 0]

    @property
    def has_price(self) -> bool:
        """Check if at least one asset has a usable price."""
        return len(self.reported_assets()) > 0
