"""PriceAggregator: Combine per-source readings into one PriceSnapshot.

Algorithm:
    1. Drop missing readings (failed sources) and readings with no price
    2. Fail with NoSourcesAvailable if nothing is left
    3. Per asset, average the prices of the sources that reported it
    4. Per asset, take the maximum pairwise deviation |a-b| / min(a,b) * 100
       (0 when fewer than two sources reported that asset)
    5. Take the largest absolute 24h change reported by any source

There is no fallback price: a cycle with zero usable sources fails.

.. code-block:: python

    >>> aggregator = PriceAggregator()
    >>> snapshot = aggregator.aggregate([
    ...     SourceReading("coingecko", eth_price=3000.0, btc_price=60000.0),
    ...     None,
    ...     SourceReading("coincap", eth_price=3030.0, btc_price=60000.0),
    ... ])
    >>> snapshot.eth_price
    3015.0
    >>> snapshot.eth_deviation_pct
    1.0
    >>> snapshot.sources_used
    ('coingecko', 'coincap')
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from statistics import fmean

from .SourceReading import ASSETS, SourceReading

logger = logging.getLogger(__name__)


class NoSourcesAvailable(Exception):
    """Raised when no source produced a usable reading in a cycle.

    :ivar attempted: Number of readings handed to the aggregator.
    """

    def __init__(self, attempted: int) -> None:
        """Initialize the error.

        :param attempted: Number of readings (including failed ones).
        """
        self.attempted = attempted
        super().__init__(f"No price sources available ({attempted} attempted)")


def deviation_percent(a: float, b: float) -> float:
    """Relative difference between two prices, in percent of the smaller one.

    .. code-block:: python

        >>> deviation_percent(2500.0, 2600.0)
        4.0
    """
    if a <= 0 or b <= 0:
        return 0.0
    return abs(a - b) / min(a, b) * 100


@dataclass(frozen=True)
class PriceSnapshot:
    """Aggregated market view for one decision cycle.

    :ivar readings: Usable readings, in fetch completion order.
    :ivar eth_price: Mean ETH price across reporting sources (0.0 if none).
    :ivar btc_price: Mean BTC price across reporting sources (0.0 if none).
    :ivar eth_deviation_pct: Max pairwise ETH deviation between sources.
    :ivar btc_deviation_pct: Max pairwise BTC deviation between sources.
    :ivar max_change_24h_pct: Largest absolute 24h change of either asset.
    :ivar sources_used: Source names of the usable readings.
    :ivar timestamp: Unix timestamp of aggregation.
    """

    readings: tuple[SourceReading, ...]
    eth_price: float
    btc_price: float
    eth_deviation_pct: float = 0.0
    btc_deviation_pct: float = 0.0
    max_change_24h_pct: float = 0.0
    sources_used: tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)

    def price(self, asset: str) -> float:
        """Return the aggregated price for an asset."""
        if asset == "eth":
            return self.eth_price
        if asset == "btc":
            return self.btc_price
        raise ValueError(f"Unknown asset '{asset}'. Expected one of {ASSETS}")

    def deviation_pct(self, asset: str) -> float:
        """Return the source deviation for an asset."""
        if asset == "eth":
            return self.eth_deviation_pct
        if asset == "btc":
            return self.btc_deviation_pct
        raise ValueError(f"Unknown asset '{asset}'. Expected one of {ASSETS}")


class PriceAggregator:
    """Aggregates readings from multiple sources into a PriceSnapshot.

    Any number of sources may fail; aggregation only fails when none
    produced a usable reading.
    """

    def aggregate(
        self, readings: Sequence[SourceReading | None]
    ) -> PriceSnapshot:
        """Aggregate one cycle's readings.

        :param readings: One entry per settled source; None for a failed one.
        :returns: PriceSnapshot for the cycle.
        :raises NoSourcesAvailable: If no reading carries a usable price.
        """
        usable = [r for r in readings if r is not None and r.has_price]
        if not usable:
            raise NoSourcesAvailable(attempted=len(readings))

        prices: dict[str, float] = {}
        deviations: dict[str, float] = {}
        for asset in ASSETS:
            values = [r.price(asset) for r in usable if asset in r.reported_assets()]
            prices[asset] = fmean(values) if values else 0.0
            # Max pairwise deviation is always between the extremes
            if len(values) >= 2:
                deviations[asset] = deviation_percent(min(values), max(values))
            else:
                deviations[asset] = 0.0

        changes = [
            abs(change)
            for r in usable
            for asset in ASSETS
            if (change := r.change_24h(asset)) is not None
        ]

        sources_used = tuple(dict.fromkeys(r.source_id for r in usable))

        snapshot = PriceSnapshot(
            readings=tuple(usable),
            eth_price=prices["eth"],
            btc_price=prices["btc"],
            eth_deviation_pct=deviations["eth"],
            btc_deviation_pct=deviations["btc"],
            max_change_24h_pct=max(changes, default=0.0),
            sources_used=sources_used,
        )

        dropped = len(readings) - len(usable)
        logger.debug(
            f"Aggregated {len(usable)} sources ({dropped} dropped): "
            f"ETH=${snapshot.eth_price:.2f} (dev {snapshot.eth_deviation_pct:.4f}%), "
            f"BTC=${snapshot.btc_price:.2f} (dev {snapshot.btc_deviation_pct:.4f}%)"
        )
        return snapshot
