"""FetchCoordinator: Concurrent fetching from all configured sources.

This module runs every source fetcher for one decision cycle and joins
their results, tolerating any subset of failures.

Architecture:
    - One asyncio task per source, all started at once
    - Each fetch carries its own timeout, independent of the cycle deadline
    - A failing or hung source never aborts the others
    - An optional cycle deadline cancels whatever is still pending and
      returns the readings that completed in time
    - Results are returned in completion order
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .fetchers import BaseFetcher
    from .SourceReading import SourceReading

logger = logging.getLogger(__name__)


class FetchCoordinator:
    """Coordinates concurrent fetching from multiple market-data sources.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar fetch_timeout: Timeout for each source's fetch in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 10.0,
    ) -> None:
        """Initialize the fetch coordinator.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param fetch_timeout: Timeout for each fetch (default: 10.0).
        :raises ValueError: If fetch_timeout is not positive.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout

    async def fetch_all(
        self, deadline: float | None = None
    ) -> list[SourceReading | None]:
        """Fetch readings from all sources concurrently.

        :param deadline: Optional overall budget in seconds. Sources that have
            not settled by then are cancelled and left out of the result.
        :returns: One entry per settled source (None for a failed fetch),
            in completion order.
        """
        if not self.fetchers:
            return []

        results: list[SourceReading | None] = []

        async def run(fetcher: BaseFetcher) -> None:
            results.append(await self._fetch_single(fetcher))

        tasks = {
            asyncio.create_task(run(fetcher), name=f"fetch-{source}"): source
            for source, fetcher in self.fetchers.items()
        }

        try:
            _, pending = await asyncio.wait(tasks, timeout=deadline)
        except asyncio.CancelledError:
            # Cycle cancelled; take the in-flight fetches down with it
            for task in tasks:
                task.cancel()
            raise

        if pending:
            for task in pending:
                logger.warning(
                    f"[{tasks[task]}] Not settled before cycle deadline "
                    f"({deadline}s), cancelling"
                )
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        settled = list(results)
        ok = sum(1 for r in settled if r is not None)
        logger.debug(
            f"Fetched {ok}/{len(self.fetchers)} sources "
            f"({len(settled) - ok} failed, {len(pending)} timed out at deadline)"
        )
        return settled

    async def _fetch_single(self, fetcher: BaseFetcher) -> SourceReading | None:
        """Fetch from one source with timeout.

        :param fetcher: Fetcher instance to use.
        :returns: Reading or None on failure.
        """
        try:
            return await asyncio.wait_for(fetcher.fetch(), timeout=self.fetch_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{fetcher.name}] Timeout after {self.fetch_timeout}s")
            return None
        except Exception as e:
            logger.warning(f"[{fetcher.name}] Error fetching: {e}")
            return None
