"""SentinelOracle: Orchestrates decision cycles and the request/poll contract.

Each triggered request runs one cycle: Fetch -> Aggregate -> Decide ->
(conditionally) Persist, tracked in the RequestLedger.

Architecture:
    - trigger() registers a Pending request and starts its cycle as an
      asyncio task, returning the request ID immediately
    - poll() is a plain ledger lookup; callers choose their own cadence
    - all sources are fetched concurrently, each with its own timeout
    - zero usable sources ends the request Errored; nothing is written
    - a decision is written only when it should persist (threshold met or
      first run); a rejected write (rate limit, authorization, validation)
      still ends the request Fulfilled, with the rejection in the response
    - cycles may overlap; the StateStore write is the serialization point
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from web3 import Web3

from .DecisionEngine import DecisionEngine, DecisionResult
from .FetchCoordinator import FetchCoordinator
from .fetchers import BaseFetcher, get_available_fetchers, get_fetcher
from .PriceAggregator import NoSourcesAvailable, PriceAggregator
from .RequestLedger import LedgerError, OracleRequest, RequestLedger, RequestNotFound
from .StateStore import RateLimited, StateStoreError, price_to_fixed

if TYPE_CHECKING:
    from .StateStore import StateStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestStatus:
    """Caller-facing view of a request, as returned by poll().

    :ivar exists: False if the ID is unknown or was evicted.
    :ivar fulfilled: True once the request reached a terminal state.
    :ivar response: JSON response payload (Fulfilled only).
    :ivar error: Error description (Errored only).
    :ivar timestamp: Completion time if terminal, else creation time.
    """

    exists: bool
    fulfilled: bool = False
    response: str | None = None
    error: str | None = None
    timestamp: float | None = None


class SentinelOracle:
    """Main orchestrator for market-signal decision cycles.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar store: Persisted-state backend.
    :ivar engine: Decision engine carrying the previous snapshot.
    :ivar ledger: Request lifecycle ledger.
    :ivar threshold: Default threshold, or None to use the store's.
    :ivar cycle_deadline: Optional overall fetch budget per cycle in seconds.
    :ivar requester: Default requester identity.
    :ivar writer: Identity used for store writes (None: store default).
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        store: StateStore,
        *,
        threshold: int | None = None,
        engine: DecisionEngine | None = None,
        ledger: RequestLedger | None = None,
        fetch_timeout: float = 10.0,
        cycle_deadline: float | None = None,
        requester: str = "local",
        writer: str | None = None,
    ) -> None:
        """Initialize the oracle.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param store: Persisted-state backend.
        :param threshold: Default threshold in [0, 100] (None: store's threshold).
        :param engine: Decision engine (default: a fresh DecisionEngine).
        :param ledger: Request ledger (default: a fresh RequestLedger).
        :param fetch_timeout: Per-source fetch timeout (default: 10.0).
        :param cycle_deadline: Overall fetch budget per cycle (default: none).
        :param requester: Default requester identity (default: "local").
        :param writer: Identity used for store writes (default: store default).
        :raises ValueError: If no fetchers are given or a limit is invalid.
        """
        if not fetchers:
            raise ValueError("At least one source must be configured")
        if threshold is not None and not 0 <= threshold <= 100:
            raise ValueError("threshold must be between 0 and 100")
        if cycle_deadline is not None and cycle_deadline <= 0:
            raise ValueError("cycle_deadline must be positive if specified")

        self.fetchers = fetchers
        self.store = store
        self.threshold = threshold
        self.engine = engine if engine is not None else DecisionEngine()
        self.ledger = ledger if ledger is not None else RequestLedger()
        self.cycle_deadline = cycle_deadline
        self.requester = requester
        self.writer = writer

        self.aggregator = PriceAggregator()
        self.coordinator = FetchCoordinator(
            fetchers=self.fetchers,
            fetch_timeout=fetch_timeout,
        )

        self._nonce = itertools.count()
        self._cycles: dict[str, asyncio.Task] = {}

        logger.info(
            f"SentinelOracle initialized: sources={list(self.fetchers)}, "
            f"threshold={threshold if threshold is not None else 'from store'}, "
            f"fetch_timeout={fetch_timeout}s, cycle_deadline={cycle_deadline}"
        )

    @classmethod
    def from_sources(
        cls,
        sources: list[str],
        store: StateStore,
        *,
        api_keys: dict[str, str] | None = None,
        fetch_timeout: float = 10.0,
        **kwargs,
    ) -> SentinelOracle:
        """Build an oracle from registered fetcher names.

        :param sources: Source names (e.g., ["coingecko", "coincap"]).
        :param store: Persisted-state backend.
        :param api_keys: Dict mapping source names to API keys.
        :param fetch_timeout: Per-source fetch timeout (default: 10.0).
        :param kwargs: Forwarded to the constructor.
        :raises ValueError: If a source name is unknown.
        """
        available = get_available_fetchers()
        invalid = [s for s in sources if s not in available]
        if invalid:
            raise ValueError(f"Unknown sources: {invalid}. Available: {available}")

        api_keys = api_keys or {}
        fetchers = {
            source: get_fetcher(source, api_key=api_keys.get(source), timeout=fetch_timeout)
            for source in sources
        }
        return cls(fetchers, store, fetch_timeout=fetch_timeout, **kwargs)

    async def trigger(
        self,
        threshold: int | None = None,
        *,
        request_id: str | None = None,
        requester: str | None = None,
    ) -> str:
        """Accept a request and start its cycle without waiting for it.

        :param threshold: Threshold for this request (None: oracle default).
        :param request_id: Caller-chosen ID (None: generate one).
        :param requester: Caller identity (None: oracle default).
        :returns: Request ID to poll.
        :raises ValueError: If threshold is outside [0, 100].
        :raises DuplicateRequest: If request_id is already in the ledger.
        """
        request_id, threshold = await self._accept(threshold, request_id, requester)
        task = asyncio.create_task(
            self._run(request_id, threshold), name=f"cycle-{request_id[:10]}"
        )
        self._cycles[request_id] = task
        task.add_done_callback(lambda _: self._cycles.pop(request_id, None))
        return request_id

    async def run_cycle(
        self,
        threshold: int | None = None,
        *,
        request_id: str | None = None,
        requester: str | None = None,
    ) -> OracleRequest:
        """Accept a request and run its cycle to completion.

        Same arguments and errors as trigger().

        :returns: The request in its terminal state.
        """
        request_id, threshold = await self._accept(threshold, request_id, requester)
        await self._run(request_id, threshold)
        return self.ledger.status(request_id)

    def poll(self, request_id: str) -> RequestStatus:
        """Return the current status of a request.

        :param request_id: Request ID returned by trigger().
        :returns: RequestStatus; ``exists`` is False for unknown or evicted IDs.
        """
        try:
            request = self.ledger.status(request_id)
        except RequestNotFound:
            return RequestStatus(exists=False)
        return RequestStatus(
            exists=True,
            fulfilled=request.fulfilled,
            response=request.response,
            error=request.error,
            timestamp=request.completed_at or request.created_at,
        )

    async def wait_for(
        self,
        request_id: str,
        *,
        interval: float = 1.0,
        timeout: float = 60.0,
    ) -> RequestStatus:
        """Poll a request at a fixed cadence until it is terminal.

        :param request_id: Request ID returned by trigger().
        :param interval: Seconds between polls (default: 1.0).
        :param timeout: Give up after this many seconds (default: 60.0).
        :returns: Terminal RequestStatus.
        :raises RequestNotFound: If the request does not exist (or was evicted).
        :raises TimeoutError: If the request is still pending at the timeout.
        """
        loop = asyncio.get_running_loop()
        give_up_at = loop.time() + timeout
        while True:
            status = self.poll(request_id)
            if not status.exists:
                raise RequestNotFound(request_id)
            if status.fulfilled:
                return status
            if loop.time() >= give_up_at:
                raise TimeoutError(
                    f"Request {request_id} still pending after {timeout}s"
                )
            await asyncio.sleep(interval)

    async def aclose(self) -> None:
        """Wait for in-flight cycles and close the shared HTTP client."""
        if self._cycles:
            await asyncio.gather(*self._cycles.values(), return_exceptions=True)
        await BaseFetcher.close_shared_client()

    async def _accept(
        self,
        threshold: int | None,
        request_id: str | None,
        requester: str | None,
    ) -> tuple[str, int]:
        """Validate a trigger and register it Pending in the ledger."""
        if threshold is None:
            threshold = self.threshold
        if threshold is None:
            # May be a contract call
            threshold = await asyncio.to_thread(self._store_threshold)
        if not 0 <= threshold <= 100:
            raise ValueError("threshold must be between 0 and 100")

        requester = requester or self.requester
        if request_id is None:
            request_id = self._new_request_id(requester)

        self.ledger.create(request_id, requester=requester)
        self.store.record_request(request_id)
        logger.info(f"Request {request_id} accepted from {requester} (threshold={threshold})")
        return request_id, threshold

    def _new_request_id(self, requester: str) -> str:
        """Derive a unique 0x-prefixed keccak256 request ID."""
        seed = f"{requester}/{next(self._nonce)}/{time.time_ns()}"
        return Web3.to_hex(Web3.keccak(text=seed))

    def _store_threshold(self) -> int:
        return self.store.threshold

    async def _run(self, request_id: str, threshold: int) -> None:
        """Run one cycle, guaranteeing the request ends in a terminal state."""
        try:
            await self._cycle(request_id, threshold)
        except asyncio.CancelledError:
            logger.warning(f"Request {request_id}: cycle cancelled")
            self._mark_errored(request_id, "cancelled")
            raise
        except LedgerError as e:
            # Evicted while pending; the result has nowhere to go
            logger.warning(f"Request {request_id}: result dropped ({e})")
        except Exception as e:
            logger.exception(f"Request {request_id}: cycle failed unexpectedly")
            self._mark_errored(request_id, f"{type(e).__name__}: {e}")

    def _mark_errored(self, request_id: str, error: str) -> None:
        """Move a request to Errored unless it already left the ledger."""
        try:
            self.ledger.fail(request_id, error)
        except LedgerError as e:
            logger.warning(f"Request {request_id}: failure not recorded ({e})")

    async def _cycle(self, request_id: str, threshold: int) -> None:
        # Step 1: fetch
        readings = await self.coordinator.fetch_all(deadline=self.cycle_deadline)

        # Step 2: aggregate
        try:
            snapshot = self.aggregator.aggregate(readings)
        except NoSourcesAvailable as e:
            logger.warning(f"Request {request_id}: {e}; nothing persisted")
            self.ledger.fail(request_id, str(e))
            return

        # Step 3: decide
        decision = self.engine.decide(snapshot, threshold)
        logger.info(
            f"Request {request_id}: ETH=${decision.eth_price:.2f} "
            f"BTC=${decision.btc_price:.2f} score={decision.score}/{threshold} "
            f"({'TRIGGERED' if decision.threshold_triggered else 'not triggered'}) "
            f"sources={','.join(decision.sources)} reason={decision.reason}"
        )

        # Step 4: persist if warranted
        persisted = False
        persist_error: str | None = None
        if decision.should_persist:
            persisted, persist_error = await self._persist(decision, request_id)
        else:
            logger.info(f"Request {request_id}: threshold not met, skipping write")

        response = self._encode_response(decision, persisted, persist_error)
        logger.debug(f"Request {request_id} response: {response}")
        self.ledger.fulfill(request_id, response)

    async def _persist(
        self, decision: DecisionResult, request_id: str
    ) -> tuple[bool, str | None]:
        """Write a decision to the store.

        :returns: (persisted, rejection description or None).
        """
        try:
            await asyncio.to_thread(
                self.store.write,
                price_to_fixed(decision.eth_price),
                price_to_fixed(decision.btc_price),
                decision.score,
                decision.threshold_triggered,
                decision.reason,
                sources=",".join(decision.sources),
                request_id=request_id,
                sender=self.writer,
            )
        except StateStoreError as e:
            description = f"{type(e).__name__}: {e}"
            if isinstance(e, RateLimited):
                logger.warning(f"Request {request_id}: write skipped ({description})")
            else:
                logger.error(f"Request {request_id}: write rejected ({description})")
            return False, description
        return True, None

    @staticmethod
    def _encode_response(
        decision: DecisionResult, persisted: bool, persist_error: str | None
    ) -> str:
        """Build the JSON response payload for a fulfilled request."""
        payload: dict[str, object] = {
            "priceETH": price_to_fixed(decision.eth_price),
            "priceBTC": price_to_fixed(decision.btc_price),
            "score": decision.score,
            "triggered": decision.threshold_triggered,
            "reason": decision.reason,
            "sources": ",".join(decision.sources),
            "persisted": persisted,
        }
        if persist_error is not None:
            payload["persistError"] = persist_error
        return json.dumps(payload)
