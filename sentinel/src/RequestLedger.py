"""RequestLedger: Lifecycle tracking for triggered decision requests.

Every accepted trigger is registered as Pending and moves exactly once to a
terminal state, Fulfilled (with a response) or Errored (with an error).
Lookups are by request ID.

The ledger is bounded: on each create() the oldest requests beyond
``max_requests`` (and, if configured, those older than ``max_age_seconds``)
are evicted. A caller still polling an evicted request gets RequestNotFound.
Uniqueness only holds among retained requests: once evicted, a caller-chosen
ID can be created again, and a poller still holding the old ID then sees the
new request. Generated IDs are never reused.

.. code-block:: python

    >>> ledger = RequestLedger(max_requests=100)
    >>> ledger.create("0xabc", requester="alice")
    >>> ledger.status("0xabc").state
    <RequestState.PENDING: 'pending'>
    >>> ledger.fulfill("0xabc", '{"score": 80}')
    >>> ledger.fulfill("0xabc", '{"score": 80}')
    Traceback (most recent call last):
    ...
    AlreadyFulfilled: Request 0xabc is already fulfilled
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from enum import Enum

logger = logging.getLogger(__name__)


class LedgerError(Exception):
    """Base exception for ledger misuse."""

    pass


class RequestNotFound(LedgerError):
    """Raised when a request ID is unknown or was evicted."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request {request_id} not found")


class AlreadyFulfilled(LedgerError):
    """Raised on a second terminal transition for the same request."""

    def __init__(self, request_id: str, state: RequestState) -> None:
        self.request_id = request_id
        self.state = state
        super().__init__(f"Request {request_id} is already {state.value}")


class DuplicateRequest(LedgerError):
    """Raised when creating a request whose ID is already in the ledger."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request {request_id} already exists")


class RequestState(Enum):
    """Lifecycle state of an OracleRequest."""

    PENDING = "pending"
    FULFILLED = "fulfilled"
    ERRORED = "errored"


@dataclass(frozen=True)
class OracleRequest:
    """One decision request as recorded in the ledger.

    :ivar request_id: Unique request identifier.
    :ivar state: Current lifecycle state.
    :ivar requester: Identity of the caller that triggered it.
    :ivar created_at: Unix timestamp of creation.
    :ivar response: Response payload (only when Fulfilled).
    :ivar error: Error description (only when Errored).
    :ivar completed_at: Unix timestamp of the terminal transition.
    """

    request_id: str
    state: RequestState
    requester: str
    created_at: float
    response: str | None = None
    error: str | None = None
    completed_at: float | None = None

    @property
    def fulfilled(self) -> bool:
        """True once the request left Pending (either terminal state)."""
        return self.state is not RequestState.PENDING

    @property
    def is_error(self) -> bool:
        """True if the request ended Errored."""
        return self.state is RequestState.ERRORED


class RequestLedger:
    """Bounded, thread-safe store of OracleRequests keyed by request ID.

    :ivar max_requests: Maximum number of requests retained.
    :ivar max_age_seconds: Optional maximum age before eviction.
    """

    def __init__(
        self,
        max_requests: int = 256,
        max_age_seconds: float | None = None,
    ) -> None:
        """Initialize an empty ledger.

        :param max_requests: Retain at most this many requests (default: 256).
        :param max_age_seconds: Evict requests older than this (default: never).
        :raises ValueError: If limits are not positive.
        """
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if max_age_seconds is not None and max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive if specified")

        self.max_requests = max_requests
        self.max_age_seconds = max_age_seconds
        self._requests: OrderedDict[str, OracleRequest] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._requests)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._requests

    def create(self, request_id: str, requester: str = "") -> None:
        """Register a new Pending request.

        :param request_id: Unique request identifier.
        :param requester: Identity of the caller.
        :raises DuplicateRequest: If the ID is already present.
        """
        with self._lock:
            if request_id in self._requests:
                raise DuplicateRequest(request_id)
            self._requests[request_id] = OracleRequest(
                request_id=request_id,
                state=RequestState.PENDING,
                requester=requester,
                created_at=time.time(),
            )
            self._evict()
        logger.debug(f"Request {request_id} created by {requester or 'unknown'}")

    def fulfill(self, request_id: str, response: str) -> None:
        """Move a Pending request to Fulfilled.

        :param request_id: Request identifier.
        :param response: Response payload.
        :raises RequestNotFound: If the ID is unknown.
        :raises AlreadyFulfilled: If the request is already terminal.
        """
        self._complete(request_id, RequestState.FULFILLED, response=response)

    def fail(self, request_id: str, error: str) -> None:
        """Move a Pending request to Errored.

        :param request_id: Request identifier.
        :param error: Error description.
        :raises RequestNotFound: If the ID is unknown.
        :raises AlreadyFulfilled: If the request is already terminal.
        """
        self._complete(request_id, RequestState.ERRORED, error=error)

    def status(self, request_id: str) -> OracleRequest:
        """Look up a request.

        :param request_id: Request identifier.
        :returns: Current OracleRequest (an immutable copy).
        :raises RequestNotFound: If the ID is unknown or evicted.
        """
        with self._lock:
            request = self._requests.get(request_id)
        if request is None:
            raise RequestNotFound(request_id)
        return request

    def pending(self) -> list[OracleRequest]:
        """Return all requests still Pending, oldest first."""
        with self._lock:
            return [
                r for r in self._requests.values() if r.state is RequestState.PENDING
            ]

    def _complete(
        self,
        request_id: str,
        state: RequestState,
        *,
        response: str | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            request = self._requests.get(request_id)
            if request is None:
                raise RequestNotFound(request_id)
            if request.state is not RequestState.PENDING:
                raise AlreadyFulfilled(request_id, request.state)
            self._requests[request_id] = replace(
                request,
                state=state,
                response=response,
                error=error,
                completed_at=time.time(),
            )
        logger.debug(f"Request {request_id} -> {state.value}")

    def _evict(self) -> None:
        """Drop requests beyond the count and age limits. Caller holds the lock."""
        if self.max_age_seconds is not None:
            cutoff = time.time() - self.max_age_seconds
            # Insertion order equals creation order
            while self._requests:
                oldest = next(iter(self._requests.values()))
                if oldest.created_at >= cutoff:
                    break
                self._drop_oldest("age")

        while len(self._requests) > self.max_requests:
            self._drop_oldest("count")

    def _drop_oldest(self, cause: str) -> None:
        request_id, request = self._requests.popitem(last=False)
        if request.state is RequestState.PENDING:
            logger.warning(
                f"Evicting pending request {request_id} ({cause} limit); "
                "pollers will see it as not found"
            )
        else:
            logger.debug(f"Evicted request {request_id} ({cause} limit)")
