"""StateStore: Abstract interface to the persisted sentinel state.

The store holds the latest accepted decision, a bounded history of the
decisions it replaced, and running statistics. Its single write entry point
enforces, atomically:

    - caller authorization (Unauthorized)
    - input validity: prices > 0, score in [0, 100] (InvalidInput)
    - a minimum interval between accepted writes, except the first (RateLimited)

Prices cross this boundary as fixed-point integers with 8 decimals
(USD price * 10**8); use price_to_fixed() / price_from_fixed() to convert.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

# Number of decimals of stored prices.
PRICE_DECIMALS = 8

DEFAULT_THRESHOLD = 75
DEFAULT_MIN_UPDATE_INTERVAL = 60
DEFAULT_HISTORY_SIZE = 100


class StateStoreError(Exception):
    """Base exception for rejected store operations."""

    pass


class RateLimited(StateStoreError):
    """Raised when a write arrives before the minimum update interval elapsed.

    :ivar retry_after: Seconds until a write would be accepted.
    """

    def __init__(self, message: str, retry_after: float = 0.0) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class Unauthorized(StateStoreError):
    """Raised when the caller is not permitted to perform the operation."""

    pass


class InvalidInput(StateStoreError):
    """Raised when a write or setting fails validation."""

    pass


def price_to_fixed(price: float) -> int:
    """Convert a USD price to the 8-decimal fixed-point integer.

    .. code-block:: python

        >>> price_to_fixed(2450.32)
        245032000000
    """
    return int(round(price * 10**PRICE_DECIMALS))


def price_from_fixed(value: int) -> float:
    """Convert an 8-decimal fixed-point integer back to a USD price."""
    return value / 10**PRICE_DECIMALS


@dataclass(frozen=True)
class StoredDecision:
    """A decision as persisted by the store.

    :ivar timestamp: Unix timestamp at which the write was accepted.
    :ivar eth_price: ETH price, fixed-point 8 decimals.
    :ivar btc_price: BTC price, fixed-point 8 decimals.
    :ivar score: Decision score.
    :ivar triggered: Whether the threshold was triggered.
    :ivar reason: Human-readable reason.
    :ivar sources: Comma-separated source names.
    :ivar request_id: Request that produced this decision ("" if none).
    """

    timestamp: int
    eth_price: int
    btc_price: int
    score: int
    triggered: bool
    reason: str
    sources: str = ""
    request_id: str = ""


@dataclass(frozen=True)
class Statistics:
    """Running statistics kept by the store.

    :ivar total_updates: Accepted writes.
    :ivar total_threshold_triggers: Accepted writes with triggered=True.
    :ivar total_requests: Requests recorded.
    :ivar current_threshold: Configured threshold.
    :ivar last_update_time: Unix timestamp of the last accepted write (0 if none).
    :ivar last_request_id: Most recently recorded request ID ("" if none).
    """

    total_updates: int
    total_threshold_triggers: int
    total_requests: int
    current_threshold: int
    last_update_time: int
    last_request_id: str = ""


class StateStore(ABC):
    """Abstract base class for persisted-state backends.

    Implementations must make write() an atomic check-and-update: two
    concurrent writers can never both pass the rate-limit check.
    """

    @abstractmethod
    def write(
        self,
        eth_price: int,
        btc_price: int,
        score: int,
        triggered: bool,
        reason: str,
        *,
        sources: str = "",
        request_id: str = "",
        sender: str | None = None,
    ) -> StoredDecision:
        """Persist a decision as the new latest state.

        :param eth_price: ETH price, fixed-point 8 decimals.
        :param btc_price: BTC price, fixed-point 8 decimals.
        :param score: Score in [0, 100].
        :param triggered: Whether the threshold was triggered.
        :param reason: Human-readable reason.
        :param sources: Comma-separated source names.
        :param request_id: Request that produced the decision.
        :param sender: Writing identity (None: the store's default identity).
        :returns: The stored decision.
        :raises Unauthorized: If sender may not write.
        :raises InvalidInput: If a price is 0 or score is outside [0, 100].
        :raises RateLimited: If the minimum update interval has not elapsed.
        """
        pass

    @abstractmethod
    def read_latest(self) -> StoredDecision | None:
        """Return the latest stored decision, or None before the first write."""
        pass

    @abstractmethod
    def read_statistics(self) -> Statistics:
        """Return running statistics."""
        pass

    @abstractmethod
    def read_history(self, n: int) -> list[StoredDecision]:
        """Return up to n most recent replaced decisions, newest first."""
        pass

    @abstractmethod
    def record_request(self, request_id: str) -> None:
        """Count an accepted request.

        :param request_id: ID of the accepted request.
        """
        pass

    @abstractmethod
    def time_until_next_update(self) -> float:
        """Seconds until a write would pass the rate limit (0 if now)."""
        pass

    @property
    def threshold(self) -> int:
        """Currently configured threshold."""
        return self.read_statistics().current_threshold
