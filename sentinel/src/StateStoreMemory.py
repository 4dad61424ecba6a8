"""StateStoreMemory: In-process StateStore for local runs and tests.

Mirrors the on-chain sentinel contract: an owner who is authorized by
default, an authorized-caller list, a configurable threshold, a minimum
interval between writes and a fixed-capacity history.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections import deque
from typing import Callable

from .StateStore import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_MIN_UPDATE_INTERVAL,
    DEFAULT_THRESHOLD,
    InvalidInput,
    RateLimited,
    StateStore,
    Statistics,
    StoredDecision,
    Unauthorized,
)

logger = logging.getLogger(__name__)


class StateStoreMemory(StateStore):
    """Thread-safe in-memory StateStore.

    :ivar owner: Identity allowed to manage authorization and settings.
    :ivar min_update_interval: Minimum seconds between accepted writes.
    :ivar history_size: Capacity of the history buffer.
    """

    def __init__(
        self,
        owner: str = "local",
        *,
        threshold: int = DEFAULT_THRESHOLD,
        min_update_interval: float = DEFAULT_MIN_UPDATE_INTERVAL,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize an empty store.

        :param owner: Owner identity, also the default writer.
        :param threshold: Initial threshold in [0, 100] (default: 75).
        :param min_update_interval: Seconds between writes (default: 60).
        :param history_size: History capacity (default: 100).
        :param clock: Time source returning Unix seconds.
        :raises ValueError: If an argument is out of range.
        """
        if not owner:
            raise ValueError("owner must be a non-empty identity")
        if not 0 <= threshold <= 100:
            raise ValueError("threshold must be between 0 and 100")
        if min_update_interval < 0:
            raise ValueError("min_update_interval must be non-negative")
        if history_size < 1:
            raise ValueError("history_size must be at least 1")

        self.owner = owner
        self.min_update_interval = min_update_interval
        self.history_size = history_size
        self._clock = clock
        self._lock = threading.Lock()

        self._authorized: set[str] = {owner}
        self._threshold = threshold
        self._latest: StoredDecision | None = None
        self._history: deque[StoredDecision] = deque(maxlen=history_size)
        self._total_updates = 0
        self._total_triggers = 0
        self._total_requests = 0
        self._last_update_time = 0
        self._last_request_id = ""

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
        """Persist a decision; see StateStore.write()."""
        sender = sender or self.owner
        with self._lock:
            if sender not in self._authorized:
                raise Unauthorized(f"caller {sender} is not authorized")
            if eth_price <= 0:
                raise InvalidInput("invalid ETH price")
            if btc_price <= 0:
                raise InvalidInput("invalid BTC price")
            if not 0 <= score <= 100:
                raise InvalidInput("score must be 0-100")

            now = self._now()
            if self._total_updates > 0:
                elapsed = now - self._last_update_time
                if elapsed < self.min_update_interval or now <= self._last_update_time:
                    raise RateLimited(
                        "update too frequent",
                        retry_after=max(self.min_update_interval - elapsed, 0.0),
                    )

            if self._latest is not None:
                self._history.append(self._latest)

            self._latest = StoredDecision(
                timestamp=now,
                eth_price=eth_price,
                btc_price=btc_price,
                score=score,
                triggered=triggered,
                reason=reason,
                sources=sources,
                request_id=request_id,
            )
            self._total_updates += 1
            if triggered:
                self._total_triggers += 1
            self._last_update_time = now
            latest = self._latest
            update_count = self._total_updates

        logger.info(
            f"State updated by {sender}: score={score}, triggered={triggered} "
            f"(update #{update_count})"
        )
        return latest

    def read_latest(self) -> StoredDecision | None:
        with self._lock:
            return self._latest

    def read_statistics(self) -> Statistics:
        with self._lock:
            return Statistics(
                total_updates=self._total_updates,
                total_threshold_triggers=self._total_triggers,
                total_requests=self._total_requests,
                current_threshold=self._threshold,
                last_update_time=self._last_update_time,
                last_request_id=self._last_request_id,
            )

    def read_history(self, n: int) -> list[StoredDecision]:
        if n < 0:
            raise InvalidInput("history count must be non-negative")
        with self._lock:
            return list(reversed(self._history))[:n]

    def history_length(self) -> int:
        """Number of decisions currently held in history."""
        with self._lock:
            return len(self._history)

    def record_request(self, request_id: str) -> None:
        with self._lock:
            self._total_requests += 1
            self._last_request_id = request_id

    def time_until_next_update(self) -> float:
        with self._lock:
            if self._total_updates == 0:
                return 0.0
            remaining = self._last_update_time + self.min_update_interval - self._now()
            return max(remaining, 0.0)

    def is_authorized(self, caller: str) -> bool:
        """Check whether caller may write."""
        with self._lock:
            return caller in self._authorized

    def set_authorized_caller(
        self, caller: str, authorized: bool, *, sender: str
    ) -> None:
        """Grant or revoke write access (owner only).

        :param caller: Identity to update.
        :param authorized: True to grant, False to revoke.
        :param sender: Identity performing the change.
        :raises Unauthorized: If sender is not the owner.
        :raises InvalidInput: If caller is empty.
        """
        with self._lock:
            self._require_owner(sender)
            if not caller:
                raise InvalidInput("invalid address")
            if authorized:
                self._authorized.add(caller)
            else:
                self._authorized.discard(caller)
        logger.info(f"Authorization for {caller} set to {authorized}")

    def set_threshold(self, value: int, *, sender: str) -> None:
        """Change the threshold (owner only).

        :param value: New threshold in [0, 100].
        :param sender: Identity performing the change.
        :raises Unauthorized: If sender is not the owner.
        :raises InvalidInput: If value is outside [0, 100].
        """
        with self._lock:
            self._require_owner(sender)
            if not 0 <= value <= 100:
                raise InvalidInput("threshold must be 0-100")
            old, self._threshold = self._threshold, value
        logger.info(f"Threshold updated: {old} -> {value}")

    def transfer_ownership(self, new_owner: str, *, sender: str) -> None:
        """Hand ownership to another identity, which becomes authorized.

        :param new_owner: Identity of the new owner.
        :param sender: Current owner.
        :raises Unauthorized: If sender is not the owner.
        :raises InvalidInput: If new_owner is empty.
        """
        with self._lock:
            self._require_owner(sender)
            if not new_owner:
                raise InvalidInput("invalid new owner")
            previous, self.owner = self.owner, new_owner
            self._authorized.add(new_owner)
        logger.info(f"Ownership transferred: {previous} -> {new_owner}")

    def _require_owner(self, sender: str) -> None:
        if sender != self.owner:
            raise Unauthorized(f"caller {sender} is not owner")

    def _now(self) -> int:
        # Whole seconds, like a block timestamp
        return math.floor(self._clock())
