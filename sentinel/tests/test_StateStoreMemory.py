"""Unit tests for StateStoreMemory."""

import threading

import pytest

from sentinel.src.StateStore import (
    InvalidInput,
    RateLimited,
    Unauthorized,
    price_from_fixed,
    price_to_fixed,
)
from sentinel.src.StateStoreMemory import StateStoreMemory


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def write(store: StateStoreMemory, score: int = 80, **kwargs):
    return store.write(
        kwargs.pop("eth_price", price_to_fixed(3000.0)),
        kwargs.pop("btc_price", price_to_fixed(60000.0)),
        score,
        kwargs.pop("triggered", score >= store.threshold),
        kwargs.pop("reason", "Initial state update"),
        **kwargs,
    )


class TestFixedPoint:
    """Test price conversion helpers."""

    def test_price_to_fixed(self) -> None:
        """Prices are scaled by 10**8 and rounded."""
        assert price_to_fixed(2450.32) == 245032000000
        assert price_to_fixed(1.0) == 100_000_000
        assert price_to_fixed(0.0) == 0

    def test_price_from_fixed(self) -> None:
        """Inverse conversion."""
        assert price_from_fixed(245032000000) == pytest.approx(2450.32)


class TestStateStoreMemoryInit:
    """Test StateStoreMemory initialization."""

    def test_default_values(self) -> None:
        """Defaults mirror the contract."""
        store = StateStoreMemory()
        assert store.owner == "local"
        assert store.threshold == 75
        assert store.min_update_interval == 60
        assert store.history_size == 100
        assert store.is_authorized("local")
        assert store.read_latest() is None

    def test_invalid_values(self) -> None:
        """Out-of-range arguments should raise ValueError."""
        with pytest.raises(ValueError, match="threshold"):
            StateStoreMemory(threshold=101)
        with pytest.raises(ValueError, match="min_update_interval"):
            StateStoreMemory(min_update_interval=-1)
        with pytest.raises(ValueError, match="history_size"):
            StateStoreMemory(history_size=0)
        with pytest.raises(ValueError, match="owner"):
            StateStoreMemory(owner="")

    def test_initial_statistics(self) -> None:
        """Statistics start at zero."""
        stats = StateStoreMemory().read_statistics()
        assert stats.total_updates == 0
        assert stats.total_threshold_triggers == 0
        assert stats.total_requests == 0
        assert stats.current_threshold == 75
        assert stats.last_update_time == 0
        assert stats.last_request_id == ""


class TestStateStoreMemoryWrite:
    """Test write validation and rate limiting."""

    def test_first_write(self) -> None:
        """The first write is accepted and becomes the latest state."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock)
        stored = write(store, sources="coingecko,coincap", request_id="0x01")

        assert store.read_latest() == stored
        assert stored.timestamp == int(clock.now)
        assert stored.eth_price == price_to_fixed(3000.0)
        assert stored.sources == "coingecko,coincap"
        assert stored.request_id == "0x01"

        stats = store.read_statistics()
        assert stats.total_updates == 1
        assert stats.total_threshold_triggers == 1
        assert stats.last_update_time == int(clock.now)

    def test_rate_limited(self) -> None:
        """A write inside the minimum interval is rejected without side effects."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=60)
        first = write(store)

        clock.advance(30)
        with pytest.raises(RateLimited, match="update too frequent") as exc_info:
            write(store, score=90)

        assert exc_info.value.retry_after == 30
        assert store.read_latest() == first
        assert store.read_statistics().total_updates == 1
        assert store.history_length() == 0

    def test_write_after_interval(self) -> None:
        """A write exactly at the interval is accepted."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=60)
        write(store)

        clock.advance(60)
        write(store, score=90)
        assert store.read_statistics().total_updates == 2

    def test_zero_interval_same_second(self) -> None:
        """Two writes in the same second are rejected even with no interval."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=0)
        write(store)

        with pytest.raises(RateLimited):
            write(store)

    def test_invalid_prices(self) -> None:
        """Zero prices are rejected."""
        store = StateStoreMemory(clock=FakeClock())
        with pytest.raises(InvalidInput, match="invalid ETH price"):
            write(store, eth_price=0)
        with pytest.raises(InvalidInput, match="invalid BTC price"):
            write(store, btc_price=0)
        assert store.read_latest() is None

    def test_invalid_score(self) -> None:
        """Scores outside [0, 100] are rejected."""
        store = StateStoreMemory(clock=FakeClock())
        with pytest.raises(InvalidInput, match="score must be 0-100"):
            write(store, score=101)

    def test_unauthorized_writer(self) -> None:
        """Unknown writers are rejected."""
        store = StateStoreMemory(clock=FakeClock())
        with pytest.raises(Unauthorized):
            write(store, sender="mallory")

    def test_non_triggered_not_counted(self) -> None:
        """Only triggered writes count as triggers."""
        store = StateStoreMemory(clock=FakeClock())
        write(store, score=50, triggered=False)
        assert store.read_statistics().total_threshold_triggers == 0

    def test_concurrent_writes_single_winner(self) -> None:
        """Concurrent writers within one interval: exactly one is accepted."""
        store = StateStoreMemory(clock=FakeClock())
        accepted: list[int] = []
        rejected: list[int] = []
        barrier = threading.Barrier(8)

        def worker(score: int) -> None:
            barrier.wait()
            try:
                write(store, score=score)
                accepted.append(score)
            except RateLimited:
                rejected.append(score)

        threads = [threading.Thread(target=worker, args=(80 + i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(accepted) == 1
        assert len(rejected) == 7
        assert store.read_latest().score == accepted[0]


class TestStateStoreMemoryHistory:
    """Test history retention."""

    def test_history_holds_replaced_states(self) -> None:
        """Each accepted write pushes the previous latest, newest first."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=60)
        for score in (76, 77, 78):
            write(store, score=score)
            clock.advance(60)

        assert store.read_latest().score == 78
        assert [d.score for d in store.read_history(10)] == [77, 76]
        assert [d.score for d in store.read_history(1)] == [77]
        assert store.read_history(0) == []

    def test_history_capacity(self) -> None:
        """History is bounded, dropping the oldest entries."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=1, history_size=2)
        for score in (80, 81, 82, 83):
            write(store, score=score)
            clock.advance(1)

        assert store.history_length() == 2
        assert [d.score for d in store.read_history(5)] == [82, 81]

    def test_negative_count(self) -> None:
        """Negative counts are invalid."""
        with pytest.raises(InvalidInput):
            StateStoreMemory().read_history(-1)


class TestStateStoreMemoryRequests:
    """Test request bookkeeping and timing."""

    def test_record_request(self) -> None:
        """Requests are counted and the last ID remembered."""
        store = StateStoreMemory()
        store.record_request("0x01")
        store.record_request("0x02")

        stats = store.read_statistics()
        assert stats.total_requests == 2
        assert stats.last_request_id == "0x02"

    def test_time_until_next_update(self) -> None:
        """Remaining wait shrinks with time and bottoms out at 0."""
        clock = FakeClock()
        store = StateStoreMemory(clock=clock, min_update_interval=60)
        assert store.time_until_next_update() == 0.0

        write(store)
        clock.advance(45)
        assert store.time_until_next_update() == 15
        clock.advance(100)
        assert store.time_until_next_update() == 0.0


class TestStateStoreMemoryAdmin:
    """Test owner-only administration."""

    def test_authorize_caller(self) -> None:
        """The owner can grant and revoke write access."""
        store = StateStoreMemory(owner="owner", clock=FakeClock())
        store.set_authorized_caller("bot", True, sender="owner")
        write(store, sender="bot")
        assert store.is_authorized("bot")

        store.set_authorized_caller("bot", False, sender="owner")
        assert not store.is_authorized("bot")

    def test_non_owner_cannot_authorize(self) -> None:
        """Only the owner manages authorization."""
        store = StateStoreMemory(owner="owner")
        with pytest.raises(Unauthorized, match="not owner"):
            store.set_authorized_caller("bot", True, sender="bot")

    def test_set_threshold(self) -> None:
        """The owner can change the threshold within [0, 100]."""
        store = StateStoreMemory(owner="owner")
        store.set_threshold(60, sender="owner")
        assert store.threshold == 60

        with pytest.raises(InvalidInput):
            store.set_threshold(101, sender="owner")
        with pytest.raises(Unauthorized):
            store.set_threshold(50, sender="someone")

    def test_transfer_ownership(self) -> None:
        """The new owner is authorized and the old one loses admin rights."""
        store = StateStoreMemory(owner="owner")
        store.transfer_ownership("new", sender="owner")

        assert store.owner == "new"
        assert store.is_authorized("new")
        with pytest.raises(Unauthorized):
            store.set_threshold(50, sender="owner")
        with pytest.raises(InvalidInput):
            store.transfer_ownership("", sender="new")
