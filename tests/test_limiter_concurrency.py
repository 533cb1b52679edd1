"""Concurrency and failure-propagation tests for TokenBucketLimiter."""

import math
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from bucketgate.adapters.store.base import AbstractBucketStateStore
from bucketgate.adapters.store.in_memory import InMemoryBucketStateStore
from bucketgate.core.errors import ContentionError, StoreUnavailableError
from bucketgate.schemas.bucket import BucketState, state_key
from bucketgate.services.token_bucket import TokenBucketLimiter


class YieldingStore(InMemoryBucketStateStore):
    """In-memory store that yields the GIL between read and write.

    Widens the window in which other threads can interleave, the way network
    round-trips do against a real shared store.
    """

    def read(self, key: str) -> str | None:
        value = super().read(key)
        time.sleep(0)
        return value


class InterleavingStore(InMemoryBucketStateStore):
    """Lets a simulated second process spend a token before our first write."""

    def __init__(self, *, clock, interloper: TokenBucketLimiter | None = None) -> None:
        super().__init__(clock=clock)
        self.interloper = interloper
        self.writes = 0

    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        self.writes += 1
        if self.writes == 1 and self.interloper is not None:
            interloper, self.interloper = self.interloper, None
            interloper.is_allowed(key.split(":")[1])
        return super().conditional_write(key, expected_prior, new_value)


class AlwaysConflictingStore(InMemoryBucketStateStore):
    def __init__(self, *, clock) -> None:
        super().__init__(clock=clock)
        self.reads = 0

    def read(self, key: str) -> str | None:
        self.reads += 1
        return super().read(key)

    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        return False


class UnavailableStore(AbstractBucketStateStore):
    def __init__(self, *, fail_on: str) -> None:
        self.fail_on = fail_on
        self.calls: list[str] = []

    def _maybe_fail(self, operation: str) -> None:
        self.calls.append(operation)
        if operation == self.fail_on:
            raise StoreUnavailableError(code="store_unavailable", message=f"{operation} timed out")

    def now(self) -> int:
        self._maybe_fail("now")
        return 1_000

    def read(self, key: str) -> str | None:
        self._maybe_fail("read")
        return None

    def conditional_write(self, key: str, expected_prior: str | None, new_value: str) -> bool:
        self._maybe_fail("conditional_write")
        return True


def test_no_over_admission_under_concurrent_callers(clock) -> None:
    capacity = 10
    store = YieldingStore(clock=clock)
    threads = 16
    calls_per_thread = 10
    barrier = threading.Barrier(threads)

    def _worker() -> int:
        # Each thread builds its own limiter, like independent processes would
        limiter = TokenBucketLimiter(
            store,
            capacity=capacity,
            refill_rate_per_second=1.0,
            max_retries=10_000,
        )
        barrier.wait()
        return sum(limiter.is_allowed("shared") for _ in range(calls_per_thread))

    with ThreadPoolExecutor(max_workers=threads) as pool:
        admitted = sum(pool.map(lambda _: _worker(), range(threads)))

    # Clock is frozen, so no refill is possible during the run
    assert admitted == capacity
    state = BucketState.decode(store.read(state_key("shared")))
    assert state.tokens == 0


def test_admissions_bounded_by_refill_while_clock_advances(clock) -> None:
    capacity = 10
    rate = 1.0
    store = YieldingStore(clock=clock)
    threads = 16
    calls_per_thread = 10
    barrier = threading.Barrier(threads)
    clock_lock = threading.Lock()
    started_at = clock()

    def _worker() -> int:
        limiter = TokenBucketLimiter(
            store,
            capacity=capacity,
            refill_rate_per_second=rate,
            max_retries=10_000,
        )
        barrier.wait()
        admitted = 0
        for _ in range(calls_per_thread):
            admitted += limiter.is_allowed("shared")
            # 1/8 s steps stay exact in binary floating point
            with clock_lock:
                clock.advance(0.125)
        return admitted

    with ThreadPoolExecutor(max_workers=threads) as pool:
        admitted = sum(pool.map(lambda _: _worker(), range(threads)))

    elapsed = clock() - started_at
    assert elapsed == pytest.approx(threads * calls_per_thread * 0.125)
    assert capacity <= admitted <= capacity + math.floor(elapsed * rate)


def test_concurrent_clients_do_not_interfere(clock) -> None:
    store = YieldingStore(clock=clock)
    clients = [f"client-{i}" for i in range(8)]

    def _drain(client_id: str) -> int:
        limiter = TokenBucketLimiter(store, capacity=3, refill_rate_per_second=1.0, max_retries=1_000)
        return sum(limiter.is_allowed(client_id) for _ in range(6))

    with ThreadPoolExecutor(max_workers=len(clients)) as pool:
        admitted = list(pool.map(_drain, clients))

    assert admitted == [3] * len(clients)


def test_conflict_triggers_recompute_from_fresh_state(clock) -> None:
    store = InterleavingStore(clock=clock)
    other_process = TokenBucketLimiter(store, capacity=2, refill_rate_per_second=0.001)
    store.interloper = other_process
    limiter = TokenBucketLimiter(store, capacity=2, refill_rate_per_second=0.001)

    # Our first write loses to the interloper's lazy init and is retried
    assert limiter.is_allowed("client") is True
    assert limiter.is_allowed("client") is False
    assert other_process.is_allowed("client") is False

    state = BucketState.decode(store.read(state_key("client")))
    assert state.tokens == 0


def test_exhausted_retries_raise_contention(clock) -> None:
    store = AlwaysConflictingStore(clock=clock)
    limiter = TokenBucketLimiter(store, capacity=5, refill_rate_per_second=1.0, max_retries=3)

    with pytest.raises(ContentionError) as exc_info:
        limiter.is_allowed("hot-client")

    assert exc_info.value.code == "rate_limit_contention"
    assert exc_info.value.details == {"attempts": 4}
    assert store.reads == 4


@pytest.mark.parametrize("fail_on", ["read", "now", "conditional_write"])
def test_store_failures_propagate_without_retry(fail_on: str) -> None:
    store = UnavailableStore(fail_on=fail_on)
    limiter = TokenBucketLimiter(store, capacity=5, refill_rate_per_second=1.0)

    with pytest.raises(StoreUnavailableError):
        limiter.is_allowed("client")

    assert store.calls.count(fail_on) == 1
