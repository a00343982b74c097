"""
Behavioral tests for the token bucket pacing discovery polls.

Time is simulated: the bucket gets a fake clock and a sleep that advances it,
so no test actually sleeps.
"""

import random

import pytest

from mempoke.errors import RateLimitExceeded
from mempoke.ratelimit import TokenBucket


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_bucket(clock: FakeClock, capacity: int = 10, quantum: float = 1) -> TokenBucket:
    return TokenBucket(capacity, quantum, clock=clock, sleep=clock.sleep)


class TestTokenBucketHelpers:
    """Refill and wait computations."""

    def test_available_token_since_is_capped_by_capacity(self, clock):
        bucket = make_bucket(clock)
        assert bucket.available_token_since(1) == 10

    @pytest.mark.asyncio
    async def test_available_token_since_adds_quantum_per_second(self, clock):
        bucket = make_bucket(clock)
        await bucket.wait_for(10)
        assert bucket.available == 0
        assert bucket.available_token_since(2) == 2

    @pytest.mark.asyncio
    async def test_compute_wait_duration(self, clock):
        bucket = make_bucket(clock)
        await bucket.wait_for(10)
        assert bucket.compute_wait_duration(5) == 5.0

    def test_invalid_quantum(self, clock):
        with pytest.raises(ValueError):
            TokenBucket(10, 0, clock=clock, sleep=clock.sleep)


class TestTokenBucketWaitFor:
    """wait_for blocking behavior."""

    @pytest.mark.asyncio
    async def test_starts_full_and_consumes_without_sleeping(self, clock):
        bucket = make_bucket(clock)
        await bucket.wait_for(4)
        assert bucket.available == 6
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_zero_tokens_never_sleeps(self, clock):
        bucket = make_bucket(clock)
        await bucket.wait_for(10)
        for _ in range(5):
            await bucket.wait_for(0)
        assert clock.sleeps == []

    @pytest.mark.asyncio
    async def test_more_than_capacity_fails_without_sleeping(self, clock):
        bucket = make_bucket(clock)
        with pytest.raises(RateLimitExceeded) as exc_info:
            await bucket.wait_for(11)
        assert exc_info.value.requested == 11
        assert exc_info.value.capacity == 10
        assert clock.sleeps == []
        assert bucket.available == 10

    @pytest.mark.asyncio
    async def test_sleeps_for_missing_tokens_then_empties_bucket(self, clock):
        bucket = make_bucket(clock, capacity=60, quantum=1)
        await bucket.wait_for(60)
        clock.now += 15
        await bucket.wait_for(60)
        assert clock.sleeps == [45.0]
        assert bucket.available == 0

    @pytest.mark.asyncio
    async def test_refill_after_idle_period(self, clock):
        bucket = make_bucket(clock, capacity=10, quantum=2)
        await bucket.wait_for(10)
        clock.now += 3
        await bucket.wait_for(6)
        assert clock.sleeps == []
        assert bucket.available == 0

    @pytest.mark.asyncio
    async def test_one_poll_per_interval(self, clock):
        bucket = make_bucket(clock, capacity=60, quantum=1)
        start = clock.now
        for _ in range(4):
            await bucket.wait_for(60)
        assert clock.now - start == pytest.approx(180.0)

    @pytest.mark.asyncio
    async def test_available_stays_within_bounds(self, clock):
        rng = random.Random(42)
        bucket = make_bucket(clock, capacity=20, quantum=3)
        for _ in range(500):
            clock.now += rng.uniform(0, 10)
            await bucket.wait_for(rng.randint(0, 20))
            assert 0 <= bucket.available <= bucket.capacity
