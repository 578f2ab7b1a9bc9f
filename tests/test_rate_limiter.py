import logging

from conftest import run

from recon_phantom.security.rate_limiter import MAX_PROBE_RATE, AsyncTokenBucket, enforce_rate_limit


class TestEnforceRateLimit:
    def test_disabled(self):
        assert enforce_rate_limit(None) is None
        assert enforce_rate_limit(0) is None

    def test_within_limit(self):
        assert enforce_rate_limit(50) == 50

    def test_capped_and_logged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="security"):
            assert enforce_rate_limit(MAX_PROBE_RATE * 10) == MAX_PROBE_RATE
        assert "capping" in caplog.text


class TestAsyncTokenBucket:
    def test_capacity_defaults_to_rate(self):
        bucket = AsyncTokenBucket(rate=20)
        assert bucket.capacity == 20
        assert bucket.get_tokens() == 20

    def test_acquire_within_burst(self):
        bucket = AsyncTokenBucket(rate=10, capacity=3)

        async def take_three():
            return [await bucket.acquire() for _ in range(3)]

        assert run(take_three()) == [0.0, 0.0, 0.0]

    def test_deficit_is_reserved(self):
        bucket = AsyncTokenBucket(rate=10, capacity=1)

        async def scenario():
            await bucket.acquire()
            first = await bucket.acquire()
            second = await bucket.acquire()
            return first, second

        first, second = run(scenario())
        assert 0 < first <= 0.1
        assert second > first

    def test_reset(self):
        bucket = AsyncTokenBucket(rate=5, capacity=2)
        run(bucket.acquire(2))
        bucket.reset()
        assert bucket.get_tokens() == 2
