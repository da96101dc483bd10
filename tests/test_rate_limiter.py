"""
Tests for the fixed-window award rate limiter.
"""
import pytest

from loyalcard.services.rate_limiter import (
    CacheCounterStore,
    CounterStore,
    FixedWindowRateLimiter,
    get_award_rate_limiter,
)
from loyalcard.utils.exceptions import RateLimitExceededError


class DictCounterStore(CounterStore):
    """In-memory store; expiry is driven by the window number in the key."""

    def __init__(self):
        self.counts = {}

    def increment(self, key, ttl_seconds):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class TestFixedWindowRateLimiter:

    def test_allows_up_to_limit(self):
        limiter = FixedWindowRateLimiter(DictCounterStore(), limit=3, window_seconds=60,
                                         clock=FakeClock(1200))

        assert [limiter.hit('business:1') for _ in range(3)] == [2, 1, 0]

    def test_rejects_over_limit_with_retry_after(self):
        clock = FakeClock(1210)
        limiter = FixedWindowRateLimiter(DictCounterStore(), limit=2, window_seconds=60, clock=clock)
        limiter.hit('business:1')
        limiter.hit('business:1')

        with pytest.raises(RateLimitExceededError) as exc:
            limiter.hit('business:1')

        # Window [1200, 1260) -> 50s left
        assert exc.value.retry_after == 50
        assert exc.value.limit == 2
        assert exc.value.status_code == 429

    def test_actors_are_counted_separately(self):
        limiter = FixedWindowRateLimiter(DictCounterStore(), limit=1, window_seconds=60,
                                         clock=FakeClock(1200))
        limiter.hit('business:1')

        assert limiter.hit('business:2') == 0

    def test_new_window_resets(self):
        clock = FakeClock(1200)
        limiter = FixedWindowRateLimiter(DictCounterStore(), limit=1, window_seconds=60, clock=clock)
        limiter.hit('business:1')

        clock.now = 1260
        assert limiter.hit('business:1') == 0

    def test_retry_after_is_at_least_one_second(self):
        clock = FakeClock(1259.9)
        limiter = FixedWindowRateLimiter(DictCounterStore(), limit=0, window_seconds=60, clock=clock)

        with pytest.raises(RateLimitExceededError) as exc:
            limiter.hit('business:1')
        assert exc.value.retry_after == 1


class TestCacheCounterStore:
    """Counters stored in the Flask-Caching backend."""

    def test_increments_in_app_cache(self, app):
        with app.app_context():
            store = CacheCounterStore()

            assert store.increment('ratelimit:test', 60) == 1
            assert store.increment('ratelimit:test', 60) == 2
            assert store.increment('ratelimit:other', 60) == 1

    def test_configured_award_limiter(self, app):
        with app.app_context():
            limiter = get_award_rate_limiter()

            assert limiter.limit == 5
            assert limiter.window_seconds == 60
            for _ in range(5):
                limiter.hit('business:9')
            with pytest.raises(RateLimitExceededError):
                limiter.hit('business:9')
