"""
Fixed-window rate limiting for point awards.

Counters live behind the ``CounterStore`` interface so the process-local
fallback can be swapped for a shared store. The default implementation keeps
them in the Flask-Caching backend, which is Redis whenever REDIS_URL is set,
so all server instances share one count per scanning actor.

The limiter is consulted before the award transaction begins; it is not
transactionally consistent with the ledger and does not need to be.
"""
import logging
import time
from typing import Callable

from ..utils.cache import cache, cache_key
from ..utils.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class CounterStore:
    """Shared keyed counter with expiry."""

    def increment(self, key: str, ttl_seconds: int) -> int:
        """Increment ``key`` (creating it at 0 with ``ttl_seconds`` expiry) and return the new count."""
        raise NotImplementedError


class CacheCounterStore(CounterStore):
    """Counter store on top of the Flask-Caching backend."""

    def __init__(self, backend=None):
        self._backend = backend

    @property
    def backend(self):
        # cachelib backend of the current app (add/inc are atomic on Redis)
        return self._backend if self._backend is not None else cache.cache

    def increment(self, key: str, ttl_seconds: int) -> int:
        # add() only writes when the key is absent, so the expiry is set once per window
        self.backend.add(key, 0, timeout=ttl_seconds)
        count = self.backend.inc(key)
        if count is None:
            # Key expired between add() and inc(); start the window over
            self.backend.set(key, 1, timeout=ttl_seconds)
            count = 1
        return int(count)


class FixedWindowRateLimiter:
    """
    Allow at most ``limit`` hits per actor per ``window_seconds``.

    Usage:
        limiter = FixedWindowRateLimiter(CacheCounterStore(), limit=50, window_seconds=60)
        limiter.hit('business:12')   # raises RateLimitExceededError when over
    """

    def __init__(
        self,
        store: CounterStore,
        limit: int,
        window_seconds: int,
        scope: str = 'award',
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds
        self.scope = scope
        self.clock = clock

    def hit(self, actor: str) -> int:
        """
        Count one request for ``actor``.

        Returns:
            Remaining requests in the current window

        Raises:
            RateLimitExceededError: The actor is over the limit for this window
        """
        now = self.clock()
        window = int(now // self.window_seconds)
        key = cache_key('ratelimit', self.scope, actor=actor, window=window)

        count = self.store.increment(key, self.window_seconds)
        if count > self.limit:
            retry_after = max(1, int((window + 1) * self.window_seconds - now))
            logger.warning(
                f"Rate limit hit: {self.scope} actor={actor} count={count} limit={self.limit}"
            )
            raise RateLimitExceededError(actor, self.limit, retry_after)

        return self.limit - count


def get_award_rate_limiter() -> FixedWindowRateLimiter:
    """Award limiter configured from the current app."""
    from flask import current_app
    return FixedWindowRateLimiter(
        CacheCounterStore(),
        limit=current_app.config.get('AWARD_RATE_LIMIT', 50),
        window_seconds=current_app.config.get('AWARD_RATE_WINDOW_SECONDS', 60),
        scope='award'
    )
