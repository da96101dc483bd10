"""
Shared cache for loyalcard.

Provides a Redis-backed Flask-Caching instance with fallback to the simple
in-memory cache. The rate limiter keeps its per-actor counters here, so with
Redis configured every server instance sees the same counts.

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
              Falls back to simple cache if not set or unavailable.
"""
import os
import logging
import redis
from flask_caching import Cache

logger = logging.getLogger(__name__)

# Global cache instance - initialized in init_cache()
cache = Cache()


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fallback to simple cache.

    Args:
        app: Flask application instance

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    redis_url = os.getenv('REDIS_URL')

    if redis_url and not app.config.get('TESTING'):
        try:
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_DEFAULT_TIMEOUT'] = 300
            app.config['CACHE_KEY_PREFIX'] = 'loyalcard:'

            cache.init_app(app)
            logger.info('[loyalcard] Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except redis.RedisError as e:
            logger.warning('[loyalcard] Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config.setdefault('CACHE_DEFAULT_TIMEOUT', 300)

    cache.init_app(app)
    logger.info('[loyalcard] Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from arguments.

        key = cache_key('ratelimit', 'award', actor='business:3', window=2891)
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)
