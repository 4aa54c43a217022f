"""
Cache utilities for the ledger.

Per-tenant rule sets are read on every EARN, so they sit behind a
version-tagged read-through cache. Redis is used when REDIS_URL is set and
reachable; otherwise Flask-Caching's in-memory SimpleCache.

Usage:
    from cardledger.utils.cache import cache, cache_key

    key = cache_key('rules', tenant_id=1, version=3)
    cache.set(key, data, timeout=300)
    value = cache.get(key)

Environment Variables:
    REDIS_URL: Redis connection URL (e.g., redis://localhost:6379/0)
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

# Global cache instance - initialized in init_cache()
cache = Cache()

CACHE_KEY_PREFIX = 'cardledger:'


def init_cache(app):
    """
    Initialize Flask-Caching with Redis or fall back to simple cache.

    Returns:
        bool: True if Redis connected, False if using fallback
    """
    timeout = app.config.get('RULE_CACHE_TIMEOUT', 300)
    redis_url = os.getenv('REDIS_URL')

    if redis_url and not app.config.get('TESTING'):
        try:
            import redis
            r = redis.from_url(redis_url, socket_connect_timeout=2)
            r.ping()

            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_DEFAULT_TIMEOUT'] = timeout
            app.config['CACHE_KEY_PREFIX'] = CACHE_KEY_PREFIX

            cache.init_app(app)
            logger.info('[Cache] Redis cache connected: %s', redis_url.split('@')[-1])
            return True

        except Exception as e:
            logger.warning('[Cache] Redis unavailable (%s), using simple cache', str(e))

    app.config['CACHE_TYPE'] = 'SimpleCache'
    app.config['CACHE_DEFAULT_TIMEOUT'] = timeout

    cache.init_app(app)
    logger.info('[Cache] Using simple in-memory cache (no Redis)')
    return False


def cache_key(*args, **kwargs):
    """
    Generate a cache key from positional parts and sorted keyword parts.

        cache_key('rules', tenant_id=1, version=3) -> 'rules:tenant_id=1:version=3'
    """
    parts = list(args)
    for k, v in sorted(kwargs.items()):
        parts.append(f'{k}={v}')
    return ':'.join(str(p) for p in parts)
