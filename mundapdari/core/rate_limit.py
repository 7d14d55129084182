"""Shared rate limiter instance.

Uses Redis-backed storage when Redis is available so counters are shared
across workers. Falls back to in-memory storage otherwise.
"""

import logging

import redis as sync_redis
from slowapi import Limiter
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)


def _create_limiter() -> Limiter:
    from mundapdari.config import settings

    default_limits = [settings.RATE_LIMIT_DEFAULT]
    if settings.ENVIRONMENT == "test":
        return Limiter(key_func=get_remote_address, default_limits=default_limits)

    try:
        client = sync_redis.from_url(settings.REDIS_URL, socket_connect_timeout=1)
        client.ping()
        client.close()
        logger.info("Rate limiter: Redis storage (%s)", settings.REDIS_URL)
        return Limiter(
            key_func=get_remote_address,
            default_limits=default_limits,
            storage_uri=settings.REDIS_URL,
        )
    except Exception:
        logger.warning("Rate limiter: Redis unavailable, using in-memory storage")
        return Limiter(key_func=get_remote_address, default_limits=default_limits)


limiter = _create_limiter()
