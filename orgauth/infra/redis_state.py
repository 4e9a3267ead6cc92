from __future__ import annotations

import logging
import os
from functools import lru_cache

from redis import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "redis://redis:6379/0")
REDIS_SOCKET_TIMEOUT_SECONDS = float(os.getenv("REDIS_SOCKET_TIMEOUT_SECONDS", "2"))


@lru_cache(maxsize=1)
def get_redis() -> Redis:
    """Shared client for the permission cache, token revocations, rate-limit
    counters and captcha answers.

    Commands time out quickly so callers reach their store-down branch
    instead of hanging the request.
    """
    return Redis.from_url(
        REDIS_URL,
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
    )


def check_redis_ready() -> bool:
    try:
        return bool(get_redis().ping())
    except RedisError:
        logger.warning("redis readiness check failed", exc_info=True)
        return False
