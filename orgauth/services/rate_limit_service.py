from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from redis.exceptions import RedisError

from orgauth.domain.errors import RateLimitExceeded
from orgauth.infra import redis_state

logger = logging.getLogger(__name__)

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "1"))
LOGIN_RATE_LIMIT_MAX_REQUESTS = int(os.getenv("LOGIN_RATE_LIMIT_MAX_REQUESTS", "5"))
LOGIN_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("LOGIN_RATE_LIMIT_WINDOW_SECONDS", "60"))

LOGIN_PATH = "/api/v1/auth/login"
RATE_LIMITER_KEY = "rate_limiter:{identity}:{path}"


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


DEFAULT_RULE = RateLimitRule(RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS)
LOGIN_RULE = RateLimitRule(LOGIN_RATE_LIMIT_MAX_REQUESTS, LOGIN_RATE_LIMIT_WINDOW_SECONDS)


class RateLimiter:
    """Fixed-window request counter keyed by identity and path."""

    def __init__(
        self,
        default_rule: RateLimitRule | None = None,
        path_rules: dict[str, RateLimitRule] | None = None,
    ) -> None:
        self.default_rule = default_rule or DEFAULT_RULE
        self.path_rules = dict(path_rules) if path_rules is not None else {LOGIN_PATH: LOGIN_RULE}

    def rule_for(self, path: str) -> RateLimitRule:
        return self.path_rules.get(path, self.default_rule)

    def hit(self, identity: str, path: str) -> int:
        """Count one request; raises ``RateLimitExceeded`` above the limit."""
        rule = self.rule_for(path)
        key = RATE_LIMITER_KEY.format(identity=identity, path=path)
        try:
            redis = redis_state.get_redis()
            redis.set(key, 0, ex=rule.window_seconds, nx=True)
            count = int(redis.incr(key))
        except RedisError:
            logger.warning("rate limiter store unavailable, allowing request", exc_info=True)
            return 0
        if count > rule.max_requests:
            retry_after = self._retry_after(key, rule)
            logger.warning("rate limit exceeded for %s on %s (%d/%d)", identity, path, count, rule.max_requests)
            raise RateLimitExceeded("Too many requests", retry_after=retry_after)
        return count

    def _retry_after(self, key: str, rule: RateLimitRule) -> int:
        try:
            ttl = int(redis_state.get_redis().ttl(key))
        except RedisError:
            return rule.window_seconds
        return ttl if ttl > 0 else rule.window_seconds
