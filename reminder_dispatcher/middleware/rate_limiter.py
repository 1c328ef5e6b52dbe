"""
Rate Limiter - Redis-based sliding window rate limiting.

Used to throttle acknowledgments and other inbound actions per sender.

Design:
- Sliding window over a Redis sorted set (`ratelimit:{key}`)
- Check-and-add in one atomic Lua script
- Fail-open by default: if Redis is down, requests are allowed
"""

import time

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)


class RateLimiter:
    """
    Sliding window rate limiter.

    If the limit is 10 messages/minute and a sender used all 10 at 10:00:00,
    the next one is allowed from 10:01:01, not 10:01:00.
    """

    # Returns: {allowed (0 or 1), current_count, oldest_timestamp or 0}
    RATE_LIMIT_LUA_SCRIPT = """
    local key = KEYS[1]
    local limit = tonumber(ARGV[1])
    local window_seconds = tonumber(ARGV[2])
    local current_time = tonumber(ARGV[3])
    local unique_id = ARGV[4]

    local window_start = current_time - window_seconds
    redis.call('ZREMRANGEBYSCORE', key, 0, window_start)

    local current_count = redis.call('ZCARD', key)

    if current_count >= limit then
        local oldest_entries = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
        local oldest_timestamp = 0
        if #oldest_entries > 0 then
            oldest_timestamp = tonumber(oldest_entries[2])
        end
        return {0, current_count, oldest_timestamp}
    end

    redis.call('ZADD', key, current_time, unique_id)
    redis.call('EXPIRE', key, window_seconds * 2)

    return {1, current_count + 1, 0}
    """

    def __init__(
        self,
        default_limit: int = 10,
        window_seconds: int = 60,
        fail_open: bool = True,
        enabled: bool = True,
        redis_client: FastRedisClient | None = None,
    ):
        """
        Args:
            default_limit: Messages allowed per window
            window_seconds: Window length in seconds
            fail_open: If True, allow requests when Redis fails
            enabled: If False, every check passes without touching Redis
        """
        self.default_limit = default_limit
        self.window_seconds = window_seconds
        self.fail_open = fail_open
        self.enabled = enabled
        self.redis = redis_client or fast_redis

    async def check_rate_limit(
        self,
        key: str,
        limit: int | None = None,
        window_seconds: int | None = None,
    ) -> tuple[bool, dict]:
        """
        Check and record one request for the given key.

        Returns:
            Tuple of (allowed, info) where info carries limit, remaining,
            retry_after and, on failure, an error code.
        """
        limit = limit or self.default_limit
        window_seconds = window_seconds or self.window_seconds

        if not self.enabled:
            return True, self._create_info_dict(allowed=True, limit=limit, remaining=limit)

        redis_key = f"ratelimit:{key}"
        current_time = int(time.time())

        try:
            if not self.redis.client:
                logger.warning("Redis not initialized for rate limiting", fail_open=self.fail_open)
                return self.fail_open, self._create_info_dict(
                    allowed=self.fail_open,
                    limit=limit,
                    remaining=limit if self.fail_open else 0,
                    error="redis_not_initialized",
                )

            unique_id = f"{current_time}:{time.time_ns()}"
            result = await self.redis.client.eval(
                self.RATE_LIMIT_LUA_SCRIPT,
                1,
                redis_key,
                limit,
                window_seconds,
                current_time,
                unique_id,
            )

            allowed = bool(result[0])
            current_count = int(result[1])
            oldest_timestamp = int(result[2]) if result[2] else 0

            if not allowed:
                if oldest_timestamp > 0:
                    retry_after = max(1, (oldest_timestamp + window_seconds) - current_time)
                else:
                    retry_after = window_seconds

                logger.warning("Rate limit exceeded", key=key, limit=limit, retry_after=retry_after)
                return False, self._create_info_dict(
                    allowed=False,
                    limit=limit,
                    remaining=0,
                    retry_after=retry_after,
                    window_seconds=window_seconds,
                )

            return True, self._create_info_dict(
                allowed=True,
                limit=limit,
                remaining=max(0, limit - current_count),
                window_seconds=window_seconds,
            )

        except Exception as e:
            logger.error(
                "Rate limiter Redis error",
                error=str(e),
                error_type=type(e).__name__,
                key=key,
                limit=limit,
            )
            return self.fail_open, self._create_info_dict(
                allowed=self.fail_open,
                limit=limit,
                remaining=limit if self.fail_open else 0,
                error="rate_limiter_error",
            )

    async def check_sender_rate_limit(self, address: str) -> tuple[bool, dict]:
        """Per-sender limit from settings."""
        limits = settings.get_rate_limits()
        return await self.check_rate_limit(
            key=f"sender:{address}",
            limit=limits["max_messages"],
            window_seconds=limits["window_seconds"],
        )

    def _create_info_dict(
        self,
        allowed: bool,
        limit: int,
        remaining: int,
        retry_after: int | None = None,
        window_seconds: int | None = None,
        error: str | None = None,
    ) -> dict:
        info = {
            "allowed": allowed,
            "limit": limit,
            "remaining": remaining,
            "retry_after": retry_after,
        }

        if window_seconds is not None:
            info["window_seconds"] = window_seconds

        if error:
            info["error"] = error

        return info


# Global singleton
rate_limiter = RateLimiter(
    default_limit=settings.RATE_LIMIT_MAX_MESSAGES,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    fail_open=settings.RATE_LIMIT_FAIL_OPEN,
    enabled=settings.RATE_LIMIT_ENABLED,
)
