import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

from reminder_dispatcher.middleware.rate_limiter import RateLimiter


def _redis(eval_result=None, side_effect=None):
    redis = MagicMock()
    redis.client = MagicMock()
    redis.client.eval = AsyncMock(return_value=eval_result, side_effect=side_effect)
    return redis


@pytest.mark.asyncio
async def test_allowed_request_reports_remaining():
    limiter = RateLimiter(default_limit=10, window_seconds=60, redis_client=_redis([1, 3, 0]))

    allowed, info = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is True
    assert info["remaining"] == 7
    assert info["window_seconds"] == 60


@pytest.mark.asyncio
async def test_blocked_request_reports_retry_after(monkeypatch):
    monkeypatch.setattr(sys.modules[RateLimiter.__module__].time, "time", lambda: 1_000.0)
    limiter = RateLimiter(default_limit=10, window_seconds=60, redis_client=_redis([0, 10, 970]))

    allowed, info = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is False
    assert info["remaining"] == 0
    assert info["retry_after"] == 30


@pytest.mark.asyncio
async def test_redis_error_fails_open():
    limiter = RateLimiter(redis_client=_redis(side_effect=ConnectionError("down")), fail_open=True)

    allowed, info = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is True
    assert info["error"] == "rate_limiter_error"


@pytest.mark.asyncio
async def test_redis_error_fails_closed_when_configured():
    limiter = RateLimiter(redis_client=_redis(side_effect=ConnectionError("down")), fail_open=False)

    allowed, info = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is False
    assert info["remaining"] == 0


@pytest.mark.asyncio
async def test_uninitialized_redis_is_reported():
    redis = MagicMock()
    redis.client = None
    limiter = RateLimiter(redis_client=redis)

    allowed, info = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is True
    assert info["error"] == "redis_not_initialized"


@pytest.mark.asyncio
async def test_disabled_limiter_never_touches_redis():
    redis = _redis([0, 10, 0])
    limiter = RateLimiter(enabled=False, redis_client=redis)

    allowed, _ = await limiter.check_rate_limit("sender:6281100001")

    assert allowed is True
    redis.client.eval.assert_not_awaited()


@pytest.mark.asyncio
async def test_sender_limit_uses_sender_key(monkeypatch):
    redis = _redis([1, 1, 0])
    limiter = RateLimiter(redis_client=redis)

    await limiter.check_sender_rate_limit("6281100001")

    args = redis.client.eval.await_args.args
    assert args[2] == "ratelimit:sender:6281100001"
