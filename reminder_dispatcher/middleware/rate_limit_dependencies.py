"""
Rate Limit Dependencies - per-sender throttling for endpoints.

Usage:
    from reminder_dispatcher.middleware.rate_limit_dependencies import rate_limit_sender

    @router.post("/recipients/{address}/acknowledgments")
    async def acknowledge(
        address: str,
        _rate: None = Depends(rate_limit_sender),
    ):
        ...
"""

from fastapi import HTTPException, Request, status

from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.middleware.rate_limiter import rate_limiter

logger = get_logger(__name__)


async def rate_limit_sender(request: Request, address: str) -> None:
    """
    Rate limit keyed on the `address` path parameter.

    Raises:
        HTTPException: 429 if the sender exceeded the window
    """
    allowed, info = await rate_limiter.check_sender_rate_limit(address)
    request.state.rate_limit_info = info

    if allowed:
        return

    logger.warning(
        "Sender rate limit exceeded",
        address=address,
        limit=info["limit"],
        retry_after=info["retry_after"],
        path=request.url.path,
    )

    retry_after = info["retry_after"] or 1
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail={
            "error": "rate_limit_exceeded",
            "message": f"Too many messages. Try again in {retry_after} seconds.",
            "limit": info["limit"],
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
