"""
Rate Limit Headers Middleware.

Copies `request.state.rate_limit_info` (set by the rate limit dependency)
onto the response as X-RateLimit-Limit / X-RateLimit-Remaining and, when
the request was throttled, Retry-After. Responses without that info are
left untouched.
"""

from starlette.middleware.base import BaseHTTPMiddleware


class RateLimitHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        response = await call_next(request)

        rate_limit_info = getattr(request.state, "rate_limit_info", None)
        if not rate_limit_info:
            return response

        if "limit" in rate_limit_info:
            response.headers["X-RateLimit-Limit"] = str(rate_limit_info["limit"])

        if "remaining" in rate_limit_info:
            response.headers["X-RateLimit-Remaining"] = str(rate_limit_info["remaining"])

        if not rate_limit_info.get("allowed", True) and rate_limit_info.get("retry_after"):
            response.headers["Retry-After"] = str(rate_limit_info["retry_after"])

        return response
