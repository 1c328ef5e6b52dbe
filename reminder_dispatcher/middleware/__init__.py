"""
Middleware components for request processing.

This package contains:
- Per-sender rate limiting (Redis sliding window)
- Rate limit response headers
"""

from reminder_dispatcher.middleware.rate_limit_dependencies import rate_limit_sender
from reminder_dispatcher.middleware.rate_limit_headers import RateLimitHeadersMiddleware
from reminder_dispatcher.middleware.rate_limiter import rate_limiter

__all__ = [
    "RateLimitHeadersMiddleware",
    "rate_limiter",
    "rate_limit_sender",
]
