"""
verify.py
---------
Purpose:
    Shared-secret authentication for the admin/operator API.

Notes:
    - Clients send the key in the `X-API-Key` header.
    - When ADMIN_API_KEY is unset every admin request is rejected.
    - Provides `auth_dependency` for protected routes.
"""

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import APIKeyHeader

from reminder_dispatcher.config import settings

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_api_key(api_key: str | None) -> str:
    expected = settings.ADMIN_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if not api_key or not hmac.compare_digest(api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
    return api_key


def auth_dependency(api_key: str | None = Depends(_api_key_header)) -> str:
    return verify_api_key(api_key)
