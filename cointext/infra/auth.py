"""Client bearer tokens and admin key checks."""

import secrets
from typing import Optional
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from cointext.infra.config import config

admin_key_header = APIKeyHeader(name="X-Admin-Key", auto_error=False)


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """
    Token from an `Authorization: Bearer <token>` header value.
    
    Returns None for a missing header or any other shape.
    """
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or not parts[1]:
        return None
    return parts[1]


async def require_admin(admin_key: Optional[str] = Security(admin_key_header)) -> None:
    """Admin routes require X-Admin-Key to match ADMIN_API_KEY."""
    expected = config.ADMIN_API_KEY
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )
    if not admin_key or not secrets.compare_digest(admin_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing admin key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
