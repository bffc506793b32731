"""
FastAPI dependencies for authentication.

The connect flow is browser driven: the provider's redirect back to us
carries no Authorization header, so the user token is also accepted from
the ``access_token`` cookie.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Cookie, Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.jwt import InvalidTokenError, decode_token

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer_scheme),
    access_token: Optional[str] = Cookie(default=None),
) -> str:
    """
    Extract and verify the user token, returning the authenticated
    ``user_id``.
    """
    token = credentials.credentials if credentials else access_token
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_token(token)
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
            headers={"WWW-Authenticate": "Bearer"},
        )
