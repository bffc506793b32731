"""
Signed user tokens identifying the acting local user.

Tokens are urlsafe-base64 JSON payloads signed with HMAC-SHA256.
Secret key is loaded from ``config.jwt_secret`` (env var: ``JWT_SECRET``).
Issuing tokens belongs to the host application's login flow; this service
only needs to know which local user is connecting accounts.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Optional

from config.settings import config


class InvalidTokenError(ValueError):
    pass


def _signature(raw: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()


def create_token(user_id: str, *, expires_in: Optional[int] = None, secret: Optional[str] = None) -> str:
    """Create a signed token containing ``user_id`` and expiry."""
    payload = {
        "user_id": user_id,
        "exp": int(time.time()) + (expires_in if expires_in is not None else config.jwt_expiry_seconds),
    }
    raw = json.dumps(payload).encode()
    return urlsafe_b64encode(raw).decode() + "." + _signature(raw, secret or config.jwt_secret)


def decode_token(token: str, *, secret: Optional[str] = None) -> str:
    """Return the ``user_id`` carried by ``token``; raises ``InvalidTokenError``."""
    try:
        encoded, sig = token.split(".", 1)
        raw = urlsafe_b64decode(encoded.encode())
    except ValueError as exc:
        raise InvalidTokenError("bad format") from exc
    if not hmac.compare_digest(sig, _signature(raw, secret or config.jwt_secret)):
        raise InvalidTokenError("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidTokenError("bad payload") from exc
    if payload.get("exp", 0) < time.time():
        raise InvalidTokenError("token expired")
    if not payload.get("user_id"):
        raise InvalidTokenError("token has no user")
    return str(payload["user_id"])
