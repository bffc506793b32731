"""
OAuth2 ``state`` helpers (CSRF protection).

The state value is self-contained: it encodes user id, provider id and an
expiry, signed with HMAC-SHA256, so nothing has to be stored server-side.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode

from connectors.errors import InvalidStateError


class StateSigner:
    def __init__(self, secret: str, ttl_seconds: int = 600):
        self._secret = secret.encode()
        self._ttl = ttl_seconds

    def _sign(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()[:32]

    def create(self, user_id: str, provider_id: str) -> str:
        """Create an opaque state string encoding user_id, provider and expiry."""
        payload = json.dumps(
            {"user_id": user_id, "provider": provider_id, "exp": int(time.time()) + self._ttl}
        )
        raw = payload.encode()
        return urlsafe_b64encode(raw).decode() + "." + self._sign(raw)

    def verify(self, state: str, user_id: str, provider_id: str) -> None:
        """Raise ``InvalidStateError`` unless ``state`` was issued to this user for this provider."""
        try:
            parts = state.split(".", 1)
            if len(parts) != 2:
                raise ValueError("bad format")
            raw = urlsafe_b64decode(parts[0].encode())
            if not hmac.compare_digest(parts[1], self._sign(raw)):
                raise ValueError("bad signature")
            payload = json.loads(raw)
            if payload.get("exp", 0) < time.time():
                raise ValueError("state expired")
            if payload.get("user_id") != user_id or payload.get("provider") != provider_id:
                raise ValueError("state issued for another user or provider")
        except (ValueError, TypeError) as exc:
            raise InvalidStateError(
                f"Invalid or expired OAuth state: {exc}", provider_id=provider_id
            ) from exc
