"""
Per-user-agent session helpers.

``AuthSessionStore`` parks the OAuth1 request token between the initiate
and callback requests; ``FlashScope`` carries one-shot values to the next
status render. Both sit on top of whatever mapping the web layer provides
as the user's session (``request.session`` under ``SessionMiddleware``),
never on process-global state.
"""

from __future__ import annotations

import logging
import time
from typing import Any, MutableMapping, Optional

from connectors.encryption import decrypt_token, encrypt_token
from connectors.types import FlowState, OAuthToken, TransientAuthSession

logger = logging.getLogger(__name__)

_AUTH_SESSION_PREFIX = "oauth1_request_token:"
_FLASH_KEY = "_flash"


class AuthSessionStore:
    def __init__(self, session: MutableMapping[str, Any], ttl_seconds: int = 600):
        self._session = session
        self._ttl = ttl_seconds

    @staticmethod
    def _key(provider_id: str) -> str:
        return _AUTH_SESSION_PREFIX + provider_id

    def put(self, auth_session: TransientAuthSession) -> None:
        """Store a pending request token; replaces any earlier one for the provider."""
        self._session[self._key(auth_session.provider_id)] = {
            "token": auth_session.request_token.value,
            "secret": encrypt_token(auth_session.request_token.secret),
            "callback_url": auth_session.callback_url,
            "created_at": auth_session.created_at,
        }

    def take(self, provider_id: str, now: Optional[float] = None) -> Optional[TransientAuthSession]:
        """
        Remove and return the pending request token for ``provider_id``.

        The entry is gone after this call whether or not it was usable;
        expired entries return None.
        """
        raw = self._session.pop(self._key(provider_id), None)
        if not raw:
            return None
        auth_session = TransientAuthSession(
            provider_id=provider_id,
            request_token=OAuthToken(raw["token"], decrypt_token(raw["secret"]) or ""),
            callback_url=raw.get("callback_url", ""),
            created_at=raw.get("created_at", 0.0),
            state=FlowState.AWAITING_PROVIDER_AUTHORIZATION,
        )
        if auth_session.is_expired(self._ttl, now if now is not None else time.time()):
            logger.info("Discarding expired OAuth1 request token for %s", provider_id)
            return None
        return auth_session

    def discard(self, provider_id: str) -> None:
        self._session.pop(self._key(provider_id), None)

    def has_pending(self, provider_id: str) -> bool:
        return self._key(provider_id) in self._session


class FlashScope:
    """One-shot values: visible to exactly the next ``pop`` and then cleared."""

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    def put(self, name: str, value: Any) -> None:
        flash = dict(self._session.get(_FLASH_KEY) or {})
        flash[name] = value
        self._session[_FLASH_KEY] = flash

    def pop(self, name: str) -> Any:
        flash = dict(self._session.get(_FLASH_KEY) or {})
        value = flash.pop(name, None)
        if flash:
            self._session[_FLASH_KEY] = flash
        else:
            self._session.pop(_FLASH_KEY, None)
        return value
