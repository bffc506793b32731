"""Value types shared by the flow engines, the repository and the controller."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# Path segments under the connect prefix that are not provider ids.
RESERVED_PROVIDER_IDS = frozenset({"providers"})


class AuthProtocol(str, Enum):
    OAUTH1 = "oauth1"
    OAUTH2 = "oauth2"


class FlowState(str, Enum):
    NOT_STARTED = "not_started"
    REQUEST_TOKEN_OBTAINED = "request_token_obtained"
    AWAITING_PROVIDER_AUTHORIZATION = "awaiting_provider_authorization"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ConnectionKey:
    """Identifies one external account: unique within a user's connections."""

    provider_id: str
    provider_user_id: str


@dataclass(frozen=True)
class OAuthToken:
    """OAuth1 token + secret (request token or access token)."""

    value: str
    secret: str


@dataclass(frozen=True)
class AccessGrant:
    """OAuth2 access grant returned by the token endpoint."""

    access_token: str
    scope: Optional[str] = None
    refresh_token: Optional[str] = None
    expire_time: Optional[datetime] = None

    @classmethod
    def from_token_response(cls, data: Dict[str, Any]) -> "AccessGrant":
        expires_in = data.get("expires_in")
        expire_time = None
        if expires_in not in (None, ""):
            expire_time = datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        return cls(
            access_token=data["access_token"],
            scope=data.get("scope"),
            refresh_token=data.get("refresh_token"),
            expire_time=expire_time,
        )


@dataclass(frozen=True)
class UserProfile:
    id: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None


@dataclass
class ConnectionValues:
    """Filled in by an ``ApiAdapter`` from the provider's profile endpoint."""

    provider_user_id: Optional[str] = None
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    image_url: Optional[str] = None


@dataclass(frozen=True)
class ConnectionData:
    """Flat, persistable form of a connection."""

    provider_id: str
    provider_user_id: str
    display_name: Optional[str] = None
    profile_url: Optional[str] = None
    image_url: Optional[str] = None
    access_token: str = ""
    secret: Optional[str] = None
    refresh_token: Optional[str] = None
    expire_time: Optional[datetime] = None


@dataclass
class TransientAuthSession:
    """
    Unconfirmed OAuth1 request token held between initiate and callback.

    Lives only in the per-user-agent session. ``consumed`` flips once the
    flow engine has used it; a consumed session is never accepted again.
    """

    provider_id: str
    request_token: OAuthToken
    callback_url: str
    created_at: float = field(default_factory=time.time)
    state: FlowState = FlowState.REQUEST_TOKEN_OBTAINED
    consumed: bool = False

    def is_expired(self, ttl_seconds: int, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) - self.created_at > ttl_seconds


@dataclass(frozen=True)
class DuplicateConnectionSignal:
    provider_id: str
    provider_user_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"provider_id": self.provider_id, "provider_user_id": self.provider_user_id}


# Ordered multi-valued parameters; interceptors may append to these.
Parameters = Dict[str, List[str]]
