"""
Connection — an established link between the local user and one
provider account, plus a live API binding derived from its credentials.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Union

from connectors.api import ProviderApi
from connectors.types import (
    AccessGrant,
    AuthProtocol,
    ConnectionData,
    ConnectionKey,
    ConnectionValues,
    OAuthToken,
    UserProfile,
)

if TYPE_CHECKING:
    from connectors.base import ConnectionFactory

logger = logging.getLogger(__name__)

AccessCredentials = Union[OAuthToken, AccessGrant]


class Connection:
    def __init__(
        self,
        factory: "ConnectionFactory",
        credentials: AccessCredentials,
        values: ConnectionValues,
    ):
        if not values.provider_user_id:
            raise ValueError("A connection needs a provider user id")
        self._factory = factory
        self._credentials = credentials
        self.key = ConnectionKey(factory.provider_id, str(values.provider_user_id))
        self.display_name = values.display_name
        self.profile_url = values.profile_url
        self.image_url = values.image_url

    def __repr__(self) -> str:
        return f"<Connection {self.key.provider_id}/{self.key.provider_user_id} {self.display_name!r}>"

    @property
    def provider_id(self) -> str:
        return self.key.provider_id

    @property
    def provider_user_id(self) -> str:
        return self.key.provider_user_id

    @property
    def protocol(self) -> AuthProtocol:
        return self._factory.protocol

    @property
    def api_kind(self) -> str:
        return self._factory.api_kind

    @property
    def credentials(self) -> AccessCredentials:
        return self._credentials

    def get_api(self) -> ProviderApi:
        return self._factory.bind_api(self._credentials)

    def has_expired(self, now: Optional[datetime] = None) -> bool:
        """OAuth1 tokens never expire; OAuth2 grants may carry an expiry."""
        if not isinstance(self._credentials, AccessGrant) or self._credentials.expire_time is None:
            return False
        return self._credentials.expire_time <= (now or datetime.now(timezone.utc))

    async def refresh(self) -> bool:
        """
        Exchange the stored refresh token for a fresh access grant (OAuth2
        only). Returns False when there is nothing to refresh with.
        """
        if not isinstance(self._credentials, AccessGrant):
            return False
        if not self._credentials.refresh_token:
            logger.debug("No refresh token for %s, skipping refresh", self.key)
            return False
        grant = await self._factory.operations.refresh_access(self._credentials.refresh_token)
        # Some providers rotate refresh tokens, others keep the old one valid.
        if not grant.refresh_token:
            grant = replace(grant, refresh_token=self._credentials.refresh_token)
        self._credentials = grant
        logger.info("Refreshed access grant for %s/%s", self.key.provider_id, self.key.provider_user_id)
        return True

    async def test(self) -> bool:
        return await self._factory.api_adapter.test(self.get_api())

    async def fetch_user_profile(self) -> UserProfile:
        return await self._factory.api_adapter.fetch_user_profile(self.get_api())

    async def sync(self) -> None:
        """Re-read display name, profile and image URL from the provider."""
        values = ConnectionValues()
        await self._factory.api_adapter.set_connection_values(self.get_api(), values)
        self.display_name = values.display_name
        self.profile_url = values.profile_url
        self.image_url = values.image_url

    def create_data(self) -> ConnectionData:
        creds = self._credentials
        if isinstance(creds, OAuthToken):
            return ConnectionData(
                provider_id=self.key.provider_id,
                provider_user_id=self.key.provider_user_id,
                display_name=self.display_name,
                profile_url=self.profile_url,
                image_url=self.image_url,
                access_token=creds.value,
                secret=creds.secret,
            )
        return ConnectionData(
            provider_id=self.key.provider_id,
            provider_user_id=self.key.provider_user_id,
            display_name=self.display_name,
            profile_url=self.profile_url,
            image_url=self.image_url,
            access_token=creds.access_token,
            refresh_token=creds.refresh_token,
            expire_time=creds.expire_time,
        )

    def summary(self) -> dict:
        """Display-ready view without any credential material."""
        return {
            "provider_id": self.key.provider_id,
            "provider_user_id": self.key.provider_user_id,
            "display_name": self.display_name,
            "profile_url": self.profile_url,
            "image_url": self.image_url,
            "expired": self.has_expired(),
        }
