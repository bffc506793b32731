"""
Connection factories and API adapters.

A ``ConnectionFactory`` is bound to exactly one provider id and knows how
to turn access credentials into a ``Connection``. OAuth1 and OAuth2
factories differ in the operations they expose to the flow engines.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from connectors.api import ProviderApi
from connectors.connection import AccessCredentials, Connection
from connectors.errors import ConnectError, ProviderUnavailableError
from connectors.operations import OAuth1Operations, OAuth1Version, OAuth2Operations
from connectors.signing import BearerCredentials, Credentials, OAuth1Credentials
from connectors.types import (
    AccessGrant,
    AuthProtocol,
    ConnectionData,
    ConnectionValues,
    OAuthToken,
    UserProfile,
)

logger = logging.getLogger(__name__)


# ── API adapters ───────────────────────────────────────────────────────


class ApiAdapter(ABC):
    """Maps a provider's API onto the uniform connection model."""

    @abstractmethod
    async def fetch_user_profile(self, api: ProviderApi) -> UserProfile:
        ...

    @abstractmethod
    async def set_connection_values(self, api: ProviderApi, values: ConnectionValues) -> None:
        ...

    async def test(self, api: ProviderApi) -> bool:
        """Return True if the API binding still works."""
        try:
            await self.fetch_user_profile(api)
            return True
        except (httpx.HTTPStatusError, ConnectError) as exc:
            logger.info("API test failed for %s: %s", api.provider_id, exc)
            return False


def _lookup(data: Dict[str, Any], path: Optional[str]) -> Any:
    """Resolve a dotted path like ``data.id`` inside a JSON document."""
    if not path:
        return None
    current: Any = data
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


class JsonProfileAdapter(ApiAdapter):
    """
    Config-driven adapter: reads one JSON profile endpoint and maps its
    fields onto ``UserProfile`` / ``ConnectionValues``.

    ``fields`` keys: id, name, username, email, first_name, last_name,
    display_name, image_url, profile_url. Values are dotted JSON paths.
    ``profile_url_template`` is formatted with the mapped profile fields
    when the provider does not return a profile link itself.
    """

    def __init__(
        self,
        profile_path: str,
        fields: Optional[Dict[str, str]] = None,
        profile_url_template: Optional[str] = None,
    ):
        self.profile_path = profile_path
        self.fields = {"id": "id", "name": "name", **(fields or {})}
        self.profile_url_template = profile_url_template

    def _get(self, data: Dict[str, Any], name: str) -> Optional[str]:
        value = _lookup(data, self.fields.get(name))
        return None if value is None else str(value)

    async def fetch_user_profile(self, api: ProviderApi) -> UserProfile:
        data = await api.get_json(self.profile_path)
        return UserProfile(
            id=self._get(data, "id"),
            name=self._get(data, "name"),
            first_name=self._get(data, "first_name"),
            last_name=self._get(data, "last_name"),
            email=self._get(data, "email"),
            username=self._get(data, "username"),
        )

    async def set_connection_values(self, api: ProviderApi, values: ConnectionValues) -> None:
        data = await api.get_json(self.profile_path)
        values.provider_user_id = self._get(data, "id")
        values.display_name = (
            self._get(data, "display_name") or self._get(data, "username") or self._get(data, "name")
        )
        values.image_url = self._get(data, "image_url")
        values.profile_url = self._get(data, "profile_url")
        if not values.profile_url and self.profile_url_template:
            mapped = {name: self._get(data, name) or "" for name in self.fields}
            values.profile_url = self.profile_url_template.format(**mapped)


# ── Factories ──────────────────────────────────────────────────────────


class ConnectionFactory(ABC):
    """Produces connections for one provider."""

    protocol: AuthProtocol

    def __init__(
        self,
        provider_id: str,
        api_adapter: ApiAdapter,
        *,
        display_name: Optional[str] = None,
        api_kind: Optional[str] = None,
        api_base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider_id = provider_id
        self.api_adapter = api_adapter
        self.display_name = display_name or provider_id
        # Capability tag interceptors are registered against; defaults to the provider id.
        self.api_kind = api_kind or provider_id
        self.api_base_url = api_base_url
        self._transport = transport

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_id}>"

    @abstractmethod
    def credentials_for(self, credentials: AccessCredentials) -> Credentials:
        ...

    @abstractmethod
    def create_connection_from_data(self, data: ConnectionData) -> Connection:
        """Rebuild a connection from its stored form."""
        ...

    def is_configured(self) -> bool:
        return True

    def bind_api(self, credentials: AccessCredentials) -> ProviderApi:
        return ProviderApi(
            self.provider_id,
            self.api_kind,
            self.api_base_url,
            self.credentials_for(credentials),
            transport=self._transport,
        )

    async def _build_connection(self, credentials: AccessCredentials) -> Connection:
        values = ConnectionValues()
        try:
            await self.api_adapter.set_connection_values(self.bind_api(credentials), values)
        except httpx.HTTPStatusError as exc:
            raise ProviderUnavailableError(
                f"Profile request to {self.provider_id} failed: HTTP {exc.response.status_code}",
                provider_id=self.provider_id,
            ) from exc
        if not values.provider_user_id:
            raise ProviderUnavailableError(
                f"{self.provider_id} profile did not include a user id",
                provider_id=self.provider_id,
            )
        return Connection(self, credentials, values)

    def _values_from_data(self, data: ConnectionData) -> ConnectionValues:
        return ConnectionValues(
            provider_user_id=data.provider_user_id,
            display_name=data.display_name,
            profile_url=data.profile_url,
            image_url=data.image_url,
        )


class OAuth1ConnectionFactory(ConnectionFactory):
    protocol = AuthProtocol.OAUTH1

    def __init__(
        self,
        provider_id: str,
        consumer_key: str,
        consumer_secret: str,
        request_token_url: str,
        authorize_url: str,
        access_token_url: str,
        api_adapter: ApiAdapter,
        *,
        version: OAuth1Version = OAuth1Version.CORE_10_REVISION_A,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(provider_id, api_adapter, transport=transport, **kwargs)
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.operations = OAuth1Operations(
            provider_id,
            consumer_key,
            consumer_secret,
            request_token_url,
            authorize_url,
            access_token_url,
            version=version,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.consumer_key and self.consumer_secret)

    def credentials_for(self, credentials: AccessCredentials) -> Credentials:
        return OAuth1Credentials(
            self.consumer_key,
            self.consumer_secret,
            token=credentials.value,
            token_secret=credentials.secret,
        )

    async def create_connection(self, access_token: OAuthToken) -> Connection:
        return await self._build_connection(access_token)

    def create_connection_from_data(self, data: ConnectionData) -> Connection:
        token = OAuthToken(data.access_token, data.secret or "")
        return Connection(self, token, self._values_from_data(data))


class OAuth2ConnectionFactory(ConnectionFactory):
    protocol = AuthProtocol.OAUTH2

    def __init__(
        self,
        provider_id: str,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        access_token_url: str,
        api_adapter: ApiAdapter,
        *,
        default_scope: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs: Any,
    ):
        super().__init__(provider_id, api_adapter, transport=transport, **kwargs)
        self.client_id = client_id
        self.client_secret = client_secret
        self.default_scope = default_scope
        self.operations = OAuth2Operations(
            provider_id,
            client_id,
            client_secret,
            authorize_url,
            access_token_url,
            transport=transport,
        )

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def credentials_for(self, credentials: AccessCredentials) -> Credentials:
        return BearerCredentials(credentials.access_token)

    async def create_connection(self, grant: AccessGrant) -> Connection:
        return await self._build_connection(grant)

    def create_connection_from_data(self, data: ConnectionData) -> Connection:
        grant = AccessGrant(
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            expire_time=data.expire_time,
        )
        return Connection(self, grant, self._values_from_data(data))
