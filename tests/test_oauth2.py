"""
Tests for the OAuth2 flow engine and token refresh.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl

import pytest

from conftest import ACME_TOKEN_URL
from connectors.errors import AuthorizationDeniedError, ProviderUnavailableError, TokenExchangeError
from connectors.oauth2 import OAuth2FlowEngine
from connectors.signing import parse_query_parameters
from connectors.types import AccessGrant, ConnectionData

CALLBACK = "http://localhost:8000/connect/acme"


class TestOAuth2Initiate:
    def test_authorize_url_parameters(self, oauth2_factory):
        url = OAuth2FlowEngine().initiate(oauth2_factory, CALLBACK, scope="read write", state="s1")
        assert url.startswith("https://acme.test/oauth/authorize?")
        assert parse_query_parameters(url) == {
            "client_id": "acme-client",
            "response_type": "code",
            "redirect_uri": CALLBACK,
            "scope": "read write",
            "state": "s1",
        }

    def test_default_scope_and_no_state(self, oauth2_factory):
        params = parse_query_parameters(OAuth2FlowEngine().initiate(oauth2_factory, CALLBACK))
        assert params["scope"] == "read"
        assert "state" not in params

    def test_additional_parameters(self, oauth2_factory):
        url = OAuth2FlowEngine().initiate(
            oauth2_factory, CALLBACK, additional_parameters={"access_type": ["offline"]}
        )
        assert parse_query_parameters(url)["access_type"] == "offline"


class TestOAuth2Callback:
    def test_code_is_returned(self, oauth2_factory):
        assert OAuth2FlowEngine().check_callback(oauth2_factory, {"code": "abc123"}) == "abc123"

    def test_provider_denial(self, oauth2_factory):
        with pytest.raises(AuthorizationDeniedError) as excinfo:
            OAuth2FlowEngine().check_callback(
                oauth2_factory, {"error": "access_denied", "error_description": "User said no"}
            )
        assert excinfo.value.error == "access_denied"
        assert excinfo.value.error_description == "User said no"

    def test_neither_code_nor_error(self, oauth2_factory):
        with pytest.raises(AuthorizationDeniedError):
            OAuth2FlowEngine().check_callback(oauth2_factory, {"state": "x"})


class TestOAuth2Complete:
    @pytest.mark.asyncio
    async def test_exchange_and_build_connection(self, oauth2_factory, provider):
        connection = await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")

        assert connection.provider_id == "acme"
        assert connection.provider_user_id == "42"
        assert connection.display_name == "octo"
        assert connection.profile_url == "https://acme.test/octo"
        assert connection.image_url == "https://img.acme.test/42.png"
        grant = connection.credentials
        assert grant.access_token == "acme-access"
        assert grant.refresh_token == "acme-refresh"
        assert grant.scope == "read"
        assert grant.expire_time > datetime.now(timezone.utc)

        (exchange,) = provider.requests_to(ACME_TOKEN_URL)
        form = dict(parse_qsl(exchange.content.decode()))
        assert form == {
            "client_id": "acme-client",
            "client_secret": "acme-secret",
            "code": "abc123",
            "redirect_uri": CALLBACK,
            "grant_type": "authorization_code",
        }

    @pytest.mark.asyncio
    async def test_rejected_code(self, oauth2_factory, provider):
        provider.token_status = 400
        with pytest.raises(TokenExchangeError) as excinfo:
            await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "stale")
        assert excinfo.value.status_code == 400
        assert "The code is invalid" in str(excinfo.value)

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint(self, oauth2_factory, provider):
        provider.unreachable = True
        with pytest.raises(ProviderUnavailableError):
            await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")

    @pytest.mark.asyncio
    async def test_missing_code(self, oauth2_factory, provider):
        with pytest.raises(AuthorizationDeniedError):
            await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, None)
        assert provider.requests == []

    @pytest.mark.asyncio
    async def test_profile_page_that_is_not_json(self, oauth2_factory, provider):
        provider.maintenance_page = True
        with pytest.raises(ProviderUnavailableError):
            await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")

    @pytest.mark.asyncio
    async def test_profile_that_is_not_an_object(self, oauth2_factory, provider):
        provider.acme_profile = [{"id": 42}]
        with pytest.raises(ProviderUnavailableError):
            await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")

    @pytest.mark.asyncio
    async def test_grant_without_expiry(self, oauth2_factory, provider):
        provider.expires_in = None
        provider.refresh_token = None
        connection = await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")
        assert connection.credentials.expire_time is None
        assert not connection.has_expired()


class TestConnectionRefresh:
    @pytest.mark.asyncio
    async def test_refresh_keeps_old_refresh_token(self, oauth2_factory, provider):
        connection = await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")
        await connection.refresh()
        assert connection.credentials.access_token == "acme-refreshed"
        assert connection.credentials.refresh_token == "acme-refresh"

        refresh_call = provider.requests_to(ACME_TOKEN_URL)[-1]
        form = dict(parse_qsl(refresh_call.content.decode()))
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "acme-refresh"

    def test_has_expired(self, oauth2_factory):
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        connection = oauth2_factory.create_connection_from_data(connection_data(expire_time=past))
        assert connection.has_expired()

    @pytest.mark.asyncio
    async def test_api_binding_uses_bearer_token(self, oauth2_factory, provider):
        connection = await OAuth2FlowEngine().complete(oauth2_factory, CALLBACK, "abc123")
        profile = await connection.fetch_user_profile()
        assert profile.id == "42"
        assert profile.username == "octo"
        assert provider.requests[-1].headers["Authorization"] == "Bearer acme-access"
        assert await connection.test()

    @pytest.mark.asyncio
    async def test_api_test_fails_when_provider_is_down(self, oauth2_factory, provider):
        connection = oauth2_factory.create_connection_from_data(connection_data())
        provider.server_error = True
        assert not await connection.test()

    @pytest.mark.asyncio
    async def test_api_test_fails_on_maintenance_page(self, oauth2_factory, provider):
        connection = oauth2_factory.create_connection_from_data(connection_data())
        provider.maintenance_page = True
        assert not await connection.test()

    @pytest.mark.asyncio
    async def test_refresh_without_refresh_token(self, oauth2_factory, provider):
        connection = oauth2_factory.create_connection_from_data(connection_data(refresh_token=None))
        assert await connection.refresh() is False
        assert provider.requests == []


def connection_data(**overrides):
    values = {
        "provider_id": "acme",
        "provider_user_id": "42",
        "display_name": "octo",
        "access_token": "stored-token",
        "refresh_token": "stored-refresh",
    }
    values.update(overrides)
    return ConnectionData(**values)


def test_grant_from_token_response():
    grant = AccessGrant.from_token_response({"access_token": "t", "expires_in": "60"})
    assert grant.refresh_token is None
    assert grant.expire_time - datetime.now(timezone.utc) <= timedelta(seconds=60)
