"""
End-to-end tests of the HTTP surface through an in-process ASGI client.
"""

import httpx
import pytest
import pytest_asyncio

from auth.jwt import create_token
from config.settings import Settings
from connectors.signing import parse_query_parameters
from main import create_app


@pytest.fixture
def settings():
    return Settings(
        oauth_redirect_base="http://testserver",
        session_secret="test-session-secret",
        oauth_state_secret="test-state-secret",
        token_encryption_key="",
        auto_create_schema=False,
    )


@pytest_asyncio.fixture
async def client(settings, registry, session_factory):
    app = create_app(settings, registry=registry, session_factory=session_factory)
    headers = {"Authorization": f"Bearer {create_token('alice')}"}
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver", headers=headers
    ) as client:
        yield client


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, settings, registry, session_factory):
        app = create_app(settings, registry=registry, session_factory=session_factory)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as anon:
            resp = await anon.get("/connect")
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_token_from_cookie(self, settings, registry, session_factory):
        app = create_app(settings, registry=registry, session_factory=session_factory)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
            cookies={"access_token": create_token("alice")},
        ) as browser:
            resp = await browser.get("/connect")
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_providers_listing_is_public(self, settings, registry, session_factory):
        app = create_app(settings, registry=registry, session_factory=session_factory)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as anon:
            resp = await anon.get("/connect/providers")
        assert resp.status_code == 200
        assert [p["provider"] for p in resp.json()] == ["acme", "birdsite"]


class TestStatusRoutes:
    @pytest.mark.asyncio
    async def test_status_page_is_never_cached(self, client):
        resp = await client.get("/connect")
        assert resp.status_code == 200
        body = resp.json()
        assert body["view"] == "connect/status"
        assert body["model"]["connection_map"] == {"acme": [], "birdsite": []}
        assert resp.headers["Cache-Control"] == "no-cache, no-store"
        assert resp.headers["Pragma"] == "no-cache"
        assert "X-Process-Time" in resp.headers

    @pytest.mark.asyncio
    async def test_unknown_provider_is_404(self, client):
        resp = await client.get("/connect/myspace")
        assert resp.status_code == 404
        assert resp.json()["error"] == "unknown_provider"


class TestOAuth2Routes:
    @pytest.mark.asyncio
    async def test_connect_and_callback(self, client):
        resp = await client.post("/connect/acme")
        assert resp.status_code == 303
        location = resp.headers["location"]
        assert location.startswith("https://acme.test/oauth/authorize?")
        params = parse_query_parameters(location)
        assert params["redirect_uri"] == "http://testserver/connect/acme"

        resp = await client.get("/connect/acme", params={"code": "abc123", "state": params["state"]})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/connect/acme"

        resp = await client.get("/connect/acme")
        body = resp.json()
        assert body["view"] == "connect/acmeConnected"
        assert body["model"]["connections"][0]["display_name"] == "octo"

    @pytest.mark.asyncio
    async def test_duplicate_flash_survives_redirect(self, client):
        await client.get("/connect/acme", params={"code": "first"})
        await client.get("/connect/acme", params={"code": "second"})

        body = (await client.get("/connect")).json()
        assert body["model"]["duplicate_connection"] == {"provider_id": "acme", "provider_user_id": "42"}
        assert "duplicate_connection" not in (await client.get("/connect")).json()["model"]

    @pytest.mark.asyncio
    async def test_denied_callback(self, client):
        resp = await client.get("/connect/acme", params={"error": "access_denied"})
        assert resp.status_code == 302
        body = (await client.get("/connect/acme")).json()
        assert body["view"] == "connect/acmeConnect"
        assert body["model"]["provider_error"]["error"] == "authorization_denied"


class TestOAuth1Routes:
    @pytest.mark.asyncio
    async def test_connect_and_callback(self, client):
        resp = await client.post("/connect/birdsite")
        assert resp.status_code == 303
        assert parse_query_parameters(resp.headers["location"])["oauth_token"] == "req-token"

        resp = await client.get(
            "/connect/birdsite", params={"oauth_token": "req-token", "oauth_verifier": "v1"}
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == "/connect/birdsite"

        body = (await client.get("/connect/birdsite")).json()
        assert body["view"] == "connect/birdsiteConnected"
        assert body["model"]["connections"][0]["provider_user_id"] == "1001"

    @pytest.mark.asyncio
    async def test_callback_from_another_browser_fails(self, client, settings, registry, session_factory, provider):
        await client.post("/connect/birdsite")

        app = create_app(settings, registry=registry, session_factory=session_factory)
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
            headers={"Authorization": f"Bearer {create_token('alice')}"},
        ) as other:
            resp = await other.get(
                "/connect/birdsite", params={"oauth_token": "req-token", "oauth_verifier": "v1"}
            )
            assert resp.status_code == 302
            body = (await other.get("/connect/birdsite")).json()
        assert body["model"]["provider_error"]["error"] == "invalid_verifier"


class TestRemovalRoutes:
    @pytest.mark.asyncio
    async def test_remove_connections(self, client):
        await client.get("/connect/acme", params={"code": "abc123"})

        resp = await client.delete("/connect/acme/42")
        assert resp.status_code == 303
        assert resp.headers["location"] == "/connect/acme"

        resp = await client.delete("/connect/acme")
        assert resp.status_code == 303
        body = (await client.get("/connect/acme")).json()
        assert body["view"] == "connect/acmeConnect"
