"""
Shared fixtures: a simulated OAuth1 + OAuth2 provider behind
``httpx.MockTransport`` and a throwaway SQLite database per test.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List
from urllib.parse import parse_qsl

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors import encryption
from connectors.base import JsonProfileAdapter, OAuth1ConnectionFactory, OAuth2ConnectionFactory
from connectors.registry import ConnectionFactoryRegistry
from connectors.repository import SqlConnectionRepository, SqlUsersConnectionRepository
from database.session import build_engine, create_schema

ACME_AUTHORIZE_URL = "https://acme.test/oauth/authorize"
ACME_TOKEN_URL = "https://acme.test/oauth/token"
ACME_API = "https://api.acme.test"

BIRD_REQUEST_TOKEN_URL = "https://birdsite.test/oauth/request_token"
BIRD_AUTHORIZE_URL = "https://birdsite.test/oauth/authorize"
BIRD_ACCESS_TOKEN_URL = "https://birdsite.test/oauth/access_token"
BIRD_API = "https://api.birdsite.test/1.1"

_FORM = {"Content-Type": "application/x-www-form-urlencoded"}


class FakeProvider:
    """
    Answers the token and profile endpoints of two providers:
    ``acme`` (OAuth2) and ``birdsite`` (OAuth1.0a).

    Tests flip the attributes to simulate rejections and outages.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.unreachable = False
        self.token_status = 200
        self.server_error = False
        self.maintenance_page = False
        self.acme_profile: Dict[str, Any] = {
            "id": 42,
            "login": "octo",
            "name": "Octo Cat",
            "avatar_url": "https://img.acme.test/42.png",
            "html_url": "https://acme.test/octo",
        }
        self.bird_profile: Dict[str, Any] = {
            "id_str": "1001",
            "screen_name": "jdoe",
            "name": "Jane Doe",
            "profile_image_url_https": "https://img.birdsite.test/1001.png",
        }
        self.request_token = "req-token"
        self.request_token_secret = "req-secret"
        self.access_token = "acme-access"
        self.refresh_token = "acme-refresh"
        self.expires_in = 3600

    def requests_to(self, url: str) -> List[httpx.Request]:
        return [r for r in self.requests if str(r.url).split("?")[0] == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        if self.server_error:
            return httpx.Response(503, text="maintenance")

        url = str(request.url).split("?")[0]

        if url == ACME_TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(
                    self.token_status,
                    json={"error": "bad_verification_code", "error_description": "The code is invalid"},
                )
            form = dict(parse_qsl(request.content.decode()))
            if form.get("grant_type") == "refresh_token":
                return httpx.Response(200, json={"access_token": "acme-refreshed", "expires_in": 3600})
            body: Dict[str, Any] = {"access_token": self.access_token, "scope": "read"}
            if self.refresh_token:
                body["refresh_token"] = self.refresh_token
            if self.expires_in is not None:
                body["expires_in"] = self.expires_in
            return httpx.Response(200, json=body)

        if self.maintenance_page and url in (f"{ACME_API}/user", f"{BIRD_API}/account/verify_credentials.json"):
            return httpx.Response(200, text="<html>maintenance</html>", headers={"Content-Type": "text/html"})

        if url == f"{ACME_API}/user":
            if not request.headers.get("Authorization", "").startswith("Bearer "):
                return httpx.Response(401, json={"message": "Requires authentication"})
            return httpx.Response(200, json=self.acme_profile)

        if url == BIRD_REQUEST_TOKEN_URL:
            body = (
                f"oauth_token={self.request_token}&oauth_token_secret={self.request_token_secret}"
                "&oauth_callback_confirmed=true"
            )
            return httpx.Response(200, text=body, headers=_FORM)

        if url == BIRD_ACCESS_TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="Invalid oauth_verifier")
            return httpx.Response(
                200, text="oauth_token=bird-access&oauth_token_secret=bird-secret", headers=_FORM
            )

        if url == f"{BIRD_API}/account/verify_credentials.json":
            if not request.headers.get("Authorization", "").startswith("OAuth "):
                return httpx.Response(401, text=json.dumps({"errors": [{"code": 215}]}))
            return httpx.Response(200, json=self.bird_profile)

        return httpx.Response(404, text=f"no route for {request.method} {url}")


def acme_factory(transport: httpx.AsyncBaseTransport) -> OAuth2ConnectionFactory:
    return OAuth2ConnectionFactory(
        "acme",
        "acme-client",
        "acme-secret",
        ACME_AUTHORIZE_URL,
        ACME_TOKEN_URL,
        JsonProfileAdapter(
            "/user",
            fields={
                "id": "id",
                "name": "name",
                "username": "login",
                "image_url": "avatar_url",
                "profile_url": "html_url",
            },
        ),
        default_scope="read",
        display_name="Acme",
        api_base_url=ACME_API,
        transport=transport,
    )


def birdsite_factory(transport: httpx.AsyncBaseTransport) -> OAuth1ConnectionFactory:
    return OAuth1ConnectionFactory(
        "birdsite",
        "bird-key",
        "bird-consumer-secret",
        BIRD_REQUEST_TOKEN_URL,
        BIRD_AUTHORIZE_URL,
        BIRD_ACCESS_TOKEN_URL,
        JsonProfileAdapter(
            "/account/verify_credentials.json",
            fields={
                "id": "id_str",
                "name": "name",
                "username": "screen_name",
                "image_url": "profile_image_url_https",
            },
            profile_url_template="https://birdsite.test/{username}",
        ),
        display_name="Birdsite",
        api_kind="microblog",
        api_base_url=BIRD_API,
        transport=transport,
    )


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport(provider: FakeProvider) -> httpx.MockTransport:
    return httpx.MockTransport(provider.handler)


@pytest.fixture
def oauth2_factory(transport) -> OAuth2ConnectionFactory:
    return acme_factory(transport)


@pytest.fixture
def oauth1_factory(transport) -> OAuth1ConnectionFactory:
    return birdsite_factory(transport)


@pytest.fixture
def registry(oauth2_factory, oauth1_factory) -> ConnectionFactoryRegistry:
    return ConnectionFactoryRegistry([oauth2_factory, oauth1_factory]).freeze()


@pytest.fixture(autouse=True)
def plaintext_tokens():
    """Each test starts with token encryption off unless it turns it on."""
    encryption.configure(None)
    yield
    encryption.configure(None)


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'connect.db'}")
    await create_schema(engine)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def users_repository(registry, session_factory) -> SqlUsersConnectionRepository:
    return SqlUsersConnectionRepository(registry, session_factory)


@pytest.fixture
def repository(registry, session_factory) -> SqlConnectionRepository:
    return SqlConnectionRepository("alice", registry, session_factory)
