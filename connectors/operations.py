"""
OAuth1 / OAuth2 provider operations.

Low-level HTTP calls against a provider's authorization server: request
tokens, authorize URLs, verifier/code exchange and refresh. Transport
failures and 5xx answers become ``ProviderUnavailableError``; a provider
rejecting what we sent becomes ``TokenExchangeError``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from connectors.errors import ProviderUnavailableError, TokenExchangeError
from connectors.signing import OAuth1Auth, OAuth1Credentials, append_query_parameters, parse_query_parameters
from connectors.types import AccessGrant, OAuthToken, Parameters

logger = logging.getLogger(__name__)

_TOKEN_TIMEOUT = 15.0


class OAuth1Version(str, Enum):
    CORE_10 = "1.0"
    CORE_10_REVISION_A = "1.0a"


async def _send(
    provider_id: str,
    method: str,
    url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any,
) -> httpx.Response:
    try:
        async with httpx.AsyncClient(transport=transport, timeout=_TOKEN_TIMEOUT) as client:
            resp = await client.request(method, url, **kwargs)
    except httpx.TransportError as exc:
        logger.warning("%s %s failed for %s: %s", method, url, provider_id, exc)
        raise ProviderUnavailableError(
            f"Could not reach {provider_id}: {exc}", provider_id=provider_id
        ) from exc

    if resp.status_code >= 500:
        logger.warning("%s %s → %s for %s", method, url, resp.status_code, provider_id)
        raise ProviderUnavailableError(
            f"{provider_id} returned HTTP {resp.status_code}", provider_id=provider_id
        )
    return resp


def _parse_token_body(resp: httpx.Response) -> Dict[str, Any]:
    """Token endpoints answer with JSON or a form-encoded body."""
    content_type = resp.headers.get("Content-Type", "")
    if "json" in content_type:
        payload = resp.json()
        if not isinstance(payload, dict):
            raise ValueError("token response is not a JSON object")
        return payload
    return parse_query_parameters(resp.text)


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth1
# ═══════════════════════════════════════════════════════════════════════════════


class OAuth1Operations:
    def __init__(
        self,
        provider_id: str,
        consumer_key: str,
        consumer_secret: str,
        request_token_url: str,
        authorize_url: str,
        access_token_url: str,
        *,
        version: OAuth1Version = OAuth1Version.CORE_10_REVISION_A,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider_id = provider_id
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self.request_token_url = request_token_url
        self.authorize_url = authorize_url
        self.access_token_url = access_token_url
        self.version = version
        self._transport = transport

    async def fetch_request_token(self, callback_url: str) -> OAuthToken:
        """
        Obtain an unauthorized request token.

        OAuth 1.0a sends ``oauth_callback`` here; OAuth 1.0 puts it on the
        authorize URL instead.
        """
        credentials = OAuth1Credentials(
            self.consumer_key,
            self.consumer_secret,
            callback_uri=callback_url if self.version is OAuth1Version.CORE_10_REVISION_A else None,
        )
        resp = await _send(
            self.provider_id,
            "POST",
            self.request_token_url,
            transport=self._transport,
            auth=OAuth1Auth(credentials),
        )
        if resp.status_code >= 400:
            raise ProviderUnavailableError(
                f"{self.provider_id} refused to issue a request token (HTTP {resp.status_code})",
                provider_id=self.provider_id,
            )
        data = parse_query_parameters(resp.text)
        if not data.get("oauth_token") or "oauth_token_secret" not in data:
            raise ProviderUnavailableError(
                f"{self.provider_id} returned a malformed request token response",
                provider_id=self.provider_id,
            )
        if self.version is OAuth1Version.CORE_10_REVISION_A and data.get("oauth_callback_confirmed") != "true":
            logger.warning("%s did not confirm the OAuth callback URL", self.provider_id)
        return OAuthToken(data["oauth_token"], data["oauth_token_secret"])

    def build_authorize_url(
        self,
        request_token: str,
        callback_url: Optional[str] = None,
        additional_parameters: Optional[Parameters] = None,
    ) -> str:
        params: Dict[str, Any] = {"oauth_token": request_token}
        if self.version is OAuth1Version.CORE_10 and callback_url:
            params["oauth_callback"] = callback_url
        for name, values in (additional_parameters or {}).items():
            params[name] = values
        return append_query_parameters(self.authorize_url, params)

    async def exchange_for_access_token(self, request_token: OAuthToken, verifier: Optional[str]) -> OAuthToken:
        credentials = OAuth1Credentials(
            self.consumer_key,
            self.consumer_secret,
            token=request_token.value,
            token_secret=request_token.secret,
            verifier=verifier if self.version is OAuth1Version.CORE_10_REVISION_A else None,
        )
        resp = await _send(
            self.provider_id,
            "POST",
            self.access_token_url,
            transport=self._transport,
            auth=OAuth1Auth(credentials),
        )
        if resp.status_code >= 400:
            raise TokenExchangeError(
                f"{self.provider_id} rejected the request token/verifier (HTTP {resp.status_code})",
                provider_id=self.provider_id,
                status_code=resp.status_code,
            )
        data = parse_query_parameters(resp.text)
        if not data.get("oauth_token") or "oauth_token_secret" not in data:
            raise TokenExchangeError(
                f"{self.provider_id} returned a malformed access token response",
                provider_id=self.provider_id,
                status_code=resp.status_code,
            )
        return OAuthToken(data["oauth_token"], data["oauth_token_secret"])


# ═══════════════════════════════════════════════════════════════════════════════
# OAuth2
# ═══════════════════════════════════════════════════════════════════════════════


class OAuth2Operations:
    def __init__(
        self,
        provider_id: str,
        client_id: str,
        client_secret: str,
        authorize_url: str,
        access_token_url: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider_id = provider_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.authorize_url = authorize_url
        self.access_token_url = access_token_url
        self._transport = transport

    def build_authorize_url(
        self,
        redirect_uri: str,
        scope: Optional[str] = None,
        state: Optional[str] = None,
        additional_parameters: Optional[Parameters] = None,
    ) -> str:
        params: Dict[str, Any] = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri,
        }
        if scope:
            params["scope"] = scope
        if state:
            params["state"] = state
        for name, values in (additional_parameters or {}).items():
            params[name] = values
        return append_query_parameters(self.authorize_url, params)

    async def exchange_for_access(self, code: str, redirect_uri: str) -> AccessGrant:
        return await self._post_for_grant(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            }
        )

    async def refresh_access(self, refresh_token: str, scope: Optional[str] = None) -> AccessGrant:
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        if scope:
            data["scope"] = scope
        return await self._post_for_grant(data)

    async def _post_for_grant(self, data: Dict[str, str]) -> AccessGrant:
        resp = await _send(
            self.provider_id,
            "POST",
            self.access_token_url,
            transport=self._transport,
            data=data,
            headers={"Accept": "application/json"},
        )
        try:
            payload = _parse_token_body(resp)
        except ValueError:
            payload = {}

        if resp.status_code >= 400 or "error" in payload:
            detail = payload.get("error_description") or payload.get("error") or f"HTTP {resp.status_code}"
            raise TokenExchangeError(
                f"{self.provider_id} token request rejected: {detail}",
                provider_id=self.provider_id,
                status_code=resp.status_code,
            )
        if not payload.get("access_token"):
            raise TokenExchangeError(
                f"{self.provider_id} token response has no access_token",
                provider_id=self.provider_id,
                status_code=resp.status_code,
            )
        return AccessGrant.from_token_response(payload)
