"""
Signed request adapter.

Signs outgoing ``httpx`` requests with either an OAuth1 HMAC-SHA1
Authorization header (via ``oauthlib``) or an OAuth2 bearer token, so the
flow engines and API bindings never touch signature details themselves.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Generator, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
from oauthlib.oauth1 import SIGNATURE_HMAC, Client

_FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


@dataclass(frozen=True)
class OAuth1Credentials:
    consumer_key: str
    consumer_secret: str
    token: Optional[str] = None
    token_secret: Optional[str] = None
    callback_uri: Optional[str] = None
    verifier: Optional[str] = None


@dataclass(frozen=True)
class BearerCredentials:
    access_token: str


Credentials = Union[OAuth1Credentials, BearerCredentials]


def sign(request: httpx.Request, credentials: Credentials) -> httpx.Request:
    """Add the authorization material for ``credentials`` to ``request`` in place."""
    if isinstance(credentials, BearerCredentials):
        request.headers["Authorization"] = f"Bearer {credentials.access_token}"
        return request

    client = Client(
        credentials.consumer_key,
        client_secret=credentials.consumer_secret,
        resource_owner_key=credentials.token,
        resource_owner_secret=credentials.token_secret,
        callback_uri=credentials.callback_uri,
        verifier=credentials.verifier,
        signature_method=SIGNATURE_HMAC,
    )

    # Form parameters take part in the signature base string.
    body = None
    headers = None
    content_type = request.headers.get("Content-Type", "")
    if content_type.startswith(_FORM_CONTENT_TYPE):
        body = request.read().decode()
        headers = {"Content-Type": _FORM_CONTENT_TYPE}

    _, signed_headers, _ = client.sign(
        str(request.url),
        http_method=request.method,
        body=body or None,
        headers=headers if body else None,
    )
    request.headers["Authorization"] = signed_headers["Authorization"]
    return request


class OAuth1Auth(httpx.Auth):
    requires_request_body = True

    def __init__(self, credentials: OAuth1Credentials):
        self.credentials = credentials

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        yield sign(request, self.credentials)


class BearerAuth(httpx.Auth):
    def __init__(self, access_token: str):
        self.credentials = BearerCredentials(access_token)

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        yield sign(request, self.credentials)


def auth_for(credentials: Credentials) -> httpx.Auth:
    if isinstance(credentials, BearerCredentials):
        return BearerAuth(credentials.access_token)
    return OAuth1Auth(credentials)


def parse_query_parameters(uri: str) -> Dict[str, str]:
    """
    Parse the query string of ``uri`` (or a bare query / form body).

    Blank values are kept; the last occurrence of a repeated name wins.
    """
    query = urlsplit(uri).query if ("?" in uri or "://" in uri) else uri
    return dict(parse_qsl(query, keep_blank_values=True))


def append_query_parameters(url: str, params: Mapping[str, object]) -> str:
    """Append ``params`` to ``url``, keeping whatever query it already has."""
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    for name, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend((name, str(v)) for v in value)
        else:
            pairs.append((name, str(value)))
    return urlunsplit(parts._replace(query=urlencode(pairs)))
