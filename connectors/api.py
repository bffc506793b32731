"""
ProviderApi — a live, authorized binding to a provider's REST API.

This is what a ``Connection`` hands out from ``get_api()``: every request
goes through the signed request adapter with the connection's credentials.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from connectors.errors import ProviderUnavailableError
from connectors.signing import Credentials, auth_for

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 15.0


class ProviderApi:
    """Authorized request helper scoped to one provider account."""

    def __init__(
        self,
        provider_id: str,
        api_kind: str,
        base_url: str,
        credentials: Credentials,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider_id = provider_id
        self.api_kind = api_kind
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.credentials = credentials
        self._transport = transport

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = self._url(path)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=_DEFAULT_TIMEOUT) as client:
                resp = await client.request(method, url, auth=auth_for(self.credentials), **kwargs)
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(
                f"{self.provider_id} API unreachable: {exc}", provider_id=self.provider_id
            ) from exc
        logger.debug("%s %s → %s", method, url, resp.status_code)
        if resp.status_code >= 500:
            raise ProviderUnavailableError(
                f"{self.provider_id} API returned {resp.status_code}", provider_id=self.provider_id
            )
        return resp

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self.request("GET", path, params=params, headers={"Accept": "application/json"})
        resp.raise_for_status()
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ProviderUnavailableError(
                f"{self.provider_id} API returned a non-JSON body from {path}", provider_id=self.provider_id
            ) from exc
        if not isinstance(payload, dict):
            raise ProviderUnavailableError(
                f"{self.provider_id} API returned {type(payload).__name__} instead of an object from {path}",
                provider_id=self.provider_id,
            )
        return payload
