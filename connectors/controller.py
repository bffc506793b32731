"""
ConnectController — drives the account-to-provider connection flow.

Framework independent: takes a ``ConnectRequest`` (acting user, query
parameters, session mapping) and returns either a ``ViewResult`` (view name
plus model, never HTML) or a ``RedirectResult``.

    status      → ViewResult, never cached, consumes flash values
    connect     → redirect to the provider's authorize URL
    callback    → complete the flow, store the connection, redirect to status
    remove      → delete connection(s), redirect to status

Callbacks always end in a redirect so a browser refresh cannot replay them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, MutableMapping, Optional

from connectors.base import ConnectionFactory, OAuth1ConnectionFactory, OAuth2ConnectionFactory
from connectors.connection import Connection
from connectors.errors import (
    AuthorizationDeniedError,
    ConnectError,
    DuplicateConnectionError,
    InvalidStateError,
    InvalidVerifierError,
)
from connectors.interceptors import InterceptorRegistry
from connectors.oauth1 import OAuth1FlowEngine
from connectors.oauth2 import OAuth2FlowEngine
from connectors.registry import ConnectionFactoryRegistry
from connectors.repository import ConnectionRepository
from connectors.session_store import AuthSessionStore, FlashScope
from connectors.state import StateSigner
from connectors.types import ConnectionKey, DuplicateConnectionSignal, Parameters

logger = logging.getLogger(__name__)

DUPLICATE_CONNECTION_FLASH = "duplicate_connection"
PROVIDER_ERROR_FLASH = "provider_error"

NO_CACHE_HEADERS = {
    "Pragma": "no-cache",
    "Expires": "Thu, 01 Jan 1970 00:00:01 GMT",
    "Cache-Control": "no-cache, no-store",
}

_OAUTH1_CALLBACK_PARAMS = ("oauth_token", "denied")
_OAUTH2_CALLBACK_PARAMS = ("code", "error")


@dataclass(frozen=True)
class ViewNames:
    """View name templates; ``{provider_id}`` is substituted."""

    status: str = "connect/status"
    connect: str = "connect/{provider_id}Connect"
    connected: str = "connect/{provider_id}Connected"
    status_redirect: str = "/connect/{provider_id}"

    def connect_view(self, provider_id: str) -> str:
        return self.connect.format(provider_id=provider_id)

    def connected_view(self, provider_id: str) -> str:
        return self.connected.format(provider_id=provider_id)

    def status_redirect_url(self, provider_id: str) -> str:
        return self.status_redirect.format(provider_id=provider_id)


@dataclass
class ConnectRequest:
    user_id: str
    params: Mapping[str, str] = field(default_factory=dict)
    session: MutableMapping[str, Any] = field(default_factory=dict)


@dataclass
class ViewResult:
    view: str
    model: Dict[str, Any]
    headers: Dict[str, str] = field(default_factory=lambda: dict(NO_CACHE_HEADERS))


@dataclass
class RedirectResult:
    url: str
    status_code: int = 302


class ConnectController:
    def __init__(
        self,
        registry: ConnectionFactoryRegistry,
        *,
        application_url: str,
        connect_path: str = "/connect",
        interceptors: Optional[InterceptorRegistry] = None,
        views: Optional[ViewNames] = None,
        state_signer: Optional[StateSigner] = None,
        require_state: bool = False,
        auth_session_ttl: int = 600,
        oauth1_engine: Optional[OAuth1FlowEngine] = None,
        oauth2_engine: Optional[OAuth2FlowEngine] = None,
    ):
        self.registry = registry
        self.application_url = application_url.rstrip("/")
        self.connect_path = connect_path
        self.interceptors = interceptors if interceptors is not None else InterceptorRegistry()
        if views is None:
            views = ViewNames(status_redirect=connect_path.rstrip("/") + "/{provider_id}")
        self.views = views
        self.state_signer = state_signer
        self.require_state = require_state
        self.auth_session_ttl = auth_session_ttl
        self.oauth1 = oauth1_engine or OAuth1FlowEngine()
        self.oauth2 = oauth2_engine or OAuth2FlowEngine()

    def callback_url(self, provider_id: str) -> str:
        return f"{self.application_url}{self.connect_path.rstrip('/')}/{provider_id}"

    @staticmethod
    def is_callback(params: Mapping[str, str]) -> bool:
        return any(name in params for name in _OAUTH1_CALLBACK_PARAMS + _OAUTH2_CALLBACK_PARAMS)

    # ── Status ──────────────────────────────────────────────────────────

    async def connection_status(
        self,
        repository: ConnectionRepository,
        request: ConnectRequest,
        provider_id: Optional[str] = None,
    ) -> ViewResult:
        model: Dict[str, Any] = {}
        self._process_flash(request, model)

        if provider_id is None:
            connections = await repository.find_all_connections()
            model["provider_ids"] = self.registry.registered_provider_ids()
            model["connection_map"] = {
                pid: [c.summary() for c in conns] for pid, conns in connections.items()
            }
            return ViewResult(self.views.status, model)

        factory = self.registry.get_factory(provider_id)
        connections = await repository.find_connections(provider_id)
        model["provider_id"] = provider_id
        model["display_name"] = factory.display_name
        if not connections:
            return ViewResult(self.views.connect_view(provider_id), model)
        model["connections"] = [c.summary() for c in connections]
        return ViewResult(self.views.connected_view(provider_id), model)

    # ── Initiate ────────────────────────────────────────────────────────

    async def connect(self, provider_id: str, request: ConnectRequest) -> RedirectResult:
        """
        Send the user to the provider. OAuth1 fetches a request token first
        and parks it in the session; OAuth2 only builds the authorize URL.
        """
        factory = self.registry.get_factory(provider_id)
        parameters: Parameters = {}
        await self._pre_connect(factory, parameters, request)
        callback_url = self.callback_url(provider_id)

        try:
            if isinstance(factory, OAuth1ConnectionFactory):
                url, auth_session = await self.oauth1.initiate(factory, callback_url, parameters)
                AuthSessionStore(request.session, self.auth_session_ttl).put(auth_session)
            elif isinstance(factory, OAuth2ConnectionFactory):
                state = self.state_signer.create(request.user_id, provider_id) if self.state_signer else None
                url = self.oauth2.initiate(
                    factory,
                    callback_url,
                    scope=request.params.get("scope"),
                    additional_parameters=parameters,
                    state=state,
                )
            else:
                raise TypeError(f"Unsupported connection factory {factory!r}")
        except ConnectError as exc:
            self._flash_error(request, exc)
            return self._status_redirect(provider_id, 303)

        logger.info("Redirecting user %s to %s for authorization", request.user_id, provider_id)
        return RedirectResult(url, 303)

    # ── Callback ────────────────────────────────────────────────────────

    async def complete(
        self,
        provider_id: str,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> RedirectResult:
        """
        Dispatch a provider callback by the provider's protocol. Any callback
        to an OAuth1 provider uses up its pending request token, whatever
        parameters it carries.
        """
        factory = self.registry.get_factory(provider_id)
        if isinstance(factory, OAuth1ConnectionFactory):
            return await self.oauth1_callback(provider_id, repository, request)
        if self.is_callback(request.params):
            return await self.oauth2_callback(provider_id, repository, request)
        self._flash_error(
            request,
            AuthorizationDeniedError("Callback carries no authorization result", provider_id=provider_id),
        )
        return self._status_redirect(provider_id)

    async def oauth1_callback(
        self,
        provider_id: str,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> RedirectResult:
        factory = self.registry.get_factory(provider_id)
        # Taken out of the session up front: single use, whatever happens next.
        auth_session = AuthSessionStore(request.session, self.auth_session_ttl).take(provider_id)
        try:
            if not isinstance(factory, OAuth1ConnectionFactory):
                raise InvalidVerifierError(f"'{provider_id}' is not an OAuth1 provider", provider_id=provider_id)
            denied = request.params.get("denied") or request.params.get("error")
            if denied:
                raise AuthorizationDeniedError(
                    f"{provider_id} authorization was declined", provider_id=provider_id, error=denied
                )
            connection = await self.oauth1.complete(
                factory,
                auth_session,
                request.params.get("oauth_verifier"),
                request.params.get("oauth_token"),
            )
        except ConnectError as exc:
            self._flash_error(request, exc)
            return self._status_redirect(provider_id)

        await self._add_connection(connection, factory, repository, request)
        return self._status_redirect(provider_id)

    async def oauth2_callback(
        self,
        provider_id: str,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> RedirectResult:
        factory = self.registry.get_factory(provider_id)
        try:
            if not isinstance(factory, OAuth2ConnectionFactory):
                raise AuthorizationDeniedError(f"'{provider_id}' is not an OAuth2 provider", provider_id=provider_id)
            code = self.oauth2.check_callback(factory, request.params)
            self._verify_state(provider_id, request)
            connection = await self.oauth2.complete(factory, self.callback_url(provider_id), code)
        except ConnectError as exc:
            self._flash_error(request, exc)
            return self._status_redirect(provider_id)

        await self._add_connection(connection, factory, repository, request)
        return self._status_redirect(provider_id)

    # ── Removal ─────────────────────────────────────────────────────────

    async def remove_connections(
        self,
        provider_id: str,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> RedirectResult:
        self.registry.get_factory(provider_id)
        await repository.remove_connections(provider_id)
        return self._status_redirect(provider_id, 303)

    async def remove_connection(
        self,
        provider_id: str,
        provider_user_id: str,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> RedirectResult:
        self.registry.get_factory(provider_id)
        await repository.remove_connection(ConnectionKey(provider_id, provider_user_id))
        return self._status_redirect(provider_id, 303)

    # ── Internal helpers ────────────────────────────────────────────────

    def _status_redirect(self, provider_id: str, status_code: int = 302) -> RedirectResult:
        return RedirectResult(self.views.status_redirect_url(provider_id), status_code)

    def _verify_state(self, provider_id: str, request: ConnectRequest) -> None:
        state = request.params.get("state")
        if not state:
            if self.require_state:
                raise InvalidStateError("Callback is missing the state parameter", provider_id=provider_id)
            return
        if self.state_signer is not None:
            self.state_signer.verify(state, request.user_id, provider_id)

    async def _add_connection(
        self,
        connection: Connection,
        factory: ConnectionFactory,
        repository: ConnectionRepository,
        request: ConnectRequest,
    ) -> None:
        try:
            await repository.add_connection(connection)
        except DuplicateConnectionError as exc:
            signal = DuplicateConnectionSignal(exc.key.provider_id, exc.key.provider_user_id)
            FlashScope(request.session).put(DUPLICATE_CONNECTION_FLASH, signal.to_dict())
            return
        await self._post_connect(factory, connection, request)

    async def _pre_connect(self, factory: ConnectionFactory, parameters: Parameters, request: ConnectRequest) -> None:
        for interceptor in self.interceptors.for_factory(factory):
            await interceptor.pre_connect(factory, parameters, request)

    async def _post_connect(self, factory: ConnectionFactory, connection: Connection, request: ConnectRequest) -> None:
        for interceptor in self.interceptors.for_factory(factory):
            await interceptor.post_connect(connection, request)

    def _flash_error(self, request: ConnectRequest, exc: ConnectError) -> None:
        logger.warning("Connect flow for %s failed (%s): %s", exc.provider_id, exc.code, exc)
        FlashScope(request.session).put(
            PROVIDER_ERROR_FLASH,
            {"provider_id": exc.provider_id, "error": exc.code, "message": str(exc)},
        )

    def _process_flash(self, request: ConnectRequest, model: Dict[str, Any]) -> None:
        flash = FlashScope(request.session)
        duplicate = flash.pop(DUPLICATE_CONNECTION_FLASH)
        if duplicate:
            model[DUPLICATE_CONNECTION_FLASH] = duplicate
        error = flash.pop(PROVIDER_ERROR_FLASH)
        if error:
            model[PROVIDER_ERROR_FLASH] = error

