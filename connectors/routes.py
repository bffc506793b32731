"""
Connect API routes — connection status, initiate, callback, disconnect.

Route prefix: ``config.connect_path`` (default ``/connect``)

    GET    /connect                              status across all providers
    GET    /connect/{provider}                   status for one provider
    GET    /connect/{provider}?oauth_token|code  provider callback → redirect
    POST   /connect/{provider}                   initiate → redirect to provider
    DELETE /connect/{provider}                   remove all connections → redirect
    DELETE /connect/{provider}/{provider_user_id}  remove one connection → redirect
"""

from __future__ import annotations

import logging
from typing import Dict, List

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from auth.dependencies import get_current_user_id
from connectors.controller import ConnectController, ConnectRequest, RedirectResult, ViewResult
from connectors.errors import ConnectError, NoSuchConnectionError, NotConnectedError, UnknownProviderError
from connectors.repository import ConnectionRepository, SqlUsersConnectionRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connect"])


# ── Dependencies ───────────────────────────────────────────────────────


def get_controller(request: Request) -> ConnectController:
    return request.app.state.connect_controller


def get_users_connection_repository(request: Request) -> SqlUsersConnectionRepository:
    return request.app.state.users_connection_repository


async def get_connection_repository(
    user_id: str = Depends(get_current_user_id),
    users_repository: SqlUsersConnectionRepository = Depends(get_users_connection_repository),
) -> ConnectionRepository:
    """Repository bound to the acting user for this request."""
    return users_repository.create_connection_repository(user_id)


def _connect_request(request: Request, user_id: str) -> ConnectRequest:
    return ConnectRequest(
        user_id=user_id,
        params=dict(request.query_params),
        session=request.session,
    )


def _view_response(result: ViewResult) -> JSONResponse:
    return JSONResponse(
        content={"view": result.view, "model": result.model},
        status_code=status.HTTP_200_OK,
        headers=result.headers,
    )


def _redirect_response(result: RedirectResult) -> RedirectResponse:
    return RedirectResponse(url=result.url, status_code=result.status_code)


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    controller: ConnectController = Depends(get_controller),
) -> List[Dict[str, str]]:
    """List registered providers. No auth required."""
    return controller.registry.list_providers()


@router.get("")
async def connection_status(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    controller: ConnectController = Depends(get_controller),
    repository: ConnectionRepository = Depends(get_connection_repository),
) -> JSONResponse:
    """Connection status across all providers."""
    result = await controller.connection_status(repository, _connect_request(request, user_id))
    return _view_response(result)


@router.get("/{provider_id}")
async def provider_status_or_callback(
    provider_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    controller: ConnectController = Depends(get_controller),
    repository: ConnectionRepository = Depends(get_connection_repository),
):
    """
    Connection status for one provider, or — when the provider redirects
    back with ``oauth_token``/``code``/``error`` — complete the flow and
    redirect to the status view.
    """
    connect_request = _connect_request(request, user_id)
    if controller.is_callback(connect_request.params):
        result = await controller.complete(provider_id, repository, connect_request)
        return _redirect_response(result)
    return _view_response(await controller.connection_status(repository, connect_request, provider_id))


@router.post("/{provider_id}")
async def connect(
    provider_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    controller: ConnectController = Depends(get_controller),
) -> RedirectResponse:
    """Start the authorization flow; redirects the browser to the provider."""
    result = await controller.connect(provider_id, _connect_request(request, user_id))
    return _redirect_response(result)


@router.delete("/{provider_id}")
async def remove_connections(
    provider_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    controller: ConnectController = Depends(get_controller),
    repository: ConnectionRepository = Depends(get_connection_repository),
) -> RedirectResponse:
    result = await controller.remove_connections(provider_id, repository, _connect_request(request, user_id))
    return _redirect_response(result)


@router.delete("/{provider_id}/{provider_user_id}")
async def remove_connection(
    provider_id: str,
    provider_user_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    controller: ConnectController = Depends(get_controller),
    repository: ConnectionRepository = Depends(get_connection_repository),
) -> RedirectResponse:
    result = await controller.remove_connection(
        provider_id, provider_user_id, repository, _connect_request(request, user_id)
    )
    return _redirect_response(result)


# ── Error mapping ──────────────────────────────────────────────────────


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors that escape the controller onto HTTP responses."""

    @app.exception_handler(ConnectError)
    async def connect_error_handler(request: Request, exc: ConnectError) -> JSONResponse:
        if isinstance(exc, (UnknownProviderError, NoSuchConnectionError, NotConnectedError)):
            code = status.HTTP_404_NOT_FOUND
        else:
            code = status.HTTP_502_BAD_GATEWAY
        logger.info("%s %s → %s (%s)", request.method, request.url.path, code, exc.code)
        return JSONResponse(status_code=code, content={"error": exc.code, "detail": str(exc)})
