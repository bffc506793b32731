"""
Provider Connect service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.middleware import register_middleware
from config.provider_list import ProviderCatalog
from config.settings import Settings, config
from connectors import encryption
from connectors.controller import ConnectController
from connectors.interceptors import InterceptorRegistry
from connectors.registry import ConnectionFactoryRegistry, build_registry
from connectors.repository import SqlUsersConnectionRepository
from connectors.routes import register_exception_handlers
from connectors.routes import router as connect_router
from connectors.state import StateSigner
from database import session as db_session

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "oauthlib"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = config,
    *,
    registry: Optional[ConnectionFactoryRegistry] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    interceptors: Optional[InterceptorRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    ``registry`` defaults to the providers in ``settings.providers_file``;
    ``session_factory`` defaults to the engine built from
    ``settings.database_url``. Both are injectable so tests can run
    against a private database and simulated providers.
    """
    if settings.token_encryption_key:
        encryption.configure(settings.token_encryption_key)

    if registry is None:
        registry = build_registry(ProviderCatalog(settings.providers_file or None), transport=transport)
    elif not registry.frozen:
        registry.freeze()

    own_engine = session_factory is None
    if own_engine:
        session_factory = db_session.async_session_factory

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if own_engine and settings.auto_create_schema:
            await db_session.create_schema()
        logger.info(
            "Providers available for connection: %s",
            ", ".join(registry.registered_provider_ids()) or "(none configured)",
        )
        if not encryption.is_encryption_enabled():
            logger.warning("Connection tokens are stored unencrypted")
        logger.info("Application ready to accept requests.")
        yield
        if own_engine:
            await db_session.engine.dispose()

    app = FastAPI(
        title="Provider Connect",
        version="1.0.0",
        description="Connect local user accounts to OAuth1 / OAuth2 service providers.",
        lifespan=lifespan,
    )

    controller = ConnectController(
        registry,
        application_url=settings.oauth_redirect_base,
        connect_path=settings.connect_path,
        interceptors=interceptors,
        state_signer=StateSigner(settings.oauth_state_secret, settings.oauth_state_ttl_seconds),
        require_state=settings.oauth2_require_state,
        auth_session_ttl=settings.auth_session_ttl_seconds,
    )

    app.state.registry = registry
    app.state.connect_controller = controller
    app.state.users_connection_repository = SqlUsersConnectionRepository(registry, session_factory)

    register_middleware(app, settings)
    register_exception_handlers(app)

    # Routes
    app.include_router(connect_router, prefix=settings.connect_path.rstrip("/"))

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
