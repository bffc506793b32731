"""
Global middleware.
"""

from __future__ import annotations

import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from config.settings import Settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "connect_session"


def register_middleware(app: FastAPI, settings: Settings) -> None:
    """
    Attach app-level middleware.

    The signed session cookie holds the pending OAuth1 request token and
    flash values between the redirect to the provider and its callback.
    ``same_site=lax`` keeps it on the provider's top-level GET redirect.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=SESSION_COOKIE,
        max_age=settings.auth_session_ttl_seconds * 6,
        same_site="lax",
        https_only=settings.oauth_redirect_base.startswith("https://"),
    )

    @app.middleware("http")
    async def request_timer(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        logger.debug("%s %s → %s in %.3fs", request.method, request.url.path, response.status_code, elapsed)
        return response
