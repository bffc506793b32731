"""
OAuth2 flow engine (authorization code grant).

    NOT_STARTED → AWAITING_PROVIDER_AUTHORIZATION → COMPLETED

No server-side state is needed between the two steps; an optional
``state`` value round-trips through the callback URL.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from connectors.base import OAuth2ConnectionFactory
from connectors.connection import Connection
from connectors.errors import AuthorizationDeniedError
from connectors.types import Parameters

logger = logging.getLogger(__name__)


class OAuth2FlowEngine:
    def initiate(
        self,
        factory: OAuth2ConnectionFactory,
        callback_url: str,
        scope: Optional[str] = None,
        additional_parameters: Optional[Parameters] = None,
        state: Optional[str] = None,
    ) -> str:
        """Build the provider authorize URL; falls back to the factory's default scope."""
        return factory.operations.build_authorize_url(
            callback_url,
            scope=scope or factory.default_scope,
            state=state,
            additional_parameters=additional_parameters,
        )

    def check_callback(self, factory: OAuth2ConnectionFactory, params: Mapping[str, str]) -> str:
        """Return the authorization code, or raise if the provider signalled denial."""
        if params.get("error"):
            raise AuthorizationDeniedError(
                f"{factory.provider_id} denied authorization: {params.get('error_description') or params['error']}",
                provider_id=factory.provider_id,
                error=params.get("error"),
                error_description=params.get("error_description"),
            )
        code = params.get("code")
        if not code:
            raise AuthorizationDeniedError(
                "Callback carries neither a code nor an error", provider_id=factory.provider_id
            )
        return code

    async def complete(
        self,
        factory: OAuth2ConnectionFactory,
        callback_url: str,
        code: Optional[str],
    ) -> Connection:
        """
        Exchange ``code`` for an access grant and build the connection.

        ``callback_url`` must be the same redirect URI sent in ``initiate``.
        """
        if not code:
            raise AuthorizationDeniedError("Missing authorization code", provider_id=factory.provider_id)
        grant = await factory.operations.exchange_for_access(code, callback_url)
        connection = await factory.create_connection(grant)
        logger.info("OAuth2 flow completed for %s (%s)", factory.provider_id, connection.provider_user_id)
        return connection
