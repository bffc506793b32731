"""
OAuth1 flow engine.

Stateless: the pending request token travels in a ``TransientAuthSession``
that the caller keeps in the user's session between ``initiate`` and
``complete``.

    NOT_STARTED → REQUEST_TOKEN_OBTAINED → AWAITING_PROVIDER_AUTHORIZATION → COMPLETED
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from connectors.base import OAuth1ConnectionFactory
from connectors.connection import Connection
from connectors.errors import InvalidVerifierError
from connectors.operations import OAuth1Version
from connectors.types import FlowState, Parameters, TransientAuthSession

logger = logging.getLogger(__name__)


class OAuth1FlowEngine:
    async def initiate(
        self,
        factory: OAuth1ConnectionFactory,
        callback_url: str,
        additional_parameters: Optional[Parameters] = None,
    ) -> Tuple[str, TransientAuthSession]:
        """
        Fetch a request token and build the provider's authorize URL.

        A failed fetch raises ``ProviderUnavailableError``; nothing is
        retried, the next attempt fetches a fresh request token.
        """
        operations = factory.operations
        request_token = await operations.fetch_request_token(callback_url)
        auth_session = TransientAuthSession(
            provider_id=factory.provider_id,
            request_token=request_token,
            callback_url=callback_url,
        )
        redirect_url = operations.build_authorize_url(
            request_token.value,
            callback_url=callback_url,
            additional_parameters=additional_parameters,
        )
        auth_session.state = FlowState.AWAITING_PROVIDER_AUTHORIZATION
        logger.info("OAuth1 request token obtained for %s", factory.provider_id)
        return redirect_url, auth_session

    async def complete(
        self,
        factory: OAuth1ConnectionFactory,
        auth_session: Optional[TransientAuthSession],
        verifier: Optional[str],
        oauth_token: Optional[str] = None,
    ) -> Connection:
        """
        Exchange the authorized request token for an access token and build
        the connection. The session is marked consumed before any network
        call, so it can never be replayed whatever the outcome.
        """
        if auth_session is None:
            raise InvalidVerifierError(
                "No pending request token for this callback", provider_id=factory.provider_id
            )
        if auth_session.consumed:
            raise InvalidVerifierError(
                "Request token has already been used", provider_id=factory.provider_id
            )
        auth_session.consumed = True

        if auth_session.provider_id != factory.provider_id:
            raise InvalidVerifierError(
                f"Request token was issued for '{auth_session.provider_id}'",
                provider_id=factory.provider_id,
            )
        if factory.operations.version is OAuth1Version.CORE_10_REVISION_A:
            if not verifier:
                raise InvalidVerifierError("Callback is missing oauth_verifier", provider_id=factory.provider_id)
        elif not oauth_token:
            # OAuth 1.0 has no verifier; the echoed request token is all there is.
            raise InvalidVerifierError("Callback is missing oauth_token", provider_id=factory.provider_id)
        if oauth_token is not None and oauth_token != auth_session.request_token.value:
            raise InvalidVerifierError(
                "Callback oauth_token does not match the pending request token",
                provider_id=factory.provider_id,
            )

        access_token = await factory.operations.exchange_for_access_token(auth_session.request_token, verifier)
        connection = await factory.create_connection(access_token)
        auth_session.state = FlowState.COMPLETED
        logger.info("OAuth1 flow completed for %s (%s)", factory.provider_id, connection.provider_user_id)
        return connection
