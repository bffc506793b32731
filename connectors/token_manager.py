"""
Token manager — hand out live API bindings for stored connections.

This is the single interface that application code uses to call a
provider on a user's behalf: it picks the user's primary connection,
refreshes an expiring OAuth2 grant and persists the new credentials.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from connectors.api import ProviderApi
from connectors.connection import Connection
from connectors.errors import TokenExchangeError
from connectors.repository import ConnectionRepository
from connectors.types import ConnectionKey

logger = logging.getLogger(__name__)

_REFRESH_BUFFER = timedelta(seconds=120)


async def ensure_fresh(repository: ConnectionRepository, connection: Connection) -> Connection:
    """
    Refresh ``connection`` if it expires within the buffer and store the result.

    A grant that is already past its expiry and has no refresh token raises
    ``TokenExchangeError``; the user has to reconnect.
    """
    if not connection.has_expired(datetime.now(timezone.utc) + _REFRESH_BUFFER):
        return connection
    if await connection.refresh():
        await repository.update_connection(connection)
    elif connection.has_expired():
        raise TokenExchangeError(
            f"Access grant for {connection.key.provider_id}/{connection.key.provider_user_id} "
            "has expired and cannot be refreshed",
            provider_id=connection.provider_id,
        )
    return connection


async def get_active_api(repository: ConnectionRepository, provider_id: str) -> ProviderApi:
    """
    Live API binding for the user's primary connection to ``provider_id``.

    Raises ``NotConnectedError`` if the user has no such connection and
    ``TokenExchangeError`` if an expired grant cannot be refreshed.
    """
    connection = await repository.get_primary_connection(provider_id)
    connection = await ensure_fresh(repository, connection)
    return connection.get_api()


async def get_api_for(repository: ConnectionRepository, key: ConnectionKey) -> ProviderApi:
    """Same as ``get_active_api`` but for one specific provider account."""
    connection = await repository.get_connection(key)
    connection = await ensure_fresh(repository, connection)
    logger.debug("Issued API binding for %s/%s", key.provider_id, key.provider_user_id)
    return connection.get_api()
