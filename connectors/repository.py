"""
Connection repositories — durable, per-user storage of connections.

``SqlConnectionRepository`` is bound to one user id for the duration of a
request. Every operation runs in its own short transaction; the uniqueness
of a connection key is enforced by the database (unique constraint), so two
concurrent ``add_connection`` calls for the same key resolve to exactly one
insert and one ``DuplicateConnectionError``.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Set

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.connection import Connection
from connectors.encryption import decrypt_token, encrypt_token
from connectors.errors import (
    DuplicateConnectionError,
    NoSuchConnectionError,
    NotConnectedError,
)
from connectors.registry import ConnectionFactoryRegistry
from connectors.types import ConnectionData, ConnectionKey
from database.models import UserConnection
from database.session import async_session_factory

logger = logging.getLogger(__name__)


class ConnectionRepository(ABC):
    """Data access interface for the connections of one local user."""

    @abstractmethod
    async def find_all_connections(self) -> Dict[str, List[Connection]]:
        """Every registered provider id → its connections (possibly empty), in registry order."""

    @abstractmethod
    async def find_connections(self, provider_id: str) -> List[Connection]:
        """Connections to one provider, by rank; empty if none."""

    @abstractmethod
    async def find_connections_to_users(
        self, provider_users: Mapping[str, Iterable[str]]
    ) -> Dict[str, List[Connection]]:
        """Connections to the given provider accounts, keyed by provider id."""

    @abstractmethod
    async def get_connection(self, key: ConnectionKey) -> Connection:
        """Raises ``NoSuchConnectionError`` if absent."""

    @abstractmethod
    async def find_primary_connection(self, provider_id: str) -> Optional[Connection]:
        """Lowest-ranked connection to the provider, or None."""

    async def get_primary_connection(self, provider_id: str) -> Connection:
        connection = await self.find_primary_connection(provider_id)
        if connection is None:
            raise NotConnectedError(provider_id)
        return connection

    @abstractmethod
    async def add_connection(self, connection: Connection) -> None:
        """Raises ``DuplicateConnectionError`` if the key already exists."""

    @abstractmethod
    async def update_connection(self, connection: Connection) -> None:
        """Persist new profile values / credentials for an existing key."""

    @abstractmethod
    async def remove_connection(self, key: ConnectionKey) -> None:
        """Idempotent."""

    @abstractmethod
    async def remove_connections(self, provider_id: str) -> None:
        """Idempotent."""


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlConnectionRepository(ConnectionRepository):
    def __init__(
        self,
        user_id: str,
        registry: ConnectionFactoryRegistry,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self.user_id = user_id
        self._registry = registry
        self._session_factory = session_factory

    # ── Reads ───────────────────────────────────────────────────────────

    def _to_connection(self, row: UserConnection) -> Connection:
        factory = self._registry.get_factory(row.provider_id)
        data = ConnectionData(
            provider_id=row.provider_id,
            provider_user_id=row.provider_user_id,
            display_name=row.display_name,
            profile_url=row.profile_url,
            image_url=row.image_url,
            access_token=decrypt_token(row.access_token) or "",
            secret=decrypt_token(row.secret),
            refresh_token=decrypt_token(row.refresh_token),
            expire_time=_aware(row.expire_time),
        )
        return factory.create_connection_from_data(data)

    async def _select(self, *criteria) -> List[UserConnection]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserConnection)
                .where(UserConnection.user_id == self.user_id, *criteria)
                .order_by(UserConnection.provider_id, UserConnection.rank)
            )
            return list(result.scalars().all())

    async def find_all_connections(self) -> Dict[str, List[Connection]]:
        connections: Dict[str, List[Connection]] = {
            provider_id: [] for provider_id in self._registry.registered_provider_ids()
        }
        for row in await self._select():
            if row.provider_id not in connections:
                # Provider was unregistered since the connection was made.
                logger.debug("Skipping connection to unregistered provider %s", row.provider_id)
                continue
            connections[row.provider_id].append(self._to_connection(row))
        return connections

    async def find_connections(self, provider_id: str) -> List[Connection]:
        self._registry.get_factory(provider_id)
        rows = await self._select(UserConnection.provider_id == provider_id)
        return [self._to_connection(row) for row in rows]

    async def find_connections_to_users(
        self, provider_users: Mapping[str, Iterable[str]]
    ) -> Dict[str, List[Connection]]:
        result: Dict[str, List[Connection]] = {}
        for provider_id, provider_user_ids in provider_users.items():
            wanted = list(provider_user_ids)
            if not wanted:
                continue
            rows = await self._select(
                UserConnection.provider_id == provider_id,
                UserConnection.provider_user_id.in_(wanted),
            )
            by_account = {row.provider_user_id: row for row in rows}
            result[provider_id] = [
                self._to_connection(by_account[account]) for account in wanted if account in by_account
            ]
        return result

    async def get_connection(self, key: ConnectionKey) -> Connection:
        rows = await self._select(
            UserConnection.provider_id == key.provider_id,
            UserConnection.provider_user_id == key.provider_user_id,
        )
        if not rows:
            raise NoSuchConnectionError(key)
        return self._to_connection(rows[0])

    async def find_primary_connection(self, provider_id: str) -> Optional[Connection]:
        rows = await self._select(UserConnection.provider_id == provider_id)
        return self._to_connection(rows[0]) if rows else None

    # ── Writes ──────────────────────────────────────────────────────────

    async def add_connection(self, connection: Connection) -> None:
        data = connection.create_data()
        # Rank is computed inside the INSERT itself: no read-then-write window.
        next_rank = (
            select(func.coalesce(func.max(UserConnection.rank), 0) + 1)
            .where(
                UserConnection.user_id == self.user_id,
                UserConnection.provider_id == data.provider_id,
            )
            .scalar_subquery()
        )
        stmt = insert(UserConnection).values(
            connection_id=uuid.uuid4(),
            user_id=self.user_id,
            provider_id=data.provider_id,
            provider_user_id=data.provider_user_id,
            rank=next_rank,
            display_name=data.display_name,
            profile_url=data.profile_url,
            image_url=data.image_url,
            access_token=encrypt_token(data.access_token),
            secret=encrypt_token(data.secret),
            refresh_token=encrypt_token(data.refresh_token),
            expire_time=data.expire_time,
        )
        async with self._session_factory() as session:
            try:
                await session.execute(stmt)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                if await self._exists(connection.key):
                    logger.warning(
                        "Duplicate connection %s/%s for user %s",
                        data.provider_id,
                        data.provider_user_id,
                        self.user_id,
                    )
                    raise DuplicateConnectionError(connection.key) from None
                raise
        logger.info("Added %s connection %s for user %s", data.provider_id, data.provider_user_id, self.user_id)

    async def _exists(self, key: ConnectionKey) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count())
                .select_from(UserConnection)
                .where(
                    UserConnection.user_id == self.user_id,
                    UserConnection.provider_id == key.provider_id,
                    UserConnection.provider_user_id == key.provider_user_id,
                )
            )
            return result.scalar_one() > 0

    async def update_connection(self, connection: Connection) -> None:
        data = connection.create_data()
        async with self._session_factory() as session:
            result = await session.execute(
                update(UserConnection)
                .where(
                    UserConnection.user_id == self.user_id,
                    UserConnection.provider_id == data.provider_id,
                    UserConnection.provider_user_id == data.provider_user_id,
                )
                .values(
                    display_name=data.display_name,
                    profile_url=data.profile_url,
                    image_url=data.image_url,
                    access_token=encrypt_token(data.access_token),
                    secret=encrypt_token(data.secret),
                    refresh_token=encrypt_token(data.refresh_token),
                    expire_time=data.expire_time,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await session.commit()
            updated = result.rowcount
        if updated == 0:
            raise NoSuchConnectionError(connection.key)

    async def remove_connection(self, key: ConnectionKey) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(UserConnection).where(
                    UserConnection.user_id == self.user_id,
                    UserConnection.provider_id == key.provider_id,
                    UserConnection.provider_user_id == key.provider_user_id,
                )
            )
            await session.commit()
            removed = result.rowcount
        if removed:
            logger.info("Removed %s connection %s for user %s", key.provider_id, key.provider_user_id, self.user_id)

    async def remove_connections(self, provider_id: str) -> None:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(UserConnection).where(
                    UserConnection.user_id == self.user_id,
                    UserConnection.provider_id == provider_id,
                )
            )
            await session.commit()
            removed = result.rowcount
        if removed:
            logger.info("Removed %d %s connection(s) for user %s", removed, provider_id, self.user_id)


class SqlUsersConnectionRepository:
    """Queries across all users, e.g. "which local user owns this provider account?"."""

    def __init__(
        self,
        registry: ConnectionFactoryRegistry,
        session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    ):
        self._registry = registry
        self._session_factory = session_factory

    async def find_user_ids_with_connection(self, connection: Connection) -> List[str]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserConnection.user_id)
                .where(
                    UserConnection.provider_id == connection.provider_id,
                    UserConnection.provider_user_id == connection.provider_user_id,
                )
                .order_by(UserConnection.user_id)
            )
            return list(result.scalars().all())

    async def find_user_ids_connected_to(self, provider_id: str, provider_user_ids: Iterable[str]) -> Set[str]:
        wanted = list(provider_user_ids)
        if not wanted:
            return set()
        async with self._session_factory() as session:
            result = await session.execute(
                select(UserConnection.user_id).where(
                    UserConnection.provider_id == provider_id,
                    UserConnection.provider_user_id.in_(wanted),
                )
            )
            return set(result.scalars().all())

    def create_connection_repository(self, user_id: str) -> SqlConnectionRepository:
        if not user_id:
            raise ValueError("user_id cannot be empty")
        return SqlConnectionRepository(user_id, self._registry, self._session_factory)
