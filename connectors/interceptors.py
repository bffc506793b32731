"""
Connect interceptors — hooks around connection establishment.

Interceptors declare the API binding kind they care about via ``api_kind``;
the registry files them under that tag when they are added, and dispatch
is a plain dictionary lookup against the factory's ``api_kind``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar, Dict, Iterable, List

from connectors.base import ConnectionFactory
from connectors.connection import Connection
from connectors.types import Parameters

if TYPE_CHECKING:
    from connectors.controller import ConnectRequest

logger = logging.getLogger(__name__)


class ConnectInterceptor:
    """Observer of the connect flow for one API binding kind."""

    api_kind: ClassVar[str] = ""

    async def pre_connect(
        self,
        factory: ConnectionFactory,
        parameters: Parameters,
        request: "ConnectRequest",
    ) -> None:
        """Called before the user is sent to the provider; may add authorization parameters."""

    async def post_connect(self, connection: Connection, request: "ConnectRequest") -> None:
        """Called after a new connection has been stored."""


class InterceptorRegistry:
    def __init__(self, interceptors: Iterable[ConnectInterceptor] = ()):
        self._by_kind: Dict[str, List[ConnectInterceptor]] = {}
        for interceptor in interceptors:
            self.add(interceptor)

    def add(self, interceptor: ConnectInterceptor, api_kind: str | None = None) -> None:
        kind = api_kind or interceptor.api_kind
        if not kind:
            raise ValueError(f"{type(interceptor).__name__} does not declare an api_kind")
        self._by_kind.setdefault(kind, []).append(interceptor)
        logger.debug("Connect interceptor %s registered for %s", type(interceptor).__name__, kind)

    def for_factory(self, factory: ConnectionFactory) -> List[ConnectInterceptor]:
        """Interceptors matching the factory's API kind, in registration order."""
        return list(self._by_kind.get(factory.api_kind, ()))

    def __len__(self) -> int:
        return sum(len(v) for v in self._by_kind.values())
