"""
ConnectionFactoryRegistry — maps provider ids to connection factories.

Built once at startup and frozen; after that it is read-only and safe to
share between concurrent requests.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import httpx

from config.provider_list import ProviderCatalog, ProviderDefinition
from connectors.base import (
    ConnectionFactory,
    JsonProfileAdapter,
    OAuth1ConnectionFactory,
    OAuth2ConnectionFactory,
)
from connectors.errors import UnknownProviderError
from connectors.operations import OAuth1Version
from connectors.types import RESERVED_PROVIDER_IDS, AuthProtocol

logger = logging.getLogger(__name__)


class ConnectionFactoryRegistry:
    """Append-only registry of connection factories, in registration order."""

    def __init__(self, factories: Iterable[ConnectionFactory] = ()):
        self._factories: Dict[str, ConnectionFactory] = {}
        self._frozen = False
        for factory in factories:
            self.add_factory(factory)

    def add_factory(self, factory: ConnectionFactory) -> None:
        if self._frozen:
            raise RuntimeError("Registry is frozen; factories must be added at startup")
        if factory.provider_id in RESERVED_PROVIDER_IDS:
            raise ValueError(f"'{factory.provider_id}' is a reserved path and cannot be a provider id")
        if factory.provider_id in self._factories:
            raise ValueError(f"A connection factory for '{factory.provider_id}' is already registered")
        self._factories[factory.provider_id] = factory
        logger.info(
            "Connection factory registered: %s (%s, api_kind=%s)",
            factory.provider_id,
            factory.protocol.value,
            factory.api_kind,
        )

    def freeze(self) -> "ConnectionFactoryRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get_factory(self, provider_id: str) -> ConnectionFactory:
        try:
            return self._factories[provider_id]
        except KeyError:
            raise UnknownProviderError(provider_id) from None

    def get_factory_for_kind(self, api_kind: str) -> ConnectionFactory:
        """First factory producing the given API binding kind."""
        for factory in self._factories.values():
            if factory.api_kind == api_kind:
                return factory
        raise UnknownProviderError(api_kind)

    def registered_provider_ids(self) -> List[str]:
        return list(self._factories)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._factories

    def list_providers(self) -> List[Dict[str, str]]:
        """Return info about all registered providers for the UI."""
        return [
            {
                "provider": f.provider_id,
                "display_name": f.display_name,
                "protocol": f.protocol.value,
                "api_kind": f.api_kind,
            }
            for f in self._factories.values()
        ]


def factory_from_definition(
    definition: ProviderDefinition,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectionFactory:
    adapter = JsonProfileAdapter(
        definition.profile.path,
        fields=definition.profile.fields,
        profile_url_template=definition.profile.profile_url_template,
    )
    common = {
        "display_name": definition.display_name,
        "api_kind": definition.api_kind,
        "api_base_url": definition.api_base_url,
        "transport": transport,
    }
    if definition.protocol is AuthProtocol.OAUTH1:
        return OAuth1ConnectionFactory(
            definition.provider_id,
            definition.client_id,
            definition.client_secret,
            definition.request_token_url or "",
            definition.authorize_url,
            definition.access_token_url,
            adapter,
            version=OAuth1Version(definition.oauth1_version),
            **common,
        )
    return OAuth2ConnectionFactory(
        definition.provider_id,
        definition.client_id,
        definition.client_secret,
        definition.authorize_url,
        definition.access_token_url,
        adapter,
        default_scope=definition.default_scope,
        **common,
    )


def build_registry(
    catalog: ProviderCatalog,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ConnectionFactoryRegistry:
    """Register every configured provider in catalog order, then freeze."""
    registry = ConnectionFactoryRegistry()
    for definition in catalog.definitions():
        factory = factory_from_definition(definition, transport)
        if not factory.is_configured():
            logger.warning(
                "Provider %s skipped — not configured (missing client id/secret)",
                definition.provider_id,
            )
            continue
        registry.add_factory(factory)
    return registry.freeze()
