"""
Tests for the connection factory registry and the provider catalog.
"""

import pytest

from config.provider_list import ProviderCatalog
from connectors.base import OAuth1ConnectionFactory, OAuth2ConnectionFactory
from connectors.errors import UnknownProviderError
from connectors.registry import ConnectionFactoryRegistry, build_registry
from conftest import acme_factory, birdsite_factory


class TestConnectionFactoryRegistry:
    def test_lookup_by_provider_id(self, transport):
        acme = acme_factory(transport)
        registry = ConnectionFactoryRegistry([acme])
        assert registry.get_factory("acme") is acme
        assert "acme" in registry
        assert "nope" not in registry

    def test_unknown_provider(self, registry):
        with pytest.raises(UnknownProviderError) as excinfo:
            registry.get_factory("myspace")
        assert excinfo.value.provider_id == "myspace"

    def test_duplicate_provider_id_rejected(self, transport):
        registry = ConnectionFactoryRegistry([acme_factory(transport)])
        with pytest.raises(ValueError):
            registry.add_factory(acme_factory(transport))

    def test_frozen_registry_rejects_additions(self, transport):
        registry = ConnectionFactoryRegistry([acme_factory(transport)]).freeze()
        assert registry.frozen
        with pytest.raises(RuntimeError):
            registry.add_factory(birdsite_factory(transport))

    def test_reserved_provider_id_rejected(self, transport):
        factory = acme_factory(transport)
        factory.provider_id = "providers"
        with pytest.raises(ValueError):
            ConnectionFactoryRegistry([factory])

    def test_registration_order_is_kept(self, transport):
        registry = ConnectionFactoryRegistry([birdsite_factory(transport), acme_factory(transport)])
        assert registry.registered_provider_ids() == ["birdsite", "acme"]

    def test_lookup_by_api_kind(self, registry):
        assert registry.get_factory_for_kind("microblog").provider_id == "birdsite"
        # api_kind defaults to the provider id
        assert registry.get_factory_for_kind("acme").provider_id == "acme"
        with pytest.raises(UnknownProviderError):
            registry.get_factory_for_kind("photos")

    def test_list_providers(self, registry):
        assert registry.list_providers() == [
            {"provider": "acme", "display_name": "Acme", "protocol": "oauth2", "api_kind": "acme"},
            {"provider": "birdsite", "display_name": "Birdsite", "protocol": "oauth1", "api_kind": "microblog"},
        ]


class TestProviderCatalog:
    def _catalog(self):
        return ProviderCatalog.from_dict(
            {
                "acme": {
                    "protocol": "oauth2",
                    "client_id": "${ACME_ID}",
                    "client_secret": "${ACME_SECRET}",
                    "authorize_url": "https://acme.test/authorize",
                    "access_token_url": "https://acme.test/token",
                    "api_base_url": "https://api.acme.test",
                    "profile": {"path": "/me"},
                },
                "birdsite": {
                    "protocol": "oauth1",
                    "oauth1_version": "1.0",
                    "client_id": "bird-key",
                    "client_secret": "bird-secret",
                    "request_token_url": "https://birdsite.test/request_token",
                    "authorize_url": "https://birdsite.test/authorize",
                    "access_token_url": "https://birdsite.test/access_token",
                    "profile": {"path": "/account", "fields": {"id": "id_str"}},
                },
            }
        )

    def test_env_references_are_expanded(self, monkeypatch):
        monkeypatch.setenv("ACME_ID", "from-env")
        monkeypatch.setenv("ACME_SECRET", "s3cret")
        definition = self._catalog().get_definition("acme")
        assert definition.client_id == "from-env"
        assert definition.client_secret == "s3cret"

    def test_unconfigured_provider_is_skipped(self, monkeypatch):
        monkeypatch.delenv("ACME_ID", raising=False)
        monkeypatch.delenv("ACME_SECRET", raising=False)
        registry = build_registry(self._catalog())
        assert registry.registered_provider_ids() == ["birdsite"]
        assert registry.frozen

    def test_factories_match_protocol(self, monkeypatch):
        monkeypatch.setenv("ACME_ID", "id")
        monkeypatch.setenv("ACME_SECRET", "secret")
        registry = build_registry(self._catalog())
        assert isinstance(registry.get_factory("acme"), OAuth2ConnectionFactory)
        bird = registry.get_factory("birdsite")
        assert isinstance(bird, OAuth1ConnectionFactory)
        assert bird.operations.version.value == "1.0"

    def test_oauth1_requires_request_token_url(self):
        catalog = ProviderCatalog.from_dict(
            {
                "broken": {
                    "protocol": "oauth1",
                    "authorize_url": "https://x.test/a",
                    "access_token_url": "https://x.test/t",
                    "profile": {"path": "/me"},
                }
            }
        )
        with pytest.raises(ValueError):
            catalog.definitions()

    def test_reserved_provider_id_in_catalog(self):
        catalog = ProviderCatalog.from_dict(
            {
                "providers": {
                    "protocol": "oauth2",
                    "authorize_url": "https://x.test/a",
                    "access_token_url": "https://x.test/t",
                    "profile": {"path": "/me"},
                }
            }
        )
        with pytest.raises(ValueError):
            catalog.definitions()

    def test_bundled_catalog_loads(self):
        catalog = ProviderCatalog()
        assert {"github", "twitter"} <= set(catalog.list_provider_ids())
