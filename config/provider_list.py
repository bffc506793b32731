"""
ProviderCatalog — loads config/providers.yaml and exposes validated
provider definitions to the connection factory registry.
"""

import os
import pathlib
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from connectors.types import RESERVED_PROVIDER_IDS, AuthProtocol


def _expand(value: Any) -> Any:
    """Expand ``${VAR}``; a reference to an unset variable becomes empty."""
    if not isinstance(value, str):
        return value
    expanded = os.path.expandvars(value)
    return "" if "${" in expanded else expanded


class ProfileMapping(BaseModel):
    path: str
    fields: Dict[str, str] = Field(default_factory=dict)
    profile_url_template: Optional[str] = None


class ProviderDefinition(BaseModel):
    provider_id: str
    protocol: AuthProtocol
    display_name: Optional[str] = None
    api_kind: Optional[str] = None
    client_id: str = ""
    client_secret: str = ""
    authorize_url: str
    access_token_url: str
    request_token_url: Optional[str] = None
    oauth1_version: str = "1.0a"
    default_scope: Optional[str] = None
    api_base_url: str = ""
    profile: ProfileMapping

    @field_validator("provider_id")
    @classmethod
    def _not_reserved(cls, value: str) -> str:
        if value in RESERVED_PROVIDER_IDS:
            raise ValueError(f"'{value}' is a reserved path and cannot be a provider id")
        return value

    @model_validator(mode="after")
    def _check_protocol_fields(self) -> "ProviderDefinition":
        if self.protocol is AuthProtocol.OAUTH1 and not self.request_token_url:
            raise ValueError(f"OAuth1 provider '{self.provider_id}' needs a request_token_url")
        return self


class ProviderCatalog:
    def __init__(self, catalog_path: str | None = None):
        if not catalog_path:
            catalog_path = str(pathlib.Path(__file__).parent / "providers.yaml")
        with open(catalog_path, "r", encoding="utf-8") as fh:
            raw: Dict[str, Any] = yaml.safe_load(fh) or {}
        self.catalog: Dict[str, Any] = raw.get("providers") or {}

    @classmethod
    def from_dict(cls, providers: Dict[str, Any]) -> "ProviderCatalog":
        catalog = cls.__new__(cls)
        catalog.catalog = providers
        return catalog

    def definitions(self) -> List[ProviderDefinition]:
        """Definitions in file order, with ``${ENV}`` references expanded."""
        result: list[ProviderDefinition] = []
        for provider_id, info in self.catalog.items():
            expanded = {key: _expand(value) for key, value in info.items()}
            result.append(ProviderDefinition(provider_id=provider_id, **expanded))
        return result

    def get_definition(self, provider_id: str) -> ProviderDefinition:
        for definition in self.definitions():
            if definition.provider_id == provider_id:
                return definition
        raise ValueError(f"Unknown provider: {provider_id}")

    def list_provider_ids(self) -> List[str]:
        return list(self.catalog.keys())
