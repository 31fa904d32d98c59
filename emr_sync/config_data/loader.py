"""YAML config loader — provider rules and schema capabilities, loaded once."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from emr_sync.models import Provider

_CONFIG_DIR = Path(__file__).parent


# -- Pydantic models ----------------------------------------------------------


class ProviderRules(BaseModel):
    """Validated credential rules for one provider."""

    required_fields: list[str]
    fingerprint_fields: list[str]
    booking_default_keys: dict[str, str] = Field(default_factory=dict)
    has_adapter: bool = False


class ProviderTable(BaseModel):
    """All provider rules keyed by provider tag."""

    providers: dict[Provider, ProviderRules]

    def rules_for(self, provider: Provider) -> ProviderRules:
        try:
            return self.providers[provider]
        except KeyError:
            raise KeyError(f"No credential rules configured for {provider.value}") from None


class SchemaCapabilities(BaseModel):
    """Which storage fields exist, pinned to a schema version."""

    version: int
    patient_link_fields: dict[Provider, str] = Field(default_factory=dict)
    appointment_fields: list[str] = Field(default_factory=list)

    def link_field(self, provider: Provider) -> str | None:
        return self.patient_link_fields.get(provider)

    def supports_appointment_field(self, name: str) -> bool:
        return name in self.appointment_fields


# -- loaders ------------------------------------------------------------------


def _load_yaml(filename: str) -> dict[str, Any]:
    """Read and parse a YAML file from the config directory."""
    path = _CONFIG_DIR / filename
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        raise ValueError(f"Config file is empty: {path}")
    return data


@lru_cache(maxsize=1)
def get_provider_table() -> ProviderTable:
    """Load and validate providers.yaml. Result is cached as a singleton."""
    data = _load_yaml("providers.yaml")
    return ProviderTable(providers=data)


@lru_cache(maxsize=1)
def get_schema_capabilities() -> SchemaCapabilities:
    """Load and validate schema_capabilities.yaml. Cached singleton."""
    data = _load_yaml("schema_capabilities.yaml")
    return SchemaCapabilities(**data)
