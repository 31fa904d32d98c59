"""Config package — YAML-based provider rules and schema capabilities."""

from emr_sync.config_data.loader import (
    ProviderRules,
    SchemaCapabilities,
    get_provider_table,
    get_schema_capabilities,
)

__all__ = [
    "ProviderRules",
    "SchemaCapabilities",
    "get_provider_table",
    "get_schema_capabilities",
]
