"""Registry mapping each provider to its adapter instance."""

from __future__ import annotations

from datetime import timedelta

import httpx

from emr_sync.adapters.base import EMRAdapter
from emr_sync.adapters.mindbody import MindbodyAdapter
from emr_sync.adapters.modmed import ModMedAdapter
from emr_sync.adapters.nextech import NextechAdapter
from emr_sync.config import Settings
from emr_sync.models import Provider
from emr_sync.token_cache import InMemoryTokenCache, TokenCache

ADAPTER_CLASSES: dict[Provider, type[EMRAdapter]] = {
    Provider.MINDBODY: MindbodyAdapter,
    Provider.NEXTECH: NextechAdapter,
    Provider.MODMED: ModMedAdapter,
}


def build_token_cache(settings: Settings) -> InMemoryTokenCache:
    return InMemoryTokenCache(
        safety_margin=timedelta(seconds=settings.token_safety_margin_seconds)
    )


def build_adapters(
    settings: Settings,
    token_cache: TokenCache,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[Provider, EMRAdapter]:
    """Instantiate every registered adapter sharing one token cache."""
    common = {
        "token_cache": token_cache,
        "timeout": settings.emr_http_timeout_seconds,
        "default_token_ttl": settings.default_token_ttl_seconds,
        "transport": transport,
    }
    adapters: dict[Provider, EMRAdapter] = {}
    for provider, adapter_cls in ADAPTER_CLASSES.items():
        if adapter_cls is MindbodyAdapter:
            adapters[provider] = MindbodyAdapter(
                default_base_url=settings.mindbody_base_url,
                default_site_id=settings.mindbody_default_site_id,
                **common,
            )
        else:
            adapters[provider] = adapter_cls(**common)
    return adapters
