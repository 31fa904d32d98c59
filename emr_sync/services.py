"""Process-wide wiring of stores, codec, adapters, vault and orchestrator."""

from __future__ import annotations

import functools
from dataclasses import dataclass

import httpx

from emr_sync.adapters import EMRAdapter, build_adapters, build_token_cache
from emr_sync.config import Settings, get_settings
from emr_sync.config_data.loader import get_schema_capabilities
from emr_sync.models import Provider
from emr_sync.orchestrator import BookingOrchestrator
from emr_sync.secret_codec import SecretCodec
from emr_sync.store import (
    InMemoryAppointmentStore,
    InMemoryCredentialStore,
    InMemoryPatientStore,
    InMemoryPracticeConfigStore,
)
from emr_sync.token_cache import TokenCache
from emr_sync.vault import CredentialVault


@dataclass
class Services:
    settings: Settings
    token_cache: TokenCache
    adapters: dict[Provider, EMRAdapter]
    credentials: InMemoryCredentialStore
    patients: InMemoryPatientStore
    appointments: InMemoryAppointmentStore
    practices: InMemoryPracticeConfigStore
    vault: CredentialVault
    orchestrator: BookingOrchestrator


def build_services(
    settings: Settings, transport: httpx.AsyncBaseTransport | None = None
) -> Services:
    """Wire every collaborator. ``transport`` replaces the network in tests."""
    token_cache = build_token_cache(settings)
    adapters = build_adapters(settings, token_cache, transport=transport)
    credentials = InMemoryCredentialStore()
    patients = InMemoryPatientStore()
    appointments = InMemoryAppointmentStore()
    practices = InMemoryPracticeConfigStore()

    vault = CredentialVault(
        store=credentials,
        codec=SecretCodec.from_settings(settings),
        checkers=adapters,
        reachability_timeout=settings.reachability_timeout_seconds,
        transport=transport,
    )
    orchestrator = BookingOrchestrator(
        vault=vault,
        adapters=adapters,
        patients=patients,
        appointments=appointments,
        practices=practices,
        capabilities=get_schema_capabilities(),
    )
    return Services(
        settings=settings,
        token_cache=token_cache,
        adapters=adapters,
        credentials=credentials,
        patients=patients,
        appointments=appointments,
        practices=practices,
        vault=vault,
        orchestrator=orchestrator,
    )


@functools.lru_cache
def get_services() -> Services:
    """Cached process-wide services built from ``get_settings()``."""
    return build_services(get_settings())
