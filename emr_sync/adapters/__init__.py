"""EMR provider adapters."""

from emr_sync.adapters.base import EMRAdapter, pick_appointment_type
from emr_sync.adapters.mindbody import MindbodyAdapter
from emr_sync.adapters.modmed import ModMedAdapter
from emr_sync.adapters.nextech import NextechAdapter
from emr_sync.adapters.registry import ADAPTER_CLASSES, build_adapters, build_token_cache

__all__ = [
    "ADAPTER_CLASSES",
    "EMRAdapter",
    "MindbodyAdapter",
    "ModMedAdapter",
    "NextechAdapter",
    "build_adapters",
    "build_token_cache",
    "pick_appointment_type",
]
