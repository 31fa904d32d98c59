"""Tests for the adapter registry and shared adapter helpers."""

from __future__ import annotations

from datetime import timedelta

import pytest

from emr_sync.adapters import (
    EMRAdapter,
    MindbodyAdapter,
    ModMedAdapter,
    NextechAdapter,
    build_adapters,
    build_token_cache,
    pick_appointment_type,
)
from emr_sync.config import Settings
from emr_sync.config_data import get_provider_table
from emr_sync.models import Provider

pytestmark = pytest.mark.unit


def _name(entry):
    return entry.get("name", "")


class TestPickAppointmentType:
    def test_mixed_case_consult_wins_over_earlier_entry(self):
        types = [{"id": 1, "name": "Follow-up"}, {"id": 2, "name": "Consult Visit"}]
        assert pick_appointment_type(types, _name)["id"] == 2

    def test_earliest_consult_wins(self):
        types = [
            {"id": 1, "name": "Laser"},
            {"id": 2, "name": "Virtual consultation"},
            {"id": 3, "name": "Consult"},
        ]
        assert pick_appointment_type(types, _name)["id"] == 2

    def test_no_match_returns_first(self):
        types = [{"id": 1, "name": "Laser"}, {"id": 2, "name": "Peel"}]
        assert pick_appointment_type(types, _name)["id"] == 1

    def test_empty(self):
        assert pick_appointment_type([], _name) is None

    def test_missing_name_is_tolerated(self):
        types = [{"id": 1}, {"id": 2, "name": "CONSULT"}]
        assert pick_appointment_type(types, _name)["id"] == 2


class TestBuildAdapters:
    def test_one_adapter_per_bookable_provider(self, settings, token_cache):
        adapters = build_adapters(settings, token_cache)

        assert isinstance(adapters[Provider.MINDBODY], MindbodyAdapter)
        assert isinstance(adapters[Provider.NEXTECH], NextechAdapter)
        assert isinstance(adapters[Provider.MODMED], ModMedAdapter)
        assert Provider.PATIENTNOW not in adapters

    def test_matches_provider_table(self, settings, token_cache):
        adapters = build_adapters(settings, token_cache)
        table = get_provider_table()
        for provider, rules in table.providers.items():
            assert (provider in adapters) is rules.has_adapter

    def test_settings_flow_into_adapters(self, token_cache):
        s = Settings(
            _env_file=None,
            emr_http_timeout_seconds=3.0,
            mindbody_base_url="https://sandbox.mb.test",
            mindbody_default_site_id="42",
        )
        adapters = build_adapters(s, token_cache)

        mindbody = adapters[Provider.MINDBODY]
        assert mindbody.timeout == 3.0
        assert mindbody.base_url({}) == "https://sandbox.mb.test"
        assert mindbody.token_key({"username": "u"}) == ("https://sandbox.mb.test", "42:u")

    def test_adapters_share_the_token_cache(self, settings, token_cache):
        adapters = build_adapters(settings, token_cache)
        assert all(a.token_cache is token_cache for a in adapters.values())
        assert all(isinstance(a, EMRAdapter) for a in adapters.values())

    def test_token_cache_margin_from_settings(self, clock):
        cache = build_token_cache(Settings(_env_file=None, token_safety_margin_seconds=60))
        cache._clock = clock
        cache.put(("u", "k"), "tok", clock() + timedelta(minutes=2))
        assert cache.get(("u", "k")) == "tok"
