"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from emr_sync.config import Settings, get_settings
from emr_sync.secret_codec import SecretCodec
from emr_sync.token_cache import InMemoryTokenCache
from tests.helpers import FakeRemote

TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are cached per process; isolate every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, encryption_key=TEST_KEY_HEX)


@pytest.fixture
def codec() -> SecretCodec:
    return SecretCodec(bytes.fromhex(TEST_KEY_HEX))


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def token_cache(clock) -> InMemoryTokenCache:
    return InMemoryTokenCache(clock=clock)


@pytest.fixture
def remote() -> FakeRemote:
    """Fresh fake EMR; add routes per test."""
    return FakeRemote()
