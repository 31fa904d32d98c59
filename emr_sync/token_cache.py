"""Process-lifetime cache for short-lived EMR access tokens."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol

from emr_sync.models import CachedToken

logger = logging.getLogger(__name__)

# (base_url, client identity)
TokenKey = tuple[str, str]

DEFAULT_SAFETY_MARGIN = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCache(Protocol):
    def get(self, key: TokenKey) -> str | None: ...

    def put(self, key: TokenKey, token: str, expires_at: datetime) -> None: ...

    def invalidate(self, key: TokenKey) -> None: ...


class InMemoryTokenCache:
    """Dict-backed token cache.

    A token is only handed out while ``expires_at`` is more than
    ``safety_margin`` away. Concurrent population for the same key is allowed
    to race; the last ``put`` wins.
    """

    def __init__(
        self,
        safety_margin: timedelta = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._entries: dict[TokenKey, CachedToken] = {}
        self._safety_margin = safety_margin
        self._clock = clock

    def get(self, key: TokenKey) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock() + self._safety_margin:
            logger.debug("Cached token for %s is inside the safety margin", key[0])
            self._entries.pop(key, None)
            return None
        return entry.token

    def put(self, key: TokenKey, token: str, expires_at: datetime) -> None:
        self._entries[key] = CachedToken(token=token, expires_at=expires_at)

    def invalidate(self, key: TokenKey) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)
