"""Process-lifetime cache for registry bearer tokens."""

import threading
from typing import Optional, Protocol

from .types import TokenCacheEntry

ANONYMOUS = "anonymous"


def cache_key(scope: str, presented_auth: Optional[str]) -> str:
    """Build the composite cache key for a scope and presented credential."""
    return f"{scope}:{presented_auth or ANONYMOUS}"


class TokenCache(Protocol):
    """Storage used by the token broker.

    Entries are replaced wholesale on refresh and never mutated in place;
    expiry is decided by the caller comparing ``expires_at`` to its clock.
    """

    def get(self, key: str) -> Optional[TokenCacheEntry]: ...

    def put(self, key: str, entry: TokenCacheEntry) -> None: ...


class InMemoryTokenCache:
    """Lock-guarded dict implementation of TokenCache."""

    def __init__(self):
        self._entries: dict[str, TokenCacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[TokenCacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, entry: TokenCacheEntry) -> None:
        with self._lock:
            self._entries[key] = entry

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
