"""In-process cache of resolved permission overrides.

One entry per (tenant, user), keyed `{tenant_id}:{user_id}`, holding the
user's `{Permission: granted}` map. Each worker process keeps its own
cache; a revoke made through another process becomes visible here within
one TTL at most.

Rules:
  - TTL is fixed and applied at write time as an absolute expiry instant
    (monotonic clock), never sliding.
  - Every read checks expiry. An expired entry is never returned, however
    late it is evicted.
  - Writers replace or delete a whole entry; entries are never patched.
  - Any invalidation bumps `version`. A loader that started before the bump
    must not write its (possibly stale) result back, see `set()`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.auth.permissions import Permission

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes


@dataclass(frozen=True)
class CacheEntry:
    data: Mapping[Permission, bool]
    expiry: float


def cache_key(tenant_id: str, user_id: str) -> str:
    return f"{tenant_id}:{user_id}"


class OverrideCache:
    """Time-bounded map of `tenant:user` → override map.

    Not locked: under asyncio the dict operations below never interleave,
    and two cold readers racing on one key both store the same data.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._version = 0

    @property
    def version(self) -> int:
        """Counter bumped by every invalidation and clear."""
        return self._version

    def get(self, tenant_id: str, user_id: str) -> Mapping[Permission, bool] | None:
        """Return the live override map, or None on miss, expiry or corruption."""
        key = cache_key(tenant_id, user_id)
        entry = self._entries.get(key)

        if entry is None:
            logger.debug(f"Cache MISS: {key}")
            return None

        if not isinstance(entry, CacheEntry) or not isinstance(entry.data, Mapping):
            logger.warning(f"Discarding corrupt cache entry: {key}")
            self._entries.pop(key, None)
            return None

        if entry.expiry <= self._clock():
            logger.debug(f"Cache EXPIRED: {key}")
            if self._entries.get(key) is entry:
                del self._entries[key]
            return None

        logger.debug(f"Cache HIT: {key}")
        return entry.data

    def set(
        self,
        tenant_id: str,
        user_id: str,
        data: Mapping[Permission, bool],
        version: int | None = None,
    ) -> Mapping[Permission, bool]:
        """Store `data` with a fresh expiry and return the read-only copy.

        If `version` is given and an invalidation happened since it was
        read, the entry is not stored (the data may predate the write that
        caused the invalidation). The copy is still returned to the caller.
        """
        frozen = MappingProxyType(dict(data))
        key = cache_key(tenant_id, user_id)

        if version is not None and version != self._version:
            logger.debug(f"Cache SET skipped (invalidated during load): {key}")
            return frozen

        self._entries[key] = CacheEntry(data=frozen, expiry=self._clock() + self.ttl)
        logger.debug(f"Cache SET: {key} (TTL: {self.ttl}s)")
        return frozen

    def invalidate(self, tenant_id: str, user_id: str) -> None:
        """Drop the entry for one user. Called after every override write."""
        key = cache_key(tenant_id, user_id)
        self._version += 1
        self._entries.pop(key, None)
        logger.debug(f"Cache DEL: {key}")

    def clear(self) -> None:
        """Drop every entry (admin / test use)."""
        self._version += 1
        self._entries.clear()
        logger.info("Cleared permission override cache")

    def __len__(self) -> int:
        return len(self._entries)
