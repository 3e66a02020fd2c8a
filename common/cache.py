"""TTL cache helpers for unit occupancy lookups."""
from __future__ import annotations

from typing import Generic, Optional, TypeVar

from cachetools import TTLCache

from .config import get_settings

T = TypeVar("T")


class SimpleTTLCache(Generic[T]):
    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._cache: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._cache.get(key)

    def set(self, key: str, value: T) -> None:
        self._cache[key] = value

    def pop(self, key: str) -> None:
        self._cache.pop(key, None)

    def clear(self) -> None:
        self._cache.clear()


unit_status_cache: SimpleTTLCache[dict] = SimpleTTLCache(ttl=get_settings().unit_cache_ttl, maxsize=1024)


def unit_status_key(unit_id: int) -> str:
    return f"unit-status:{unit_id}"


def invalidate_unit_status(*unit_ids: Optional[int]) -> None:
    """Drop cached occupancy for every unit touched by a booking write."""
    for unit_id in unit_ids:
        if unit_id is not None:
            unit_status_cache.pop(unit_status_key(unit_id))
