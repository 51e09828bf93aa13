"""In-process caches.

``QueryCache`` is the L1 story cache. Entries are keyed by query shape and
expire after the TTL of the key's timespan, so Day and All results share one
bounded LRU map while ageing at different rates. ``HiddenCache`` holds each
user's hidden ids for a short, uniform TTL.

Both take the process clock so tests can move time forward.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from typing import TYPE_CHECKING, NamedTuple

from cachetools import TLRUCache, TTLCache

if TYPE_CHECKING:
    from hntop.config import TimespanTtls
    from hntop.models.story import Story, Timespan

Clock = Callable[[], float]


class QueryKey(NamedTuple):
    timespan: Timespan
    limit: int
    skip: int
    hidden: str  # sorted, comma-joined hidden ids

    @classmethod
    def build(
        cls, timespan: Timespan, limit: int, skip: int, hidden_ids: Iterable[int] = ()
    ) -> QueryKey:
        signature = ",".join(str(i) for i in sorted(set(hidden_ids)))
        return cls(timespan, limit, skip, signature)


class QueryCache:
    """L1: query-shape keyed story lists with per-timespan TTL."""

    def __init__(self, ttls: TimespanTtls, clock: Clock, max_entries: int = 1024) -> None:
        self._ttls = ttls
        self._entries: TLRUCache[QueryKey, tuple[Story, ...]] = TLRUCache(
            maxsize=max_entries, ttu=self._expires_at, timer=clock
        )

    def _expires_at(self, key: QueryKey, value: tuple[Story, ...], now: float) -> float:
        return now + self._ttls.for_timespan(key.timespan)

    def get(self, key: QueryKey) -> tuple[Story, ...] | None:
        return self._entries.get(key)

    def put(self, key: QueryKey, stories: Sequence[Story]) -> None:
        self._entries[key] = tuple(stories)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class HiddenCache:
    """Per-user hidden ids with a short TTL and explicit invalidation."""

    def __init__(self, ttl_seconds: float, clock: Clock, max_entries: int = 4096) -> None:
        self._entries: TTLCache[str, tuple[int, ...]] = TTLCache(
            maxsize=max_entries, ttl=ttl_seconds, timer=clock
        )

    def get(self, username: str) -> tuple[int, ...] | None:
        return self._entries.get(username)

    def put(self, username: str, ids: Sequence[int]) -> None:
        self._entries[username] = tuple(ids)

    def invalidate(self, username: str) -> None:
        self._entries.pop(username, None)

    def clear(self) -> None:
        self._entries.clear()
