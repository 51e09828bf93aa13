"""Story list resolution: L1 -> L2 -> store, with a Day-bucket freshness merge.

Long windows keep their results for days. Merging in the Day bucket, which is
recomputed every few minutes, keeps their top entries and scores current
without re-querying the whole window.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from hntop.cache import by_score
from hntop.memory import QueryKey
from hntop.models.story import Story, StoryUpdate, Timespan

if TYPE_CHECKING:
    from hntop.cache import StoryCache
    from hntop.memory import Clock
    from hntop.models.query import HideStoryInput, StoryListQuery
    from hntop.store import StoryStore

log = structlog.get_logger()


def merge_fresher(base: Sequence[Story], fresh: Sequence[Story], cap: int) -> list[Story]:
    """Overlay ``fresh`` onto ``base`` by id, re-rank and cap."""
    merged = {story.id: story for story in base}
    for story in fresh:
        merged[story.id] = story
    return by_score(merged.values())[:cap]


def normalize_skip(skip: object) -> int:
    if isinstance(skip, int) and not isinstance(skip, bool) and skip > 0:
        return skip
    return 0


class StoryService:
    """Entry points the routing layer calls."""

    def __init__(
        self,
        store: StoryStore,
        cache: StoryCache,
        clock: Clock,
        max_query_docs: int = 500,
        max_limit: int = 500,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock
        self._max_query_docs = max_query_docs
        self._max_limit = max_limit
        self._hidden_inflight: dict[str, asyncio.Task[list[int]]] = {}
        self._hidden_generation: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Story lists
    # ------------------------------------------------------------------

    async def list_stories(self, query: StoryListQuery) -> list[Story]:
        """Serve a validated list request, clamping its limit to ``max_limit``."""
        query = query.clamp(self._max_limit)
        limit = query.limit or self._max_limit
        return await self.get_stories(query.timespan, limit, query.skip, query.hidden)

    async def get_stories(
        self,
        timespan: Timespan | str,
        limit: int,
        skip: int | None = 0,
        hidden_ids: Sequence[int] = (),
    ) -> list[Story]:
        """Top stories for a timespan, minus hidden ids, paginated.

        ``limit`` is taken as given; the caller clamps it.
        """
        timespan = Timespan.parse(timespan)
        skip = normalize_skip(skip)
        hidden = frozenset(hidden_ids)

        stories = await self._resolve(timespan, limit, skip, hidden)
        if timespan is not Timespan.DAY:
            day = await self._resolve(Timespan.DAY, limit, skip, hidden)
            stories = merge_fresher(stories, day, self._max_query_docs)

        if hidden:
            stories = [story for story in stories if story.id not in hidden]
        page = list(stories[skip : skip + limit])
        log.debug("stories_served", timespan=timespan.value, skip=skip, count=len(page))
        return page

    async def _resolve(
        self, timespan: Timespan, limit: int, skip: int, hidden: frozenset[int]
    ) -> Sequence[Story]:
        key = QueryKey.build(timespan, limit, skip, hidden)
        cached = self._cache.memory.get(key)
        if cached is not None:
            log.debug("stories_resolved", timespan=timespan.value, source="l1", count=len(cached))
            return cached

        snapshot = await self._cache.snapshots.load_snapshot(timespan)
        if snapshot is not None:
            self._cache.memory.put(key, snapshot)
            log.debug("stories_resolved", timespan=timespan.value, source="l2", count=len(snapshot))
            return snapshot

        stories = await self._query_store(timespan)
        self._cache.memory.put(key, stories)
        self._cache.save_snapshot_nowait(timespan, stories)
        log.info("stories_resolved", timespan=timespan.value, source="store", count=len(stories))
        return stories

    async def _query_store(self, timespan: Timespan) -> list[Story]:
        window_ms = timespan.window_ms
        if window_ms is None:
            return await self._store.top_stories(self._max_query_docs)
        since_ms = int(self._clock() * 1000) - window_ms
        stories = await self._store.stories_since(since_ms)
        return by_score(stories)[: self._max_query_docs]

    async def clear_cache(self) -> None:
        """Forget every cached story list (L1 and all snapshots)."""
        await self._cache.clear()

    async def patch_story_cache(self, updates: Sequence[StoryUpdate]) -> int:
        """Push fresh scores into any live snapshot. Returns snapshots rewritten."""
        return await self._cache.patch(updates)

    # ------------------------------------------------------------------
    # Hidden stories
    # ------------------------------------------------------------------

    async def get_hidden(self, username: str) -> list[int]:
        """Hidden story ids for a user, in the order they were hidden.

        Concurrent misses for the same user share one store read.
        """
        cached = self._cache.hidden.get(username)
        if cached is not None:
            return list(cached)

        task = self._hidden_inflight.get(username)
        if task is None:
            generation = self._hidden_generation.get(username, 0)
            task = asyncio.ensure_future(self._fetch_hidden(username, generation))
            self._hidden_inflight[username] = task
            task.add_done_callback(lambda done: self._forget_inflight(username, done))
        return list(await asyncio.shield(task))

    async def _fetch_hidden(self, username: str, generation: int) -> list[int]:
        ids = await self._store.list_hidden(username)
        # An upsert while this read was running makes its result stale.
        if self._hidden_generation.get(username, 0) == generation:
            self._cache.hidden.put(username, ids)
        return ids

    def _forget_inflight(self, username: str, task: asyncio.Task[list[int]]) -> None:
        if self._hidden_inflight.get(username) is task:
            del self._hidden_inflight[username]

    async def upsert_hidden(self, username: str, story_id: int) -> None:
        """Hide a story for a user. Idempotent; the next read sees it."""
        await self._store.add_hidden(username, story_id)
        self._hidden_generation[username] = self._hidden_generation.get(username, 0) + 1
        self._cache.hidden.invalidate(username)
        self._hidden_inflight.pop(username, None)
        log.info("story_hidden", username=username, story_id=story_id)

    async def hide_story(self, data: HideStoryInput) -> None:
        await self.upsert_hidden(data.username, data.story_id)

    async def upsert_user(self, username: str) -> None:
        await self._store.upsert_user(username)
