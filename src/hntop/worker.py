"""Background sync: discover new stories, ingest them, refresh stale scores.

Each cycle runs its phases in order. A failure in one phase or tier is logged
and the cycle moves on; nothing raised by a cycle stops the loop.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from hntop.hackernews import item_to_story, item_to_update

if TYPE_CHECKING:
    from hntop.cache import StoryCache
    from hntop.config import StalenessTier, WorkerSettings
    from hntop.hackernews import HackerNewsClient
    from hntop.memory import Clock
    from hntop.models.story import Story, StoryUpdate
    from hntop.store import StoryStore

log = structlog.get_logger()

_HOUR_MS = 60 * 60 * 1000


@dataclass
class SyncStats:
    discovered: int = 0
    inserted: int = 0
    refreshed: dict[str, int] = field(default_factory=dict)
    patched: int = 0
    failures: list[str] = field(default_factory=list)


def _batches(ids: Sequence[int], size: int) -> list[Sequence[int]]:
    return [ids[start : start + size] for start in range(0, len(ids), size)]


class SyncWorker:
    def __init__(
        self,
        store: StoryStore,
        client: HackerNewsClient,
        cache: StoryCache,
        settings: WorkerSettings,
        clock: Clock,
    ) -> None:
        self._store = store
        self._client = client
        self._cache = cache
        self._settings = settings
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """Run cycles until ``stop_event`` is set. Cycles never overlap."""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await self.sync_once()
            except Exception:
                log.error("sync_cycle_error", exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._settings.interval_seconds)
            except TimeoutError:
                pass

    async def sync_once(self) -> SyncStats:
        stats = SyncStats()

        try:
            missing = await self.discover()
            stats.discovered = len(missing)
        except Exception:
            log.warning("sync_discover_failed", exc_info=True)
            stats.failures.append("discover")
            missing = []

        if missing:
            try:
                stats.inserted = await self.ingest(missing)
            except Exception:
                log.warning("sync_ingest_failed", exc_info=True)
                stats.failures.append("ingest")

        for tier in self._settings.tiers:
            try:
                updates = await self.refresh_tier(tier)
                stats.refreshed[tier.label] = len(updates)
                if updates:
                    stats.patched += await self._cache.patch(updates)
            except Exception:
                log.warning("sync_refresh_failed", tier=tier.label, exc_info=True)
                stats.failures.append(f"refresh:{tier.label}")

        log.info(
            "sync_cycle_done",
            discovered=stats.discovered,
            inserted=stats.inserted,
            refreshed=stats.refreshed,
            patched=stats.patched,
            failures=stats.failures,
        )
        return stats

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def discover(self) -> list[int]:
        """Ids upstream knows about that the store does not."""
        if self._settings.discover_mode == "exists":
            ids = await self._client.get_all_story_ids()
            return await self._store.missing_story_ids(ids)

        ids = await self._client.get_new_story_ids()
        watermark = await self._store.latest_story_id()
        if watermark is None:
            log.info("sync_bootstrap", count=len(ids))
            return ids
        return [story_id for story_id in ids if story_id > watermark]

    async def ingest(self, ids: Sequence[int]) -> int:
        """Fetch and store new stories batch by batch. Returns rows inserted.

        A failed batch is logged and skipped; its ids are still missing from the
        store and come back on the next discover.
        """
        inserted = 0
        failed_batches = 0
        for batch in _batches(ids, self._settings.fetch_batch_size):
            try:
                inserted += await self._ingest_batch(batch)
            except Exception:
                failed_batches += 1
                log.warning("sync_ingest_batch_failed", first_id=batch[0], exc_info=True)
        log.info(
            "sync_ingested", requested=len(ids), inserted=inserted, failed_batches=failed_batches
        )
        return inserted

    async def _ingest_batch(self, batch: Sequence[int]) -> int:
        items = await self._client.get_items(batch)
        now_ms = self._now_ms()
        stories: list[Story] = []
        for item in items:
            story = item_to_story(item, now_ms)
            if story is None:
                log.debug("sync_item_skipped", story_id=item.get("id"))
                continue
            stories.append(story)
        return await self._store.insert_stories(stories)

    async def refresh_tier(self, tier: StalenessTier) -> list[StoryUpdate]:
        """Refresh one staleness tier and return the updates written.

        Only stories that were actually fetched are written. A story whose fetch
        failed keeps its ``updated`` stamp and stays a candidate next cycle.
        """
        now_ms = self._now_ms()
        window_ms = None if tier.window_hours is None else int(tier.window_hours * _HOUR_MS)
        ids = await self._store.stale_story_ids(
            time_after_ms=None if window_ms is None else now_ms - window_ms,
            updated_before_ms=now_ms - int(tier.stale_hours * _HOUR_MS),
            limit=self._settings.batch_limit,
        )
        if not ids:
            return []

        updates: list[StoryUpdate] = []
        for batch in _batches(ids, self._settings.fetch_batch_size):
            items = await self._client.get_items(batch)
            for item in items:
                update = item_to_update(item)
                if update is not None:
                    updates.append(update)

        await self._store.update_stories(updates, self._now_ms())
        log.info("sync_tier_refreshed", tier=tier.label, candidates=len(ids), count=len(updates))
        return updates
