"""Story caches: durable snapshots (L2) and the cache service around them.

All snapshot operations catch ``aiosqlite.Error`` internally and degrade
gracefully: read failures return ``None`` (treated as a miss by callers),
write failures are logged and ignored. The store stays authoritative, so a
lost snapshot only costs a recomputation. Errors are logged with
``exc_info=True`` so they remain observable.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import aiosqlite
import structlog
from pydantic import ValidationError

from hntop.models.cache import STORY_LIST, SnapshotDoc
from hntop.models.story import Timespan

if TYPE_CHECKING:
    from hntop.config import TimespanTtls
    from hntop.memory import Clock, HiddenCache, QueryCache
    from hntop.models.story import Story, StoryUpdate

log = structlog.get_logger()

_CREATE_SNAPSHOT_TABLE = """
CREATE TABLE IF NOT EXISTS snapshots (
    timespan  TEXT PRIMARY KEY,
    stories   TEXT NOT NULL,
    cached_at INTEGER NOT NULL
)
"""


def by_score(stories: Iterable[Story]) -> list[Story]:
    """Stories sorted by score, highest first."""
    return sorted(stories, key=lambda s: s.score, reverse=True)


class SnapshotCache:
    """SQLite-backed per-timespan snapshot documents."""

    def __init__(self, db: aiosqlite.Connection, ttls: TimespanTtls, clock: Clock) -> None:
        self._db = db
        self._ttls = ttls
        self._clock = clock

    async def init_db(self) -> None:
        """Create the snapshot table. Called once at startup."""
        await self._db.execute(_CREATE_SNAPSHOT_TABLE)
        await self._db.commit()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def read(self, timespan: Timespan) -> SnapshotDoc | None:
        """Read a snapshot regardless of age. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT stories, cached_at FROM snapshots WHERE timespan = ?",
                (timespan.value,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("snapshot_read_error", timespan=timespan.value, exc_info=True)
            return None
        if row is None:
            return None
        try:
            stories = STORY_LIST.validate_json(row[0])
        except ValidationError:
            log.warning("snapshot_decode_error", timespan=timespan.value, exc_info=True)
            return None
        return SnapshotDoc(timespan=timespan, stories=stories, cached_at=row[1])

    async def load_snapshot(self, timespan: Timespan) -> list[Story] | None:
        """Stories of a snapshot still within its timespan's TTL, else ``None``."""
        doc = await self.read(timespan)
        if doc is None:
            return None
        age_ms = self._now_ms() - doc.cached_at
        if age_ms > self._ttls.for_timespan(timespan) * 1000:
            log.debug("snapshot_expired", timespan=timespan.value, age_ms=age_ms)
            return None
        return doc.stories

    async def save_snapshot(
        self, timespan: Timespan, stories: Sequence[Story], cached_at: int | None = None
    ) -> None:
        """Write a snapshot. Non-fatal on failure."""
        doc = SnapshotDoc(
            timespan=timespan,
            stories=list(stories),
            cached_at=self._now_ms() if cached_at is None else cached_at,
        )
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO snapshots (timespan, stories, cached_at) VALUES (?, ?, ?)",
                (timespan.value, doc.stories_json(), doc.cached_at),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("snapshot_write_error", timespan=timespan.value, exc_info=True)

    async def clear_all(self) -> None:
        """Delete every snapshot in one statement. Non-fatal on failure."""
        try:
            cursor = await self._db.execute("DELETE FROM snapshots")
            await self._db.commit()
            log.info("snapshots_cleared", deleted=cursor.rowcount)
        except aiosqlite.Error:
            log.warning("snapshot_clear_error", exc_info=True)

    async def patch(self, updates: Sequence[StoryUpdate]) -> int:
        """Apply fresh scores to every existing snapshot in place.

        Updates without a score are skipped. Snapshots that do not exist are
        not created, and a patched snapshot keeps its ``cached_at`` so the
        patch never extends its TTL. Returns the number of snapshots rewritten.
        """
        by_id = {u.id: u for u in updates if u.score is not None}
        if not by_id:
            return 0

        patched = 0
        for timespan in Timespan:
            doc = await self.read(timespan)
            if doc is None:
                continue
            changed = False
            stories: list[Story] = []
            for story in doc.stories:
                update = by_id.get(story.id)
                if update is None:
                    stories.append(story)
                    continue
                fields: dict[str, int] = {"score": update.score}  # type: ignore[dict-item]
                if update.descendants is not None:
                    fields["descendants"] = update.descendants
                stories.append(story.model_copy(update=fields))
                changed = True
            if not changed:
                continue
            await self.save_snapshot(timespan, by_score(stories), cached_at=doc.cached_at)
            patched += 1

        log.info("snapshots_patched", updates=len(by_id), snapshots=patched)
        return patched


class StoryCache:
    """The process-wide cache service: L1, L2 and the hidden-id cache.

    Built once at startup and handed to the story service and the sync worker.
    """

    def __init__(
        self,
        memory: QueryCache,
        snapshots: SnapshotCache,
        hidden: HiddenCache,
    ) -> None:
        self.memory = memory
        self.snapshots = snapshots
        self.hidden = hidden
        self._pending: set[asyncio.Task[None]] = set()

    def save_snapshot_nowait(self, timespan: Timespan, stories: Sequence[Story]) -> None:
        """Persist a snapshot in the background; failures are only logged."""
        task = asyncio.create_task(self.snapshots.save_snapshot(timespan, list(stories)))
        self._pending.add(task)
        task.add_done_callback(self._on_save_done)

    def _on_save_done(self, task: asyncio.Task[None]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("snapshot_background_save_error", exc_info=exc)

    async def wait_pending(self) -> None:
        """Wait for background snapshot writes to settle."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def clear(self) -> None:
        """Drop every cached story list: L1 entries and all L2 snapshots."""
        self.memory.clear()
        await self.wait_pending()
        await self.snapshots.clear_all()

    async def patch(self, updates: Sequence[StoryUpdate]) -> int:
        await self.wait_pending()
        return await self.snapshots.patch(updates)
