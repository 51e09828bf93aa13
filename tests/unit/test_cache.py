"""Unit tests for hntop.cache."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import aiosqlite

from hntop.cache import StoryCache, by_score
from hntop.config import TimespanTtls
from hntop.memory import HiddenCache, QueryCache, QueryKey
from hntop.models.story import StoryUpdate, Timespan
from tests.helpers import FakeClock, make_story

if TYPE_CHECKING:
    from hntop.cache import SnapshotCache

# ---------------------------------------------------------------------------
# Snapshot read/write
# ---------------------------------------------------------------------------


class TestSnapshotCache:
    async def test_save_and_load_fresh(self, snapshots: SnapshotCache, clock: FakeClock) -> None:
        stories = by_score([make_story(1, 5, clock), make_story(2, 50, clock)])
        await snapshots.save_snapshot(Timespan.WEEK, stories)

        loaded = await snapshots.load_snapshot(Timespan.WEEK)
        assert loaded == stories

        doc = await snapshots.read(Timespan.WEEK)
        assert doc is not None
        assert doc.cached_at == clock.now_ms

    async def test_missing_returns_none(self, snapshots: SnapshotCache) -> None:
        assert await snapshots.load_snapshot(Timespan.DAY) is None

    async def test_ttl_per_timespan(self, snapshots: SnapshotCache, clock: FakeClock) -> None:
        await snapshots.save_snapshot(Timespan.DAY, [make_story(1, 5, clock)])
        await snapshots.save_snapshot(Timespan.WEEK, [make_story(1, 5, clock)])

        clock.advance(31 * 60)
        assert await snapshots.load_snapshot(Timespan.DAY) is None
        assert await snapshots.load_snapshot(Timespan.WEEK) is not None

        # Expired snapshots are still readable for patching.
        assert await snapshots.read(Timespan.DAY) is not None

    async def test_missing_url_has_no_key_at_rest(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        story = make_story(1, 5, clock, url=None)
        await snapshots.save_snapshot(Timespan.ALL, [story])

        cursor = await snapshots._db.execute(
            "SELECT stories FROM snapshots WHERE timespan = ?", (Timespan.ALL.value,)
        )
        row = await cursor.fetchone()
        assert row is not None
        assert "url" not in json.loads(row[0])[0]

        loaded = await snapshots.load_snapshot(Timespan.ALL)
        assert loaded is not None
        assert loaded[0].url is None

    async def test_corrupt_document_is_a_miss(self, snapshots: SnapshotCache) -> None:
        await snapshots._db.execute(
            "INSERT INTO snapshots (timespan, stories, cached_at) VALUES (?, ?, ?)",
            (Timespan.DAY.value, "not json", 0),
        )
        await snapshots._db.commit()
        assert await snapshots.read(Timespan.DAY) is None

    async def test_read_failure_returns_none(self, snapshots: SnapshotCache) -> None:
        """Simulate a database read error: should return None, not raise."""
        original_execute = snapshots._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        snapshots._db.execute = failing_execute  # type: ignore[assignment]
        assert await snapshots.load_snapshot(Timespan.DAY) is None
        snapshots._db.execute = original_execute  # type: ignore[assignment]

    async def test_write_failure_does_not_raise(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        original_execute = snapshots._db.execute

        async def failing_execute(*args, **kwargs):
            raise aiosqlite.OperationalError("disk I/O error")

        snapshots._db.execute = failing_execute  # type: ignore[assignment]
        await snapshots.save_snapshot(Timespan.DAY, [make_story(1, 5, clock)])
        await snapshots.clear_all()
        snapshots._db.execute = original_execute  # type: ignore[assignment]

    async def test_clear_all(self, snapshots: SnapshotCache, clock: FakeClock) -> None:
        for timespan in Timespan:
            await snapshots.save_snapshot(timespan, [make_story(1, 5, clock)])
        await snapshots.clear_all()
        for timespan in Timespan:
            assert await snapshots.read(timespan) is None


# ---------------------------------------------------------------------------
# Patching
# ---------------------------------------------------------------------------


class TestSnapshotPatch:
    async def test_patch_rescores_and_resorts(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        stories = by_score([make_story(1, 100, clock), make_story(2, 10, clock)])
        await snapshots.save_snapshot(Timespan.WEEK, stories)
        cached_at = clock.now_ms

        clock.advance(60)
        patched = await snapshots.patch([StoryUpdate(id=2, score=500, descendants=77)])
        assert patched == 1

        doc = await snapshots.read(Timespan.WEEK)
        assert doc is not None
        assert [s.id for s in doc.stories] == [2, 1]
        assert doc.stories[0].score == 500
        assert doc.stories[0].descendants == 77
        assert doc.cached_at == cached_at

    async def test_patch_does_not_create_snapshots(self, snapshots: SnapshotCache) -> None:
        assert await snapshots.patch([StoryUpdate(id=1, score=5)]) == 0
        for timespan in Timespan:
            assert await snapshots.read(timespan) is None

    async def test_update_without_score_is_skipped(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        await snapshots.save_snapshot(Timespan.DAY, [make_story(1, 100, clock)])
        assert await snapshots.patch([StoryUpdate(id=1, descendants=9)]) == 0
        doc = await snapshots.read(Timespan.DAY)
        assert doc is not None
        assert doc.stories[0].score == 100

    async def test_missing_descendants_keeps_old_value(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        await snapshots.save_snapshot(Timespan.DAY, [make_story(1, 100, clock)])
        await snapshots.patch([StoryUpdate(id=1, score=150)])
        doc = await snapshots.read(Timespan.DAY)
        assert doc is not None
        assert doc.stories[0].score == 150
        assert doc.stories[0].descendants == 50

    async def test_patch_touches_every_snapshot_holding_the_story(
        self, snapshots: SnapshotCache, clock: FakeClock
    ) -> None:
        await snapshots.save_snapshot(Timespan.DAY, [make_story(1, 1, clock)])
        await snapshots.save_snapshot(Timespan.ALL, [make_story(1, 1, clock)])
        await snapshots.save_snapshot(Timespan.YEAR, [make_story(9, 1, clock)])
        assert await snapshots.patch([StoryUpdate(id=1, score=2)]) == 2


# ---------------------------------------------------------------------------
# StoryCache service
# ---------------------------------------------------------------------------


class TestStoryCache:
    def _cache(self, snapshots: SnapshotCache, clock: FakeClock) -> StoryCache:
        return StoryCache(
            memory=QueryCache(TimespanTtls(), clock),
            snapshots=snapshots,
            hidden=HiddenCache(60, clock),
        )

    async def test_background_save_lands(self, snapshots: SnapshotCache, clock: FakeClock) -> None:
        cache = self._cache(snapshots, clock)
        cache.save_snapshot_nowait(Timespan.MONTH, [make_story(1, 5, clock)])
        await cache.wait_pending()
        assert await snapshots.load_snapshot(Timespan.MONTH) is not None

    async def test_clear_drops_both_tiers(self, snapshots: SnapshotCache, clock: FakeClock) -> None:
        cache = self._cache(snapshots, clock)
        cache.memory.put(QueryKey.build(Timespan.DAY, 10, 0), [make_story(1, 5, clock)])
        cache.save_snapshot_nowait(Timespan.DAY, [make_story(1, 5, clock)])

        await cache.clear()

        assert len(cache.memory) == 0
        assert await snapshots.read(Timespan.DAY) is None
