"""Unit-specific fixtures (no I/O beyond in-memory SQLite)."""

from __future__ import annotations

from typing import TYPE_CHECKING

import aiosqlite
import pytest

from hntop.cache import SnapshotCache
from hntop.config import TimespanTtls, _snapshot_ttls
from hntop.store import StoryStore

if TYPE_CHECKING:
    from tests.helpers import FakeClock


@pytest.fixture()
async def db():
    async with aiosqlite.connect(":memory:") as conn:
        yield conn


@pytest.fixture()
async def store(db: aiosqlite.Connection) -> StoryStore:
    s = StoryStore(db)
    await s.init_db()
    return s


@pytest.fixture()
def snapshot_ttls() -> TimespanTtls:
    return _snapshot_ttls()


@pytest.fixture()
async def snapshots(
    db: aiosqlite.Connection, snapshot_ttls: TimespanTtls, clock: FakeClock
) -> SnapshotCache:
    cache = SnapshotCache(db, snapshot_ttls, clock)
    await cache.init_db()
    return cache
