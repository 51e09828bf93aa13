"""Process-wide wiring.

``AppState`` holds every long-lived component. ``create_app_state`` opens the
database and HTTP client and closes both on exit.
"""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import structlog

from hntop.cache import SnapshotCache, StoryCache
from hntop.hackernews import HackerNewsClient, build_http_client
from hntop.memory import HiddenCache, QueryCache
from hntop.service import StoryService
from hntop.store import StoryStore
from hntop.worker import SyncWorker

if TYPE_CHECKING:
    from hntop.config import Settings
    from hntop.memory import Clock

log = structlog.get_logger()


@dataclass
class AppState:
    settings: Settings
    http_client: httpx.AsyncClient
    store: StoryStore
    cache: StoryCache
    hackernews: HackerNewsClient
    service: StoryService
    worker: SyncWorker


def build_story_cache(db: aiosqlite.Connection, settings: Settings, clock: Clock) -> StoryCache:
    cfg = settings.cache
    return StoryCache(
        memory=QueryCache(cfg.memory_ttl, clock, max_entries=cfg.memory_max_entries),
        snapshots=SnapshotCache(db, cfg.snapshot_ttl, clock),
        hidden=HiddenCache(cfg.hidden_ttl_seconds, clock, max_entries=cfg.hidden_max_entries),
    )


@asynccontextmanager
async def create_app_state(
    settings: Settings,
    clock: Clock = time.time,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncIterator[AppState]:
    db_path = settings.cache.db_path
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    async with aiosqlite.connect(db_path) as db:
        store = StoryStore(db)
        await store.init_db()
        cache = build_story_cache(db, settings, clock)
        await cache.snapshots.init_db()

        client = http_client or build_http_client(settings.upstream)
        hackernews = HackerNewsClient(client, settings.upstream)
        state = AppState(
            settings=settings,
            http_client=client,
            store=store,
            cache=cache,
            hackernews=hackernews,
            service=StoryService(
                store,
                cache,
                clock,
                max_query_docs=settings.cache.max_query_docs,
                max_limit=settings.api.max_limit,
            ),
            worker=SyncWorker(store, hackernews, cache, settings.worker, clock),
        )
        log.info("app_state_ready", db_path=db_path)
        try:
            yield state
        finally:
            await cache.wait_pending()
            await client.aclose()
