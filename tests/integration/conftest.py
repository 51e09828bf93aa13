"""Integration test fixtures.

Provides a fully wired AppState over in-memory SQLite with a fake clock, plus
a scriptable stand-in for the Hacker News client used by the worker tests.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from hntop.config import CacheSettings, Settings
from hntop.errors import ErrorCode, HnTopError
from hntop.state import create_app_state

if TYPE_CHECKING:
    from hntop.state import AppState
    from tests.helpers import FakeClock


@pytest.fixture()
def settings() -> Settings:
    return Settings(cache=CacheSettings(db_path=":memory:"))


@pytest.fixture()
async def app_state(settings: Settings, clock: FakeClock) -> AppState:
    async with create_app_state(settings, clock=clock, http_client=httpx.AsyncClient()) as state:
        yield state


class FakeHackerNews:
    """In-memory upstream: items by id plus the id listings.

    ``get_items`` fetches a batch concurrently, like the real client, and
    ``peak_in_flight`` records the most ``get_item`` calls open at once.
    """

    def __init__(self) -> None:
        self.items: dict[int, dict[str, Any]] = {}
        self.new_ids: list[int] = []
        self.top_ids: list[int] = []
        self.best_ids: list[int] = []
        self.fail_listings = False
        self.failing_items: set[int] = set()
        self.requested: list[int] = []
        self.in_flight = 0
        self.peak_in_flight = 0

    def add(self, item_id: int, time_s: float, score: int = 1, **fields: Any) -> None:
        self.items[item_id] = {
            "id": item_id,
            "type": "story",
            "by": "pg",
            "title": f"Story {item_id}",
            "score": score,
            "descendants": 0,
            "time": int(time_s),
            **fields,
        }

    def _listing(self, ids: list[int]) -> list[int]:
        if self.fail_listings:
            raise HnTopError(ErrorCode.UPSTREAM_FETCH_FAILED, "listing down", recoverable=True)
        return list(ids)

    async def get_new_story_ids(self) -> list[int]:
        return self._listing(self.new_ids)

    async def get_all_story_ids(self) -> list[int]:
        ids = self._listing(self.new_ids) + self.top_ids + self.best_ids
        return list(dict.fromkeys(ids))

    async def get_item(self, item_id: int) -> dict[str, Any] | None:
        self.requested.append(item_id)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
        finally:
            self.in_flight -= 1
        if item_id in self.failing_items:
            return None
        item = self.items.get(item_id)
        return dict(item) if item is not None else None

    async def get_items(self, item_ids: Sequence[int]) -> list[dict[str, Any]]:
        items = await asyncio.gather(*(self.get_item(i) for i in item_ids))
        return [item for item in items if item is not None]


@pytest.fixture()
def upstream() -> FakeHackerNews:
    return FakeHackerNews()
