"""Hacker News API client.

Single-item fetches never raise: a missing, deleted or failed item comes back
as ``None`` and is logged. The bulk id listings raise ``HnTopError`` so the
sync worker can skip a phase for one cycle.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from hntop.errors import ErrorCode, HnTopError
from hntop.models.story import Story, StoryUpdate

if TYPE_CHECKING:
    from hntop.config import UpstreamSettings

log = structlog.get_logger()

_ID_LISTINGS = ("newstories", "topstories", "beststories")


def build_http_client(settings: UpstreamSettings | None = None) -> httpx.AsyncClient:
    timeout = settings.timeout_seconds if settings is not None else 10.0
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"User-Agent": "hntop"},
    )


def item_to_story(item: dict[str, Any], updated_ms: int) -> Story | None:
    """Build a story from an upstream item, or None if it is not a usable story."""
    if item.get("type", "story") != "story" or item.get("deleted") or item.get("dead"):
        return None
    if "time" not in item or "id" not in item:
        return None
    try:
        data: dict[str, Any] = {
            "id": item["id"],
            "by": item.get("by") or "",
            "title": item.get("title") or "",
            "score": item.get("score") or 0,
            "descendants": item.get("descendants") or 0,
            "time": int(item["time"]) * 1000,
            "updated": updated_ms,
        }
        if item.get("url"):
            data["url"] = item["url"]
        return Story(**data)
    except (ValidationError, TypeError, ValueError):
        log.warning("upstream_item_invalid", story_id=item.get("id"), exc_info=True)
        return None


def item_to_update(item: dict[str, Any]) -> StoryUpdate | None:
    """Fresh score data from an upstream item, or None if the item is malformed."""
    try:
        return StoryUpdate(
            id=item["id"],
            score=item.get("score"),
            descendants=item.get("descendants"),
        )
    except (ValidationError, KeyError):
        log.warning("upstream_item_invalid", story_id=item.get("id"), exc_info=True)
        return None


class HackerNewsClient:
    """Async client for the Hacker News Firebase API."""

    def __init__(self, client: httpx.AsyncClient, settings: UpstreamSettings) -> None:
        self._client = client
        self._base_url = settings.base_url.rstrip("/")
        self._login_url = settings.login_url

    # ------------------------------------------------------------------
    # Id listings
    # ------------------------------------------------------------------

    async def get_new_story_ids(self) -> list[int]:
        """Ids from the ``newstories`` feed, newest first."""
        return await self._get_ids("newstories")

    async def get_all_story_ids(self) -> list[int]:
        """Union of the new, top and best listings, first occurrence wins."""
        listings = await asyncio.gather(*(self._get_ids(name) for name in _ID_LISTINGS))
        return list(dict.fromkeys(story_id for ids in listings for story_id in ids))

    async def _get_ids(self, listing: str) -> list[int]:
        url = f"{self._base_url}/{listing}.json"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("upstream_listing_error", listing=listing, error=str(exc))
            raise HnTopError(
                ErrorCode.UPSTREAM_FETCH_FAILED,
                f"Failed to fetch {listing}: {exc}",
                recoverable=True,
            ) from exc
        if not isinstance(data, list):
            raise HnTopError(
                ErrorCode.UPSTREAM_FETCH_FAILED,
                f"Unexpected {listing} payload: {type(data).__name__}",
                recoverable=True,
            )
        return [int(i) for i in data if isinstance(i, int)]

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    async def get_item(self, item_id: int) -> dict[str, Any] | None:
        """Fetch one item. Returns ``None`` if it is missing or the fetch fails."""
        url = f"{self._base_url}/item/{item_id}.json"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning("upstream_item_error", story_id=item_id, error=str(exc))
            return None
        if not isinstance(data, dict):
            return None
        return data

    async def get_items(self, item_ids: Sequence[int]) -> list[dict[str, Any]]:
        """Fetch items concurrently, dropping the ones that came back empty."""
        items = await asyncio.gather(*(self.get_item(i) for i in item_ids))
        return [item for item in items if item is not None]

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    async def login(self, goto: str, acct: str, pw: str) -> bool:
        """Check credentials against news.ycombinator.com.

        A successful login redirects to ``/news``; a failed one lands back on
        ``/login``.
        """
        try:
            response = await self._client.post(
                self._login_url,
                data={"goto": goto, "acct": acct, "pw": pw},
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            raise HnTopError(
                ErrorCode.LOGIN_FAILED, f"Login request failed: {exc}", recoverable=True
            ) from exc
        if response.status_code != 200:
            return False
        path = response.url.path
        if path == "/login":
            log.info("login_rejected", acct=acct)
            return False
        return path == "/news"

    async def aclose(self) -> None:
        await self._client.aclose()
