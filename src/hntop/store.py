"""SQLite story store.

The store is authoritative: unlike the caches, every ``aiosqlite.Error`` is
logged and re-raised as ``HnTopError(STORE_ERROR)`` so callers see a hard
failure instead of an empty result.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from hntop.errors import ErrorCode, HnTopError
from hntop.models.story import Story, StoryUpdate

if TYPE_CHECKING:
    from collections.abc import Iterator

log = structlog.get_logger()

_CREATE_STORIES_TABLE = """
CREATE TABLE IF NOT EXISTS stories (
    id          INTEGER PRIMARY KEY,
    by          TEXT NOT NULL DEFAULT '',
    title       TEXT NOT NULL DEFAULT '',
    url         TEXT,
    score       INTEGER NOT NULL DEFAULT 0,
    descendants INTEGER NOT NULL DEFAULT 0,
    time        INTEGER NOT NULL,
    updated     INTEGER NOT NULL
)
"""

_CREATE_USERS_TABLE = "CREATE TABLE IF NOT EXISTS users (username TEXT PRIMARY KEY)"

_CREATE_HIDDEN_TABLE = """
CREATE TABLE IF NOT EXISTS hidden (
    username TEXT NOT NULL,
    story_id INTEGER NOT NULL,
    added_at INTEGER NOT NULL DEFAULT (CAST(strftime('%s', 'now') AS INTEGER) * 1000),
    PRIMARY KEY (username, story_id)
)
"""

_CREATE_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_stories_score ON stories(score DESC)",
    "CREATE INDEX IF NOT EXISTS idx_stories_time ON stories(time DESC)",
    "CREATE INDEX IF NOT EXISTS idx_stories_time_updated ON stories(time, updated)",
)

_STORY_COLUMNS = "id, by, title, url, score, descendants, time, updated"

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER on older builds.
_MAX_PARAMS = 900


def _row_to_story(row: Sequence[object]) -> Story:
    return Story(
        id=row[0],
        by=row[1],
        title=row[2],
        url=row[3],
        score=row[4],
        descendants=row[5],
        time=row[6],
        updated=row[7],
    )


def _chunks(ids: Sequence[int], size: int) -> Iterator[Sequence[int]]:
    for start in range(0, len(ids), size):
        yield ids[start : start + size]


class StoryStore:
    """Persistent storage for stories, users and hidden-story sets."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and indexes. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_STORIES_TABLE)
        await self._db.execute(_CREATE_USERS_TABLE)
        await self._db.execute(_CREATE_HIDDEN_TABLE)
        for statement in _CREATE_INDEXES:
            await self._db.execute(statement)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Stories
    # ------------------------------------------------------------------

    async def get_story(self, story_id: int) -> Story | None:
        rows = await self._fetchall(
            "get_story",
            f"SELECT {_STORY_COLUMNS} FROM stories WHERE id = ?",
            (story_id,),
        )
        return _row_to_story(rows[0]) if rows else None

    async def top_stories(self, limit: int) -> list[Story]:
        """Highest-scoring stories regardless of age."""
        rows = await self._fetchall(
            "top_stories",
            f"SELECT {_STORY_COLUMNS} FROM stories ORDER BY score DESC LIMIT ?",
            (limit,),
        )
        return [_row_to_story(row) for row in rows]

    async def stories_since(self, time_after_ms: int) -> list[Story]:
        """Every story submitted after ``time_after_ms``, in no particular order."""
        rows = await self._fetchall(
            "stories_since",
            f"SELECT {_STORY_COLUMNS} FROM stories WHERE time > ?",
            (time_after_ms,),
        )
        return [_row_to_story(row) for row in rows]

    async def stale_story_ids(
        self, time_after_ms: int | None, updated_before_ms: int, limit: int
    ) -> list[int]:
        """Ids of stories not refreshed since ``updated_before_ms``, oldest first.

        ``time_after_ms=None`` drops the submission-time bound.
        """
        if time_after_ms is None:
            sql = "SELECT id FROM stories WHERE updated < ? ORDER BY updated ASC LIMIT ?"
            params: tuple[int, ...] = (updated_before_ms, limit)
        else:
            sql = (
                "SELECT id FROM stories WHERE time > ? AND updated < ? "
                "ORDER BY updated ASC LIMIT ?"
            )
            params = (time_after_ms, updated_before_ms, limit)
        rows = await self._fetchall("stale_story_ids", sql, params)
        return [row[0] for row in rows]

    async def latest_story_id(self) -> int | None:
        rows = await self._fetchall("latest_story_id", "SELECT MAX(id) FROM stories", ())
        return rows[0][0] if rows else None

    async def missing_story_ids(self, ids: Sequence[int]) -> list[int]:
        """Subset of ``ids`` not present in the store, in input order."""
        known: set[int] = set()
        for chunk in _chunks(list(ids), _MAX_PARAMS):
            placeholders = ", ".join("?" for _ in chunk)
            rows = await self._fetchall(
                "missing_story_ids",
                f"SELECT id FROM stories WHERE id IN ({placeholders})",
                tuple(chunk),
            )
            known.update(row[0] for row in rows)
        return [story_id for story_id in ids if story_id not in known]

    async def insert_stories(self, stories: Iterable[Story]) -> int:
        """Insert new stories. Existing ids are left untouched. Returns rows inserted."""
        params = [
            (s.id, s.by, s.title, s.url, s.score, s.descendants, s.time, s.updated)
            for s in stories
        ]
        if not params:
            return 0
        try:
            cursor = await self._db.executemany(
                f"INSERT INTO stories ({_STORY_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO NOTHING",
                params,
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise self._error("insert_stories", exc) from exc
        return cursor.rowcount

    async def update_stories(self, updates: Iterable[StoryUpdate], updated_ms: int) -> int:
        """Write refreshed score data and stamp ``updated``.

        Missing fields keep their stored value. Only the ids in ``updates`` are
        stamped.
        """
        params = [(u.score, u.descendants, updated_ms, u.id) for u in updates]
        if not params:
            return 0
        try:
            cursor = await self._db.executemany(
                "UPDATE stories SET score = COALESCE(?, score), "
                "descendants = COALESCE(?, descendants), updated = ? WHERE id = ?",
                params,
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise self._error("update_stories", exc) from exc
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Users and hidden sets
    # ------------------------------------------------------------------

    async def upsert_user(self, username: str) -> None:
        try:
            await self._db.execute(
                "INSERT INTO users (username) VALUES (?) ON CONFLICT(username) DO NOTHING",
                (username,),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise self._error("upsert_user", exc) from exc

    async def add_hidden(self, username: str, story_id: int) -> None:
        """Add ``story_id`` to the user's hidden set, creating the user if needed."""
        try:
            await self._db.execute(
                "INSERT INTO users (username) VALUES (?) ON CONFLICT(username) DO NOTHING",
                (username,),
            )
            await self._db.execute(
                "INSERT INTO hidden (username, story_id) VALUES (?, ?) "
                "ON CONFLICT(username, story_id) DO NOTHING",
                (username, story_id),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise self._error("add_hidden", exc) from exc

    async def list_hidden(self, username: str) -> list[int]:
        rows = await self._fetchall(
            "list_hidden",
            "SELECT story_id FROM hidden WHERE username = ? ORDER BY added_at, rowid",
            (username,),
        )
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetchall(
        self, operation: str, sql: str, params: Sequence[object]
    ) -> list[Sequence[object]]:
        try:
            cursor = await self._db.execute(sql, params)
            return list(await cursor.fetchall())
        except aiosqlite.Error as exc:
            raise self._error(operation, exc) from exc

    @staticmethod
    def _error(operation: str, exc: aiosqlite.Error) -> HnTopError:
        log.error("store_error", operation=operation, exc_info=exc)
        return HnTopError(
            ErrorCode.STORE_ERROR,
            f"Story store {operation} failed: {exc}",
            recoverable=True,
        )
