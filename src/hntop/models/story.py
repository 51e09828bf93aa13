from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

_HOUR_MS = 60 * 60 * 1000
_DAY_MS = 24 * _HOUR_MS


class Timespan(StrEnum):
    DAY = "Day"
    WEEK = "Week"
    MONTH = "Month"
    YEAR = "Year"
    ALL = "All"

    @classmethod
    def parse(cls, value: object) -> Timespan:
        """Normalize any input to a timespan; unknown values mean ``All``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.ALL

    @property
    def window_ms(self) -> int | None:
        """Lookback window in milliseconds, or None for ``All``."""
        return _WINDOWS_MS[self]


_WINDOWS_MS: dict[Timespan, int | None] = {
    Timespan.DAY: _DAY_MS,
    Timespan.WEEK: 7 * _DAY_MS,
    Timespan.MONTH: 28 * _DAY_MS,
    Timespan.YEAR: 365 * _DAY_MS,
    Timespan.ALL: None,
}


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


class Story(BaseModel):
    """A ranked story. ``time`` and ``updated`` are epoch milliseconds."""

    id: int
    by: str = ""
    title: str = ""
    url: str | None = None  # Absent for self posts (Ask HN etc.)
    score: int = 0
    descendants: int = 0
    time: int
    updated: int

    def to_response(self) -> StoryResponse:
        return StoryResponse(
            id=self.id,
            by=self.by,
            title=self.title,
            url=self.url,
            score=self.score,
            descendants=self.descendants,
            time=ms_to_datetime(self.time),
            updated=ms_to_datetime(self.updated),
        )


class StoryUpdate(BaseModel):
    """Fresh score data for one story. ``score`` is None when it could not be refreshed."""

    id: int
    score: int | None = None
    descendants: int | None = None


class StoryResponse(BaseModel):
    """Story as handed to the routing layer, with native datetimes."""

    id: int
    by: str
    title: str
    url: str | None = Field(default=None)
    score: int
    descendants: int
    time: datetime
    updated: datetime
