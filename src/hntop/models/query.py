"""Boundary validation for the inputs the routing layer passes in.

The routing layer builds these from raw request data and hands them to
``StoryService.list_stories`` and ``StoryService.hide_story``.
"""

from __future__ import annotations

import re

from pydantic import BaseModel, field_validator

from hntop.models.story import Timespan

_USERNAME_RE = re.compile(r"^[a-z0-9\-_\s]+$", re.IGNORECASE)


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    return None


class StoryListQuery(BaseModel):
    """Raw list parameters, normalized rather than rejected.

    Unknown timespans become ``All`` and a bad ``skip`` becomes 0. A bad or
    missing ``limit`` stays None until ``clamp`` applies the configured maximum.
    """

    timespan: Timespan = Timespan.ALL
    limit: int | None = None
    skip: int = 0
    hidden: list[int] = []

    @field_validator("timespan", mode="before")
    @classmethod
    def validate_timespan(cls, v: object) -> Timespan:
        return Timespan.parse(v)

    @field_validator("limit", mode="before")
    @classmethod
    def validate_limit(cls, v: object) -> int | None:
        parsed = _as_int(v)
        if parsed is None or parsed < 1:
            return None
        return parsed

    @field_validator("skip", mode="before")
    @classmethod
    def validate_skip(cls, v: object) -> int:
        parsed = _as_int(v)
        if parsed is None or parsed < 0:
            return 0
        return parsed

    def clamp(self, max_limit: int) -> StoryListQuery:
        """Return a copy whose limit is within ``[1, max_limit]``; missing means the max."""
        limit = max_limit if self.limit is None else min(self.limit, max_limit)
        return self.model_copy(update={"limit": limit})


class HideStoryInput(BaseModel):
    username: str
    story_id: int

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("username must not be empty")
        if not _USERNAME_RE.match(v):
            raise ValueError(f"Invalid username: {v!r}")
        return v

    @field_validator("story_id")
    @classmethod
    def validate_story_id(cls, v: int) -> int:
        if v < 1:
            raise ValueError("story_id must be >= 1")
        return v
