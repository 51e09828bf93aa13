from __future__ import annotations

from pydantic import BaseModel, Field, TypeAdapter

from hntop.models.story import Story, Timespan

STORY_LIST: TypeAdapter[list[Story]] = TypeAdapter(list[Story])


class SnapshotDoc(BaseModel):
    """Materialized story list for one timespan, score-descending."""

    timespan: Timespan
    stories: list[Story] = Field(default_factory=list)
    cached_at: int  # epoch milliseconds

    def stories_json(self) -> str:
        """The story list as stored at rest; stories without a url carry no url key."""
        return STORY_LIST.dump_json(self.stories, exclude_none=True).decode()
