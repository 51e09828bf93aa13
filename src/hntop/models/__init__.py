from __future__ import annotations

from hntop.models.cache import SnapshotDoc
from hntop.models.query import HideStoryInput, StoryListQuery
from hntop.models.story import Story, StoryResponse, StoryUpdate, Timespan

__all__ = [
    # stories
    "Story",
    "StoryResponse",
    "StoryUpdate",
    "Timespan",
    # cache
    "SnapshotDoc",
    # boundary
    "StoryListQuery",
    "HideStoryInput",
]
