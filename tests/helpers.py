"""Test helpers shared by unit and integration tests."""

from __future__ import annotations

from hntop.models.story import Story

HOUR = 60 * 60
DAY = 24 * HOUR


class FakeClock:
    """Callable clock returning epoch seconds; tests move it with ``advance``."""

    def __init__(self, start: float = 1_750_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    @property
    def now_ms(self) -> int:
        return int(self.now * 1000)


def make_story(
    story_id: int,
    score: int,
    clock: FakeClock,
    age_seconds: float = HOUR,
    updated_age_seconds: float = 0,
    url: str | None = "https://example.com/story",
) -> Story:
    return Story(
        id=story_id,
        by="pg",
        title=f"Story {story_id}",
        url=url,
        score=score,
        descendants=score // 2,
        time=int((clock.now - age_seconds) * 1000),
        updated=int((clock.now - updated_age_seconds) * 1000),
    )
