"""
Data models for features and stories.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from typing import Optional

logger = logging.getLogger(__name__)

# Story lifecycle
STORY_PENDING = "pending"
STORY_IN_PROGRESS = "in_progress"
STORY_COMPLETE = "complete"
STORY_BLOCKED = "blocked"
STORY_SKIPPED = "skipped"
STORY_STATUSES = (STORY_PENDING, STORY_IN_PROGRESS, STORY_COMPLETE, STORY_BLOCKED, STORY_SKIPPED)

# Stories that need no more work
DONE_STATUSES = (STORY_COMPLETE, STORY_SKIPPED)

# Feature lifecycle (derived from stories)
FEATURE_PLANNING = "planning"
FEATURE_EXECUTING = "executing"
FEATURE_COMPLETE = "complete"
FEATURE_PAUSED = "paused"


@dataclass
class Story:
    """One unit of work driven through the execution agent."""
    id: str                                    # Unique within the feature, e.g. "1" or "auth-login"
    title: str
    scope: list[str] = field(default_factory=list)
    repos: list[str] = field(default_factory=list)
    status: str = STORY_PENDING
    blocked_by: list[str] = field(default_factory=list)
    branch: Optional[str] = None
    pr: Optional[int] = None
    iterations: int = 0
    notes: Optional[str] = None                # Last blocker reason or operator note

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES

    @classmethod
    def from_dict(cls, data: dict) -> "Story":
        """Build a story, dropping keys a hand edit may have added."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Story {data.get('id', '?')}: ignoring unknown fields {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Feature:
    id: str
    title: str
    description: str = ""
    status: str = FEATURE_PLANNING
    stories: list[Story] = field(default_factory=list)
    created_at: Optional[str] = None           # ISO timestamp
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    def get_story(self, story_id: str) -> Optional[Story]:
        for story in self.stories:
            if story.id == story_id:
                return story
        return None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Feature":
        stories = [Story.from_dict(s) for s in data.get("stories") or []]
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            description=data.get("description") or "",
            status=data.get("status", FEATURE_PLANNING),
            stories=stories,
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            completed_at=data.get("completed_at"),
        )


def derive_status(stories: list[Story]) -> str:
    """Feature status from aggregate story status.

    All done -> complete; any in progress -> executing; any story that has
    left pending -> paused; otherwise planning.
    """
    if stories and all(s.status in DONE_STATUSES for s in stories):
        return FEATURE_COMPLETE
    if any(s.status == STORY_IN_PROGRESS for s in stories):
        return FEATURE_EXECUTING
    if any(s.status != STORY_PENDING for s in stories):
        return FEATURE_PAUSED
    return FEATURE_PLANNING
