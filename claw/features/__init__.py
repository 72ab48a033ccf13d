"""Feature and story model with vault persistence."""

from claw.features.models import (
    Story,
    Feature,
    derive_status,
    STORY_PENDING,
    STORY_IN_PROGRESS,
    STORY_COMPLETE,
    STORY_BLOCKED,
    STORY_SKIPPED,
    STORY_STATUSES,
    DONE_STATUSES,
)
from claw.features.store import (
    FeatureStore,
    feature_note_path,
    session_log_path,
)

__all__ = [
    "Story",
    "Feature",
    "derive_status",
    "STORY_PENDING",
    "STORY_IN_PROGRESS",
    "STORY_COMPLETE",
    "STORY_BLOCKED",
    "STORY_SKIPPED",
    "STORY_STATUSES",
    "DONE_STATUSES",
    "FeatureStore",
    "feature_note_path",
    "session_log_path",
]
