"""
Feature persistence in the vault.

Each feature is one note:
  <project>/features/<feature-id>/_feature.md

The frontmatter holds the machine-readable feature (validated against
feature.schema.json); the body is a regenerated human-readable story table.
"""

import logging
from datetime import datetime
from typing import Optional

from claw.features.models import (
    FEATURE_COMPLETE,
    Feature,
    Story,
    derive_status,
)
from claw.lib.validate import validate, validate_before_write
from claw.lib.vault import DocumentStore

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    "pending": "⏳",
    "in_progress": "🔄",
    "complete": "✅",
    "blocked": "🚫",
    "skipped": "⏭️",
}


def feature_dir(project_path: str, feature_id: str) -> str:
    return f"{project_path.rstrip('/')}/features/{feature_id}"


def feature_note_path(project_path: str, feature_id: str) -> str:
    return f"{feature_dir(project_path, feature_id)}/_feature"


def session_log_path(project_path: str, feature_id: str) -> str:
    return f"{feature_dir(project_path, feature_id)}/_session-log"


def render_feature_body(feature: Feature) -> str:
    lines = [f"# {feature.title}", ""]
    if feature.description:
        lines += [feature.description, ""]
    lines += [
        "| | ID | Story | Depends on | PR |",
        "|---|----|-------|------------|----|",
    ]
    for s in feature.stories:
        icon = STATUS_ICONS.get(s.status, "?")
        deps = ", ".join(s.blocked_by) or "-"
        pr = f"#{s.pr}" if s.pr else "-"
        lines.append(f"| {icon} | {s.id} | {s.title} | {deps} | {pr} |")
    return "\n".join(lines) + "\n"


class FeatureStore:
    """Loads and saves features through a document store."""

    def __init__(self, store: DocumentStore, project_path: str):
        self.store = store
        self.project_path = project_path

    def note_path(self, feature_id: str) -> str:
        return feature_note_path(self.project_path, feature_id)

    def load_feature(self, feature_id: str) -> Optional[Feature]:
        """Load a feature by ID. Returns None if the note does not exist.

        Raises:
            ValidationError: if the frontmatter does not match the schema
        """
        note = self.store.read_note(self.note_path(feature_id))
        if note is None:
            return None
        validate(note.frontmatter, "feature")
        return Feature.from_dict(note.frontmatter)

    def save_feature(self, feature: Feature) -> Feature:
        """Re-derive status, stamp timestamps, validate, and write."""
        now = datetime.now().isoformat()
        feature.status = derive_status(feature.stories)
        feature.created_at = feature.created_at or now
        feature.updated_at = now
        if feature.status == FEATURE_COMPLETE and not feature.completed_at:
            feature.completed_at = now

        data = feature.to_dict()
        path = self.note_path(feature.id)
        validate_before_write(data, "feature", path)
        self.store.write_note(path, render_feature_body(feature), data)
        return feature

    def update_story(self, feature: Feature, story_id: str, **updates) -> Story:
        """Apply updates to one story and persist the feature.

        Raises:
            KeyError: if the story is not part of the feature
        """
        story = feature.get_story(story_id)
        if story is None:
            raise KeyError(f"Story {story_id} not found in feature {feature.id}")
        for key, value in updates.items():
            if not hasattr(story, key):
                raise AttributeError(f"Story has no field '{key}'")
            setattr(story, key, value)
        self.save_feature(feature)
        return story

    def add_story(self, feature: Feature, story: Story) -> Story:
        if feature.get_story(story.id) is not None:
            raise ValueError(f"Story {story.id} already exists in feature {feature.id}")
        feature.stories.append(story)
        self.save_feature(feature)
        return story

    def list_features(self) -> list[str]:
        """Feature ids that have a _feature note."""
        dirs, _ = self.store.list_directory(f"{self.project_path.rstrip('/')}/features")
        return [d for d in dirs if self.store.exists(feature_note_path(self.project_path, d))]
