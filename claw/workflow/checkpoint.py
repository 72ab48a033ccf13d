"""
Session checkpoints.

A checkpoint is a vault note at <project>/features/<feature-id>/_checkpoint.
The body is a readable summary for the operator; the machine-readable data is
the single fenced json block under "## Checkpoint Data", and load() reads
nothing else.

Checkpoints are written after every story outcome and on abort, and deleted
when a session completes or right before a resumed run starts.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from claw.features.models import Feature
from claw.features.store import feature_dir
from claw.lib.config import SessionConfig
from claw.lib.validate import ValidationError, validate, validate_before_write
from claw.lib.vault import DocumentStore
from claw.workflow.state_machine import (
    RESUMABLE_STATUSES,
    SessionState,
    SessionStatus,
    parse_status,
)

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = "1.0"

_DATA_BLOCK = re.compile(r"```json\n(.*?)\n```", re.DOTALL)

SESSION_ICONS = {
    "running": "🔄",
    "paused": "⏸️",
    "completed": "✅",
    "blocked": "🚫",
    "timeout": "⏰",
    "error": "❌",
}

STORY_ICONS = {
    "pending": "⏳",
    "in_progress": "🔄",
    "complete": "✅",
    "blocked": "🚫",
    "skipped": "⏭️",
}


def checkpoint_path(project_path: str, feature_id: str) -> str:
    return f"{feature_dir(project_path, feature_id)}/_checkpoint"


@dataclass
class CheckpointData:
    feature_id: str
    session_state: dict
    config: dict
    story_progress: dict[str, dict] = field(default_factory=dict)
    version: str = CHECKPOINT_VERSION
    timestamp: str = ""

    @property
    def status(self) -> SessionStatus | None:
        return parse_status(self.session_state.get("status"))

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "timestamp": self.timestamp,
            "feature_id": self.feature_id,
            "session_state": self.session_state,
            "config": self.config,
            "story_progress": self.story_progress,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointData":
        return cls(
            feature_id=data["feature_id"],
            session_state=data["session_state"],
            config=data.get("config") or {},
            story_progress=data.get("story_progress") or {},
            version=data.get("version", CHECKPOINT_VERSION),
            timestamp=data.get("timestamp", ""),
        )

    def to_session_state(self) -> SessionState:
        """Rebuild the SessionState snapshot stored in this checkpoint."""
        s = self.session_state
        return SessionState(
            start_time=datetime.fromisoformat(s["start_time"]),
            feature_id=self.feature_id,
            stories_completed=s.get("stories_completed", 0),
            stories_blocked=s.get("stories_blocked", 0),
            total_iterations=s.get("total_iterations", 0),
            current_story_id=s.get("current_story_id"),
            status=self.status or SessionStatus.PAUSED,
            blocker_reason=s.get("blocker_reason"),
            pending_question=s.get("pending_question"),
            commits=tuple(s.get("commits") or ()),
            prs=tuple(s.get("prs") or ()),
        )


def snapshot(feature: Feature, state: SessionState, config: SessionConfig) -> CheckpointData:
    """Build CheckpointData from live session objects."""
    return CheckpointData(
        feature_id=feature.id,
        timestamp=datetime.now().isoformat(),
        session_state={
            "start_time": state.start_time.isoformat(),
            "stories_completed": state.stories_completed,
            "stories_blocked": state.stories_blocked,
            "total_iterations": state.total_iterations,
            "current_story_id": state.current_story_id,
            "status": state.status.value,
            "blocker_reason": state.blocker_reason,
            "pending_question": state.pending_question,
            "commits": list(state.commits),
            "prs": list(state.prs),
        },
        config=config.to_checkpoint(),
        story_progress={
            s.id: {"status": s.status, "iterations": s.iterations, "pr": s.pr}
            for s in feature.stories
        },
    )


def format_checkpoint(cp: CheckpointData) -> str:
    """Render a checkpoint as markdown with the data block at the end."""
    s = cp.session_state
    status = s["status"]
    try:
        updated = datetime.fromisoformat(cp.timestamp).strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        updated = cp.timestamp

    story_lines = []
    for story_id, progress in cp.story_progress.items():
        icon = STORY_ICONS.get(progress["status"], "❓")
        iters = progress.get("iterations", 0)
        suffix = f" ({iters} iterations)" if iters > 1 else ""
        story_lines.append(f"- {icon} Story {story_id}: {progress['status']}{suffix}")

    parts = [
        "# Session Checkpoint",
        "",
        f"{SESSION_ICONS.get(status, '❓')} **Status:** {status}",
        f"**Last Updated:** {updated}",
        f"**Stories Completed:** {s['stories_completed']}",
        f"**Stories Blocked:** {s['stories_blocked']}",
        f"**Total Iterations:** {s['total_iterations']}",
        "",
        "## Story Progress",
        "",
        "\n".join(story_lines) or "- (no stories)",
        "",
    ]
    if s.get("blocker_reason"):
        parts += ["## Blocker", "", s["blocker_reason"], ""]
    if s.get("pending_question"):
        parts += ["## Pending Question", "", s["pending_question"], ""]
    parts += [
        "## Checkpoint Data",
        "",
        "```json",
        json.dumps(cp.to_dict(), indent=2, ensure_ascii=False),
        "```",
        "",
        "---",
        f"*Resume this session with `claw resume {cp.feature_id}`*",
        "",
    ]
    return "\n".join(parts)


def parse_checkpoint(content: str) -> dict | None:
    """Extract the json data block from a checkpoint note body."""
    match = _DATA_BLOCK.search(content)
    if not match:
        return None
    return json.loads(match.group(1))


class CheckpointStore:
    def __init__(self, store: DocumentStore, project_path: str):
        self.store = store
        self.project_path = project_path

    def path(self, feature_id: str) -> str:
        return checkpoint_path(self.project_path, feature_id)

    def save(self, feature: Feature, state: SessionState, config: SessionConfig) -> bool:
        """Write a checkpoint. Failures are logged, never raised."""
        cp = snapshot(feature, state, config)
        path = self.path(feature.id)
        try:
            validate_before_write(cp.to_dict(), "checkpoint", path)
            self.store.write_note(path, format_checkpoint(cp))
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"[CHECKPOINT] {feature.id}: save failed: {e}")
            return False
        logger.debug(f"[CHECKPOINT] {feature.id}: saved ({state.status.value})")
        return True

    def load(self, feature_id: str) -> Optional[CheckpointData]:
        """Load a checkpoint, or None if missing or unreadable."""
        note = self.store.read_note(self.path(feature_id))
        if note is None:
            return None
        try:
            data = parse_checkpoint(note.content)
            if data is None:
                logger.warning(f"[CHECKPOINT] {feature_id}: no data block in checkpoint note")
                return None
            validate(data, "checkpoint")
        except json.JSONDecodeError as e:
            logger.warning(f"[CHECKPOINT] {feature_id}: invalid json: {e}")
            return None
        except ValidationError as e:
            logger.warning(f"[CHECKPOINT] {feature_id}: {e}")
            return None
        return CheckpointData.from_dict(data)

    def delete(self, feature_id: str) -> bool:
        try:
            deleted = self.store.delete_note(self.path(feature_id))
        except OSError as e:
            logger.warning(f"[CHECKPOINT] {feature_id}: delete failed: {e}")
            return False
        if deleted:
            logger.debug(f"[CHECKPOINT] {feature_id}: deleted")
        return deleted

    def exists(self, feature_id: str) -> bool:
        return self.store.exists(self.path(feature_id))

    @staticmethod
    def is_resumable(cp: CheckpointData) -> bool:
        return cp.status in RESUMABLE_STATUSES

    @staticmethod
    def get_remaining_time(cp: CheckpointData, now: datetime | None = None) -> float | None:
        """Hours left in the checkpointed budget; None when the run had no deadline."""
        max_hours = cp.config.get("max_hours")
        if max_hours is None:
            return None
        start = datetime.fromisoformat(cp.session_state["start_time"])
        elapsed = ((now or datetime.now()) - start).total_seconds() / 3600
        return max(0.0, max_hours - elapsed)
