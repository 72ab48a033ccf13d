"""Tests for claw.workflow.checkpoint module."""

from datetime import datetime

import pytest

from claw.features.models import Feature, Story
from claw.lib.config import SessionConfig
from claw.lib.vault import Vault
from claw.workflow.checkpoint import (
    CheckpointData,
    CheckpointStore,
    format_checkpoint,
    parse_checkpoint,
    snapshot,
)
from claw.workflow.state_machine import SessionState, SessionStatus

PROJECT = "Projects/demo"


def make_feature() -> Feature:
    return Feature(
        id="auth",
        title="Auth",
        stories=[
            Story(id="1", title="Schema", status="complete", iterations=2, pr=7),
            Story(id="2", title="Login", status="blocked", blocked_by=["1"]),
        ],
    )


def make_state(status=SessionStatus.PAUSED, **kwargs) -> SessionState:
    return SessionState(
        start_time=datetime(2026, 3, 1, 9, 0),
        feature_id="auth",
        status=status,
        **kwargs,
    )


@pytest.fixture
def store(tmp_path):
    return CheckpointStore(Vault(tmp_path), PROJECT)


class TestFormatAndParse:
    """Tests for the markdown checkpoint format."""

    def test_data_block_round_trips(self):
        cp = snapshot(make_feature(), make_state(stories_completed=1, commits=("abc",)), SessionConfig(max_hours=2.0))
        assert parse_checkpoint(format_checkpoint(cp)) == cp.to_dict()

    def test_summary_sections(self):
        state = make_state(blocker_reason="No ready stories", pending_question="Which IdP?")
        text = format_checkpoint(snapshot(make_feature(), state, SessionConfig()))

        assert text.startswith("# Session Checkpoint")
        assert "**Status:** paused" in text
        assert "- ✅ Story 1: complete (2 iterations)" in text
        assert "- 🚫 Story 2: blocked" in text
        assert "## Blocker\n\nNo ready stories" in text
        assert "## Pending Question\n\nWhich IdP?" in text
        assert "`claw resume auth`" in text

    def test_parse_without_data_block(self):
        assert parse_checkpoint("# Session Checkpoint\n\nnothing here\n") is None

    def test_snapshot_omits_agent_settings(self):
        cp = snapshot(make_feature(), make_state(), SessionConfig(skip_permissions=True, max_turns=9))
        assert "skip_permissions" not in cp.config
        assert "max_turns" not in cp.config
        assert cp.story_progress["1"] == {"status": "complete", "iterations": 2, "pr": 7}


class TestCheckpointStore:
    """Tests for CheckpointStore persistence."""

    def test_save_load_delete(self, store, tmp_path):
        assert store.save(make_feature(), make_state(total_iterations=4), SessionConfig(max_stories=3))
        assert (tmp_path / PROJECT / "features" / "auth" / "_checkpoint.md").exists()

        cp = store.load("auth")
        assert cp.feature_id == "auth"
        assert cp.status == SessionStatus.PAUSED
        assert cp.config["max_stories"] == 3

        state = cp.to_session_state()
        assert state.total_iterations == 4
        assert state.start_time == datetime(2026, 3, 1, 9, 0)

        assert store.delete("auth") is True
        assert store.exists("auth") is False
        assert store.delete("auth") is False

    def test_load_missing(self, store):
        assert store.load("nope") is None

    def test_load_invalid_json(self, store, tmp_path):
        path = tmp_path / PROJECT / "features" / "auth" / "_checkpoint.md"
        path.parent.mkdir(parents=True)
        path.write_text("## Checkpoint Data\n\n```json\n{not json\n```\n")
        assert store.load("auth") is None

    def test_load_schema_violation(self, store, tmp_path):
        path = tmp_path / PROJECT / "features" / "auth" / "_checkpoint.md"
        path.parent.mkdir(parents=True)
        path.write_text('```json\n{"feature_id": "auth"}\n```\n')
        assert store.load("auth") is None

    def test_save_refuses_invalid_data(self, store):
        state = make_state(stories_completed=-1)
        assert store.save(make_feature(), state, SessionConfig()) is False
        assert store.exists("auth") is False


class TestResumability:
    """Tests for is_resumable() and get_remaining_time()."""

    @pytest.mark.parametrize("status,expected", [
        ("paused", True),
        ("running", True),
        ("blocked", True),
        ("completed", False),
        ("timeout", False),
        ("error", False),
    ])
    def test_is_resumable(self, status, expected):
        cp = CheckpointData(feature_id="auth", session_state={"status": status}, config={})
        assert CheckpointStore.is_resumable(cp) is expected

    def test_remaining_time(self):
        cp = CheckpointData(
            feature_id="auth",
            session_state={"start_time": "2026-03-01T09:00:00"},
            config={"max_hours": 2.0},
        )
        assert CheckpointStore.get_remaining_time(cp, now=datetime(2026, 3, 1, 10, 30)) == pytest.approx(0.5)

    def test_remaining_time_never_negative(self):
        cp = CheckpointData(
            feature_id="auth",
            session_state={"start_time": "2026-03-01T09:00:00"},
            config={"max_hours": 1.0},
        )
        assert CheckpointStore.get_remaining_time(cp, now=datetime(2026, 3, 2, 9, 0)) == 0.0

    def test_no_deadline(self):
        cp = CheckpointData(feature_id="auth", session_state={"start_time": "2026-03-01T09:00:00"},
                            config={"max_hours": None})
        assert CheckpointStore.get_remaining_time(cp) is None
