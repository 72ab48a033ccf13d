"""Tests for claw.agents.claude module."""

import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

from claw.agents.claude import (
    SKIP_PERMISSIONS_FLAG,
    AgentOutcome,
    AgentStatus,
    ClaudeAgent,
    InvokeOptions,
    parse_output,
)
from claw.lib.agents_config import AgentsConfig


class TestParseOutput:
    """Tests for parse_output() marker parsing."""

    def test_complete_with_commits_and_pr(self):
        outcome = parse_output(
            "Working...\n"
            "CLAW_COMMIT: abc123 Add login route\n"
            "CLAW_COMMIT: def456 Add tests\n"
            "CLAW_PR: #42\n"
            "CLAW_STATUS: COMPLETE\n"
        )
        assert outcome.status == AgentStatus.COMPLETE
        assert outcome.commits == ["abc123 Add login route", "def456 Add tests"]
        assert outcome.pr == 42
        assert outcome.error is None

    def test_blocked_with_reason(self):
        outcome = parse_output("CLAW_STATUS: BLOCKED database schema missing\n")
        assert outcome.status == AgentStatus.BLOCKED
        assert outcome.blocker_reason == "database schema missing"

    def test_blocked_without_reason(self):
        assert parse_output("CLAW_STATUS: BLOCKED").blocker_reason == "no reason given"

    def test_needs_input(self):
        outcome = parse_output("CLAW_STATUS: NEEDS_INPUT Which OAuth provider?")
        assert outcome.status == AgentStatus.NEEDS_INPUT
        assert outcome.question == "Which OAuth provider?"

    def test_last_status_wins(self):
        outcome = parse_output("CLAW_STATUS: BLOCKED flaky\nretrying\nCLAW_STATUS: COMPLETE\n")
        assert outcome.status == AgentStatus.COMPLETE

    def test_no_status_is_error(self):
        outcome = parse_output("I made some changes.\n")
        assert outcome.status == AgentStatus.ERROR
        assert "without a CLAW_STATUS line" in outcome.error
        assert outcome.raw_output == "I made some changes.\n"

    def test_malformed_pr_ignored(self):
        outcome = parse_output("CLAW_PR: soon\nCLAW_STATUS: COMPLETE\n")
        assert outcome.pr is None
        assert outcome.status == AgentStatus.COMPLETE

    def test_empty_commit_marker_ignored(self):
        assert parse_output("CLAW_COMMIT:\nCLAW_STATUS: COMPLETE").commits == []


class TestFailureReason:
    """Tests for AgentOutcome.failure_reason."""

    def test_complete_has_none(self):
        assert AgentOutcome(status=AgentStatus.COMPLETE).failure_reason is None

    def test_prefers_error_then_blocker(self):
        assert AgentOutcome(status=AgentStatus.ERROR, error="boom").failure_reason == "boom"
        assert AgentOutcome(status=AgentStatus.BLOCKED, blocker_reason="x").failure_reason == "x"
        assert AgentOutcome(status=AgentStatus.TIMEOUT).failure_reason == "timeout"


class TestInvoke:
    """Tests for ClaudeAgent.invoke() with a mocked subprocess."""

    @patch("claw.agents.claude.subprocess.run")
    def test_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="CLAW_STATUS: COMPLETE\n", stderr="")
        agent = ClaudeAgent(Path("/repo"))

        outcome = agent.invoke("## Story 1: x", InvokeOptions(model="opus", max_turns=10, timeout=60))

        assert outcome.status == AgentStatus.COMPLETE
        cmd = mock_run.call_args[0][0]
        assert cmd == ["claude", "-p", "--model", "opus", "--max-turns", "10"]
        kwargs = mock_run.call_args.kwargs
        assert kwargs["input"] == "## Story 1: x"
        assert kwargs["cwd"] == "/repo"
        assert kwargs["timeout"] == 60

    @patch("claw.agents.claude.subprocess.run")
    def test_strips_api_key(self, mock_run, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "secret")
        mock_run.return_value = MagicMock(returncode=0, stdout="CLAW_STATUS: COMPLETE", stderr="")
        ClaudeAgent(Path("/repo")).invoke("p", InvokeOptions())
        assert "ANTHROPIC_API_KEY" not in mock_run.call_args.kwargs["env"]

    @patch("claw.agents.claude.subprocess.run")
    def test_skip_permissions_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="CLAW_STATUS: COMPLETE", stderr="")
        ClaudeAgent(Path("/repo")).invoke("p", InvokeOptions(skip_permissions=True))
        assert mock_run.call_args[0][0][-1] == SKIP_PERMISSIONS_FLAG

    @patch("claw.agents.claude.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="claude", timeout=5, output=b"partial")
        outcome = ClaudeAgent(Path("/repo")).invoke("p", InvokeOptions(timeout=5))
        assert outcome.status == AgentStatus.TIMEOUT
        assert outcome.error == "Agent timed out after 5s"
        assert outcome.raw_output == "partial"

    @patch("claw.agents.claude.subprocess.run")
    def test_missing_binary(self, mock_run):
        mock_run.side_effect = FileNotFoundError(2, "No such file", "claude")
        outcome = ClaudeAgent(Path("/repo")).invoke("p", InvokeOptions())
        assert outcome.status == AgentStatus.ERROR
        assert outcome.error == "Agent command not found: claude"

    @patch("claw.agents.claude.subprocess.run")
    def test_nonzero_exit_keeps_commits(self, mock_run):
        mock_run.return_value = MagicMock(
            returncode=1,
            stdout="CLAW_COMMIT: abc Partial\n",
            stderr="Rate limit exceeded\n",
        )
        outcome = ClaudeAgent(Path("/repo")).invoke("p", InvokeOptions())
        assert outcome.status == AgentStatus.ERROR
        assert outcome.error == "Rate limit exceeded"
        assert outcome.commits == ["abc Partial"]

    @patch("claw.agents.claude.subprocess.run")
    def test_custom_execute_command(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="CLAW_STATUS: COMPLETE", stderr="")
        config = AgentsConfig(stages={"execute": "my-agent --m {model} --t {max_turns}"})
        ClaudeAgent(Path("/repo"), config).invoke("p", InvokeOptions(model="haiku", max_turns=3))
        assert mock_run.call_args[0][0] == ["my-agent", "--m", "haiku", "--t", "3"]


class TestAsk:
    """Tests for ClaudeAgent.ask()."""

    @patch("claw.agents.claude.subprocess.run")
    def test_answer(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="  Story 2 is next.\n", stderr="")
        answer = ClaudeAgent(Path("/repo")).ask("What is next?", "Feature: auth")
        assert answer == "Story 2 is next."
        prompt = mock_run.call_args.kwargs["input"]
        assert "What is next?" in prompt
        assert "Feature: auth" in prompt

    @patch("claw.agents.claude.subprocess.run")
    def test_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=2, stdout="", stderr="bad flag")
        assert ClaudeAgent(Path("/repo")).ask("q", "c").startswith("ERROR: Claude failed with exit code 2")

    @patch("claw.agents.claude.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="claude", timeout=120)
        assert ClaudeAgent(Path("/repo")).ask("q", "c") == "ERROR: Question timed out"
