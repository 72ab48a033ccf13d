"""Tests for claw.git module."""

import subprocess
from pathlib import Path
from unittest.mock import patch, MagicMock

from claw.git.runner import run_git, GitResult
from claw.git.branch import get_current_branch, get_commit_sha, get_log_oneline
from claw.git.commit import get_staged_files, stage_files, soft_reset


class TestGitResult:
    """Test GitResult dataclass."""

    def test_success_when_returncode_zero(self):
        result = GitResult(returncode=0, stdout="ok", stderr="")
        assert result.success is True
        assert result.error == ""

    def test_failure_when_returncode_nonzero(self):
        result = GitResult(returncode=1, stdout="", stderr="error\n")
        assert result.success is False
        assert result.error == "error"

    def test_error_falls_back_to_stdout(self):
        result = GitResult(returncode=1, stdout="nothing to commit\n", stderr="")
        assert result.error == "nothing to commit"

    def test_failure_when_timed_out(self):
        result = GitResult(returncode=0, stdout="ok", stderr="", timed_out=True)
        assert result.success is False


class TestRunGit:
    """Test run_git function."""

    @patch("claw.git.runner.subprocess.run")
    def test_returns_result_on_success(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="output", stderr="")
        result = run_git(["status"], Path("/tmp"))
        assert result.success
        assert result.stdout == "output"
        mock_run.assert_called_once()

    @patch("claw.git.runner.subprocess.run")
    def test_handles_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="git", timeout=30)
        result = run_git(["status"], Path("/tmp"))
        assert not result.success
        assert result.timed_out
        assert "timed out" in result.stderr

    @patch("claw.git.runner.subprocess.run")
    def test_handles_missing_git(self, mock_run):
        mock_run.side_effect = FileNotFoundError("git")
        result = run_git(["status"], Path("/tmp"))
        assert not result.success
        assert "not found" in result.error

    @patch("claw.git.runner.subprocess.run")
    def test_passes_cwd_with_C_flag(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        run_git(["status", "--porcelain"], Path("/my/repo"))
        call_args = mock_run.call_args[0][0]
        assert call_args == ["git", "-C", "/my/repo", "status", "--porcelain"]


class TestBranchQueries:
    """Test branch and ref helpers."""

    @patch("claw.git.branch.run_git")
    def test_current_branch(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="feature/auth\n", stderr="")
        assert get_current_branch(Path("/tmp")) == "feature/auth"

    @patch("claw.git.branch.run_git")
    def test_detached_head(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="\n", stderr="")
        assert get_current_branch(Path("/tmp")) is None

    @patch("claw.git.branch.run_git")
    def test_commit_sha_failure(self, mock_run):
        mock_run.return_value = GitResult(returncode=128, stdout="", stderr="bad ref")
        assert get_commit_sha(Path("/tmp"), "nope") is None

    @patch("claw.git.branch.run_git")
    def test_log_oneline(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="abc123 Add login\ndef456 Init\n", stderr="")
        assert get_log_oneline(Path("/tmp"), "main..HEAD", limit=5) == ["abc123 Add login", "def456 Init"]
        assert mock_run.call_args[0][0] == ["log", "--oneline", "-5", "main..HEAD"]


class TestCommitHelpers:
    """Test staging and reset helpers."""

    @patch("claw.git.commit.run_git")
    def test_stage_files_uses_separator(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="", stderr="")
        stage_files(Path("/tmp"), ["-weird.txt", "a.py"])
        assert mock_run.call_args[0][0] == ["add", "--", "-weird.txt", "a.py"]

    @patch("claw.git.commit.run_git")
    def test_staged_files(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="a.py\nsrc/b.py\n\n", stderr="")
        assert get_staged_files(Path("/tmp")) == ["a.py", "src/b.py"]

    @patch("claw.git.commit.run_git")
    def test_staged_files_empty_on_failure(self, mock_run):
        mock_run.return_value = GitResult(returncode=1, stdout="a.py\n", stderr="boom")
        assert get_staged_files(Path("/tmp")) == []

    @patch("claw.git.commit.run_git")
    def test_soft_reset(self, mock_run):
        mock_run.return_value = GitResult(returncode=0, stdout="", stderr="")
        soft_reset(Path("/tmp"), 2)
        assert mock_run.call_args[0][0] == ["reset", "--soft", "HEAD~2"]
