"""Git branch and ref queries."""

from pathlib import Path

from claw.git.runner import run_git


def get_current_branch(repo: Path) -> str | None:
    """Get the current branch name, or None if detached HEAD."""
    result = run_git(["branch", "--show-current"], repo)
    if result.success:
        return result.stdout.strip() or None
    return None


def get_commit_sha(repo: Path, ref: str = "HEAD") -> str | None:
    """Get the SHA of a ref."""
    result = run_git(["rev-parse", ref], repo)
    if result.success:
        return result.stdout.strip()
    return None


def get_log_oneline(repo: Path, ref_range: str = "HEAD", limit: int = 20) -> list[str]:
    """Get `sha subject` lines for a ref range, newest first."""
    result = run_git(["log", "--oneline", f"-{limit}", ref_range], repo)
    if not result.success:
        return []
    return [line for line in result.stdout.splitlines() if line.strip()]
