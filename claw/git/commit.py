"""Git staging, commit and soft-reset operations."""

from pathlib import Path

from claw.git.runner import run_git, GitResult


def stage_files(repo: Path, files: list[str]) -> GitResult:
    """Stage specific files."""
    return run_git(["add", "--"] + files, repo)


def stage_all(repo: Path) -> GitResult:
    """Stage all changes (new, modified, deleted)."""
    return run_git(["add", "-A"], repo)


def get_staged_files(repo: Path) -> list[str]:
    """List files currently staged for commit. Empty on failure."""
    result = run_git(["diff", "--cached", "--name-only"], repo)
    if not result.success:
        return []
    return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def commit(repo: Path, message: str) -> GitResult:
    """Create a commit with the given message."""
    return run_git(["commit", "-m", message], repo)


def soft_reset(repo: Path, count: int = 1) -> GitResult:
    """Undo the last `count` commits, keeping their changes staged."""
    return run_git(["reset", "--soft", f"HEAD~{count}"], repo)
