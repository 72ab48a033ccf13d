"""Git operations for claw.

Return type conventions:
- Functions returning GitResult: Caller must check .success before using output.
  Examples: stage_files(), commit(), soft_reset()
- Functions returning parsed values (str, list): Return None/empty on failure.
  Examples: get_commit_sha() -> None, get_staged_files() -> []
- coordinated_commit() never raises; inspect the per-repo results.
"""

from claw.git.runner import run_git, GitResult
from claw.git.branch import (
    get_current_branch,
    get_commit_sha,
    get_log_oneline,
)
from claw.git.commit import (
    stage_files,
    stage_all,
    get_staged_files,
    commit,
    soft_reset,
)
from claw.git.coordinated import (
    CommitStatus,
    RepoChange,
    RepoCommitResult,
    CoordinatedCommitResult,
    coordinated_commit,
    ROLLED_BACK_REASON,
)

__all__ = [
    "run_git",
    "GitResult",
    # branch
    "get_current_branch",
    "get_commit_sha",
    "get_log_oneline",
    # commit
    "stage_files",
    "stage_all",
    "get_staged_files",
    "commit",
    "soft_reset",
    # coordinated
    "CommitStatus",
    "RepoChange",
    "RepoCommitResult",
    "CoordinatedCommitResult",
    "coordinated_commit",
    "ROLLED_BACK_REASON",
]
