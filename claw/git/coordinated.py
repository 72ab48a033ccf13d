"""Coordinated commits across several repositories.

Stages and commits the same logical change in every repository, then undoes
the commits that did land if any repository failed. This is best effort:
failures are detected after the fact and rolled back with a soft reset, so a
crash in the middle of a rollback can still leave some repositories committed.
A repository whose rollback fails is reported as ROLLBACK_FAILED instead of
being folded into the generic failure.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from claw.git.branch import get_commit_sha
from claw.git.commit import commit, get_staged_files, soft_reset, stage_all, stage_files

logger = logging.getLogger(__name__)

ROLLED_BACK_REASON = "rolled back due to failure in another repository"
NO_CHANGES_REASON = "no changes"


class CommitStatus(Enum):
    COMMITTED = "committed"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


@dataclass
class RepoChange:
    """Files to commit in one repository. Empty `files` means all changes."""
    repo: Path
    files: list[str] = field(default_factory=list)
    name: str = ""

    @property
    def label(self) -> str:
        return self.name or self.repo.name


@dataclass
class RepoCommitResult:
    repo: Path
    name: str
    status: CommitStatus
    sha: str | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.status in (CommitStatus.COMMITTED, CommitStatus.NO_CHANGES)


@dataclass
class CoordinatedCommitResult:
    results: list[RepoCommitResult]

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def committed(self) -> list[RepoCommitResult]:
        return [r for r in self.results if r.status == CommitStatus.COMMITTED]

    @property
    def partial_rollback(self) -> bool:
        """True when at least one rollback failed and history is inconsistent."""
        return any(r.status == CommitStatus.ROLLBACK_FAILED for r in self.results)


def _commit_one(change: RepoChange, message: str) -> RepoCommitResult:
    name = change.label
    staged = stage_files(change.repo, change.files) if change.files else stage_all(change.repo)
    if not staged.success:
        return RepoCommitResult(change.repo, name, CommitStatus.FAILED,
                                error=f"stage failed: {staged.error}")

    if not get_staged_files(change.repo):
        return RepoCommitResult(change.repo, name, CommitStatus.NO_CHANGES, error=None)

    result = commit(change.repo, message)
    if not result.success:
        return RepoCommitResult(change.repo, name, CommitStatus.FAILED,
                                error=f"commit failed: {result.error}")

    return RepoCommitResult(change.repo, name, CommitStatus.COMMITTED,
                            sha=get_commit_sha(change.repo))


def coordinated_commit(changes: list[RepoChange], message: str) -> CoordinatedCommitResult:
    """Commit `message` in every repository, rolling back on partial failure.

    Every repository is attempted even after a failure. If at least one
    repository failed and at least one committed, each committed repository
    is soft-reset by one commit and reported as rolled back.
    """
    results = [_commit_one(change, message) for change in changes]

    for r in results:
        if r.status == CommitStatus.COMMITTED:
            logger.info(f"[COMMIT] {r.name}: {r.sha}")
        elif r.status == CommitStatus.FAILED:
            logger.warning(f"[COMMIT] {r.name}: {r.error}")

    failed = [r for r in results if r.status == CommitStatus.FAILED]
    committed = [r for r in results if r.status == CommitStatus.COMMITTED]
    if not failed or not committed:
        return CoordinatedCommitResult(results)

    logger.warning(
        f"[COMMIT] {len(failed)} repo(s) failed, rolling back {len(committed)} committed repo(s)"
    )
    for r in committed:
        reset = soft_reset(r.repo)
        if reset.success:
            r.status = CommitStatus.ROLLED_BACK
            r.error = ROLLED_BACK_REASON
        else:
            logger.error(f"[COMMIT] {r.name}: rollback of {r.sha} failed: {reset.error}")
            r.status = CommitStatus.ROLLBACK_FAILED
            r.error = f"rollback failed: {reset.error}"

    # Nothing to undo for these, but the change as a whole did not land
    for r in results:
        if r.status == CommitStatus.NO_CHANGES:
            r.status = CommitStatus.ROLLED_BACK
            r.error = ROLLED_BACK_REASON

    return CoordinatedCommitResult(results)
