"""
GitHub integration for the session loop.

Provides PR and issue helpers backed by the gh CLI. Read paths return None or
empty lists on failure and log a warning; create paths raise GitHubError so the
caller can record the failure against the story.
"""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

# Timeout for git push (seconds)
GIT_TIMEOUT_SECONDS = 60


class GitHubError(Exception):
    """A gh CLI operation failed."""
    pass


@dataclass
class PullRequest:
    number: int
    url: str
    branch: str = ""
    state: str = "open"


@dataclass
class Issue:
    number: int
    title: str
    state: str = "open"
    body: str = ""
    labels: list[str] = field(default_factory=list)
    url: str = ""


def _number_from_url(url: str) -> int | None:
    """Extract the trailing number from a PR or issue URL."""
    try:
        return int(url.rstrip("/").split("/")[-1])
    except (ValueError, IndexError):
        return None


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(
            ["gh", "--version"],
            capture_output=True,
            timeout=5,
        )
        if result.returncode != 0:
            return False, "GitHub CLI (gh) not installed\n  Install: https://cli.github.com/"

        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            return False, "GitHub CLI not authenticated\n  Run: gh auth login"

        return True, ""

    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"


class GitHubClient:
    """gh CLI wrapper bound to one repository checkout."""

    def __init__(self, repo_path: Path):
        self.repo_path = repo_path

    def _gh(self, args: list[str]) -> subprocess.CompletedProcess:
        """Run gh in the repository. Raises GitHubError on timeout or missing binary."""
        try:
            return subprocess.run(
                ["gh", *args],
                capture_output=True,
                text=True,
                cwd=str(self.repo_path),
                timeout=GH_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            raise GitHubError(f"gh {args[0]} timed out after {GH_TIMEOUT_SECONDS}s") from None
        except FileNotFoundError:
            raise GitHubError("GitHub CLI (gh) not found") from None

    def _gh_json(self, args: list[str]):
        result = self._gh(args)
        if result.returncode != 0:
            raise GitHubError(result.stderr.strip() or f"gh {' '.join(args[:2])} failed")
        try:
            return json.loads(result.stdout or "null")
        except json.JSONDecodeError:
            raise GitHubError("Invalid JSON from gh") from None

    def push_branch(self, branch: str, remote: str = "origin") -> tuple[bool, str]:
        """Push `branch` and set upstream.

        Returns: (success, error_message)
        """
        try:
            result = subprocess.run(
                ["git", "-C", str(self.repo_path), "push", "-u", remote, branch],
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            return False, "git push timed out"
        if result.returncode != 0:
            return False, f"Failed to push branch: {result.stderr.strip()}"
        return True, ""

    def get_default_branch(self) -> str | None:
        try:
            data = self._gh_json(["repo", "view", "--json", "defaultBranchRef"])
        except GitHubError as e:
            logger.warning(f"Could not determine default branch: {e}")
            return None
        return (data or {}).get("defaultBranchRef", {}).get("name")

    def get_existing_pr(self, branch: str) -> PullRequest | None:
        """Return the open PR whose head is `branch`, if any."""
        try:
            data = self._gh_json([
                "pr", "list", "--head", branch, "--state", "open",
                "--json", "number,url,headRefName,state",
            ])
        except GitHubError as e:
            logger.warning(f"Could not look up PR for {branch}: {e}")
            return None
        if not data:
            return None
        pr = data[0]
        return PullRequest(
            number=pr["number"],
            url=pr.get("url", ""),
            branch=pr.get("headRefName", branch),
            state=pr.get("state", "OPEN").lower(),
        )

    def create_pr(self, branch: str, base: str, title: str, body: str) -> PullRequest:
        """Create a PR from `branch` into `base`.

        Raises:
            GitHubError: if gh fails or its output has no PR URL
        """
        result = self._gh([
            "pr", "create",
            "--base", base,
            "--head", branch,
            "--title", title,
            "--body", body,
        ])
        if result.returncode != 0:
            raise GitHubError(f"Failed to create PR: {result.stderr.strip()}")

        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        number = _number_from_url(url)
        if number is None:
            raise GitHubError(f"Could not parse PR number from gh output: {result.stdout!r}")
        logger.info(f"Created PR #{number} for {branch}")
        return PullRequest(number=number, url=url, branch=branch)

    def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> Issue:
        args = ["issue", "create", "--title", title, "--body", body]
        for label in labels or []:
            args += ["--label", label]
        result = self._gh(args)
        if result.returncode != 0:
            raise GitHubError(f"Failed to create issue: {result.stderr.strip()}")

        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        number = _number_from_url(url)
        if number is None:
            raise GitHubError(f"Could not parse issue number from gh output: {result.stdout!r}")
        return Issue(number=number, title=title, body=body, labels=list(labels or []), url=url)

    def close_issue(self, number: int, comment: str | None = None) -> bool:
        args = ["issue", "close", str(number)]
        if comment:
            args += ["--comment", comment]
        try:
            result = self._gh(args)
        except GitHubError as e:
            logger.warning(f"Failed to close issue #{number}: {e}")
            return False
        if result.returncode != 0:
            logger.warning(f"Failed to close issue #{number}: {result.stderr.strip()}")
            return False
        return True

    def list_issues(self, state: str = "open", labels: list[str] | None = None) -> list[Issue]:
        args = ["issue", "list", "--state", state, "--json", "number,title,state,body,labels,url"]
        for label in labels or []:
            args += ["--label", label]
        try:
            data = self._gh_json(args)
        except GitHubError as e:
            logger.warning(f"Failed to list issues: {e}")
            return []
        return [_issue_from_json(item) for item in data or []]

    def get_issue(self, number: int) -> Issue | None:
        try:
            data = self._gh_json([
                "issue", "view", str(number), "--json", "number,title,state,body,labels,url",
            ])
        except GitHubError as e:
            logger.warning(f"Failed to fetch issue #{number}: {e}")
            return None
        return _issue_from_json(data) if data else None


def _issue_from_json(data: dict) -> Issue:
    return Issue(
        number=data["number"],
        title=data.get("title", ""),
        state=data.get("state", "OPEN").lower(),
        body=data.get("body", ""),
        labels=[label.get("name", "") for label in data.get("labels", [])],
        url=data.get("url", ""),
    )
