"""Single entry point for git subprocesses.

Every git call in claw goes through run_git() so failures come back as data:
a hung command or a missing git binary is a failed GitResult, never an
exception. Callers branch on `.success` and report `.error`.
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path

DEFAULT_TIMEOUT = 30  # seconds


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return not self.timed_out and self.returncode == 0

    @property
    def error(self) -> str:
        """stderr, or stdout when git printed its complaint there. Empty on success."""
        if self.success:
            return ""
        return self.stderr.strip() or self.stdout.strip()


def _failed(message: str, timed_out: bool = False) -> GitResult:
    return GitResult(returncode=-1, stdout="", stderr=message, timed_out=timed_out)


def run_git(args: list[str], cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GitResult:
    """Run `git -C <cwd> <args...>` and capture its output as text."""
    try:
        proc = subprocess.run(
            ["git", "-C", str(cwd), *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return _failed(f"git {args[0] if args else ''} timed out after {timeout}s", timed_out=True)
    except FileNotFoundError:
        return _failed("git executable not found")
    return GitResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)
