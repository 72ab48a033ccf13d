"""
Claude agent integration for claw.

Claude is the execution agent: it receives one story prompt per invocation,
works in the repository, and reports back through CLAW_* marker lines.
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

from claw.lib.agents_config import AgentsConfig, get_stage_command
from claw.lib.prompts import render_prompt

logger = logging.getLogger(__name__)

STATUS_COMPLETE = "CLAW_STATUS: COMPLETE"
STATUS_BLOCKED = "CLAW_STATUS: BLOCKED"
STATUS_NEEDS_INPUT = "CLAW_STATUS: NEEDS_INPUT"
COMMIT_MARKER = "CLAW_COMMIT:"
PR_MARKER = "CLAW_PR:"

SKIP_PERMISSIONS_FLAG = "--dangerously-skip-permissions"


class AgentStatus(Enum):
    COMPLETE = "complete"
    BLOCKED = "blocked"
    NEEDS_INPUT = "needs_input"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass
class InvokeOptions:
    model: str = "sonnet"
    max_turns: int = 50
    timeout: float = 30 * 60  # seconds
    skip_permissions: bool = False


@dataclass
class AgentOutcome:
    status: AgentStatus
    commits: list[str] = field(default_factory=list)
    pr: Optional[int] = None
    error: Optional[str] = None
    blocker_reason: Optional[str] = None
    question: Optional[str] = None
    raw_output: str = ""

    @property
    def failure_reason(self) -> str | None:
        """Best single-line description of why this outcome is not a success."""
        if self.status == AgentStatus.COMPLETE:
            return None
        return self.error or self.blocker_reason or self.question or self.status.value


class ExecutionAgent(Protocol):
    def invoke(self, prompt: str, options: InvokeOptions) -> AgentOutcome: ...

    def ask(self, question: str, context: str) -> str: ...


def _after(line: str, marker: str) -> str:
    return line.split(marker, 1)[1].strip()


def parse_output(raw_output: str) -> AgentOutcome:
    """Parse CLAW_* markers from agent output.

    The last status line wins. Output with no status line is an error, since
    the agent stopped without saying whether the story is done.
    """
    outcome = AgentOutcome(status=AgentStatus.ERROR, raw_output=raw_output)
    seen_status = False

    for line in raw_output.splitlines():
        if STATUS_COMPLETE in line:
            outcome.status = AgentStatus.COMPLETE
            seen_status = True
        elif STATUS_BLOCKED in line:
            outcome.status = AgentStatus.BLOCKED
            outcome.blocker_reason = _after(line, STATUS_BLOCKED) or "no reason given"
            seen_status = True
        elif STATUS_NEEDS_INPUT in line:
            outcome.status = AgentStatus.NEEDS_INPUT
            outcome.question = _after(line, STATUS_NEEDS_INPUT)
            seen_status = True
        elif COMMIT_MARKER in line:
            ref = _after(line, COMMIT_MARKER)
            if ref:
                outcome.commits.append(ref)
        elif PR_MARKER in line:
            try:
                outcome.pr = int(_after(line, PR_MARKER).lstrip("#").split()[0])
            except (ValueError, IndexError):
                logger.warning(f"Ignoring malformed PR marker: {line.strip()}")

    if not seen_status:
        outcome.error = "Agent exited without a CLAW_STATUS line"
    return outcome


class ClaudeAgent:
    """Runs the `claude` CLI (or the configured execute command) in a repository."""

    def __init__(self, cwd: Path, agents_config: AgentsConfig | None = None):
        self.cwd = cwd
        self.agents_config = agents_config or AgentsConfig()

    def _run(self, stage: str, prompt: str, context: dict, timeout: float,
             skip_permissions: bool = False) -> subprocess.CompletedProcess:
        stage_cmd = get_stage_command(self.agents_config, stage, context)
        cmd = list(stage_cmd.cmd)
        if skip_permissions and SKIP_PERMISSIONS_FLAG not in cmd:
            cmd.append(SKIP_PERMISSIONS_FLAG)

        # Remove ANTHROPIC_API_KEY so Claude uses OAuth credentials instead
        env = {k: v for k, v in os.environ.items() if k != "ANTHROPIC_API_KEY"}

        logger.debug(f"Running agent: {' '.join(cmd)} (timeout {timeout:.0f}s)")
        return subprocess.run(
            cmd,
            cwd=str(self.cwd),
            input=stage_cmd.get_stdin_input(prompt),
            capture_output=True,
            text=True,
            timeout=timeout,
            env=env,
        )

    def invoke(self, prompt: str, options: InvokeOptions) -> AgentOutcome:
        """Run one story prompt and parse the result.

        Never raises for agent failures: timeouts, a missing binary and
        non-zero exits all come back as outcomes.
        """
        context = {"model": options.model, "max_turns": str(options.max_turns)}
        try:
            result = self._run("execute", prompt, context, options.timeout,
                               skip_permissions=options.skip_permissions)
        except subprocess.TimeoutExpired as e:
            output = e.stdout.decode() if isinstance(e.stdout, bytes) else (e.stdout or "")
            return AgentOutcome(
                status=AgentStatus.TIMEOUT,
                error=f"Agent timed out after {options.timeout:.0f}s",
                raw_output=output,
            )
        except FileNotFoundError as e:
            return AgentOutcome(status=AgentStatus.ERROR, error=f"Agent command not found: {e.filename}")

        if result.returncode != 0:
            stderr = result.stderr.strip()
            outcome = parse_output(result.stdout)
            return AgentOutcome(
                status=AgentStatus.ERROR,
                commits=outcome.commits,
                pr=outcome.pr,
                error=stderr or f"Agent exited with code {result.returncode}",
                raw_output=result.stdout,
            )

        return parse_output(result.stdout)

    def ask(self, question: str, context: str) -> str:
        """One-shot question about the session. Returns the answer text or an ERROR line."""
        prompt = render_prompt("ask", question=question, context=context)
        try:
            result = self._run("ask", prompt, {"model": "haiku"}, timeout=120)
        except subprocess.TimeoutExpired:
            return "ERROR: Question timed out"
        except FileNotFoundError as e:
            return f"ERROR: Agent command not found: {e.filename}"

        if result.returncode != 0:
            return f"ERROR: Claude failed with exit code {result.returncode}\n{result.stderr}"
        return result.stdout.strip()
