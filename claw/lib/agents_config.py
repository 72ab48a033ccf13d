"""
Agent command configuration.

Loads agents.yaml from the workspace root to decide which CLI command runs
for each agent stage. Without a config file the defaults below are used.

STAGE COMMAND TEMPLATES
=======================

Templates support {variable} substitution. The caller provides a context dict.

- {prompt}:    If present, the prompt is passed as a CLI argument. If absent,
               the prompt goes via stdin (preferred for long story prompts).
- {model}:     Model alias (sonnet, opus, haiku).
- {max_turns}: Turn limit for the agent session.

Example agents.yaml:

    stages:
      execute: claude -p --model {model} --max-turns {max_turns} --verbose
    fatal_errors:
      - quota exhausted
"""

import logging
import re
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

AGENTS_FILE = "agents.yaml"

DEFAULT_STAGE_COMMANDS = {
    "execute": "claude -p --model {model} --max-turns {max_turns}",
    # Drive one story. Prompt via stdin.

    "ask": "claude -p --model {model} --max-turns 1",
    # One-shot operator question, no tool use expected.
}

STAGE_REQUIRED_VARIABLES = {
    "execute": ["model", "max_turns"],
    "ask": ["model"],
}

# Substrings (case-insensitive) that make an agent failure non-retryable
DEFAULT_FATAL_ERRORS = [
    "Permission denied",
    "Authentication failed",
    "Invalid API key",
    "Rate limit exceeded",
    "User aborted",
]


@dataclass
class AgentsConfig:
    """Agent configuration from agents.yaml."""
    stages: dict[str, str] = field(default_factory=lambda: DEFAULT_STAGE_COMMANDS.copy())
    fatal_errors: list[str] = field(default_factory=lambda: list(DEFAULT_FATAL_ERRORS))


def load_agents_config(workspace_dir: Optional[Path]) -> AgentsConfig:
    """Load agents.yaml and return AgentsConfig.

    Custom stages override defaults one by one; custom fatal errors are added
    to the default list. A missing or unparsable file yields the defaults.
    """
    if workspace_dir is None:
        return AgentsConfig()

    config_path = workspace_dir / AGENTS_FILE
    if not config_path.exists():
        return AgentsConfig()

    try:
        data = yaml.safe_load(config_path.read_text()) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return AgentsConfig()

    if not isinstance(data, dict):
        logger.warning(f"Ignoring {config_path}: expected a mapping at top level")
        return AgentsConfig()

    stages = DEFAULT_STAGE_COMMANDS.copy()
    stages.update(data.get("stages") or {})

    fatal_errors = list(DEFAULT_FATAL_ERRORS)
    for extra in data.get("fatal_errors") or []:
        if extra not in fatal_errors:
            fatal_errors.append(str(extra))

    return AgentsConfig(stages=stages, fatal_errors=fatal_errors)


@dataclass
class StageCommand:
    """Result of building a stage command."""
    cmd: list[str]  # Command ready for subprocess
    prompt_via_stdin: bool

    def get_stdin_input(self, prompt: str) -> str | None:
        """Return prompt if it should be passed via stdin, else None."""
        return prompt if self.prompt_via_stdin else None


def get_stage_command(
    config: AgentsConfig,
    stage: str,
    context: dict[str, str] | None = None,
) -> StageCommand:
    """Build command list for a stage with variable substitution.

    Raises:
        ValueError: If stage is unknown or required variables are missing.

    Example:
        >>> result = get_stage_command(AgentsConfig(), "execute", {"model": "opus", "max_turns": "50"})
        >>> result.cmd
        ['claude', '-p', '--model', 'opus', '--max-turns', '50']
    """
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")

    context = context or {}
    missing = [v for v in STAGE_REQUIRED_VARIABLES.get(stage, []) if v not in context]
    if missing:
        raise ValueError(f"Stage '{stage}' is missing variables: {missing}")

    cmd_template = config.stages[stage]
    prompt_via_stdin = "{prompt}" not in cmd_template

    prompt_value = context.get("prompt")
    if prompt_value is not None:
        cmd_template = cmd_template.replace("{prompt}", "__PROMPT_PLACEHOLDER__")

    for key, value in context.items():
        if key != "prompt":
            cmd_template = cmd_template.replace(f"{{{key}}}", str(value))

    remaining_vars = re.findall(r'\{(\w+)\}', cmd_template)
    if remaining_vars:
        logger.error(f"Stage '{stage}' has unsubstituted variables: {remaining_vars}")

    cmd = shlex.split(cmd_template)
    if prompt_value is not None:
        cmd = [prompt_value if arg == "__PROMPT_PLACEHOLDER__" else arg for arg in cmd]

    return StageCommand(cmd=cmd, prompt_via_stdin=prompt_via_stdin)


def get_stage_binary(config: AgentsConfig, stage: str) -> str:
    """Get the binary name for a stage (first element of command)."""
    if stage not in config.stages:
        raise ValueError(f"Unknown stage: {stage}")
    parts = shlex.split(config.stages[stage])
    return parts[0] if parts else ""


def check_binary_available(binary: str) -> bool:
    """Check if a binary is available in PATH."""
    return shutil.which(binary) is not None
