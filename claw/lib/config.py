"""
Configuration loaders for claw.

Workspace settings come from workspace.env at the workspace root; session
budgets are assembled from those defaults plus CLI overrides.
"""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from . import envparse

logger = logging.getLogger(__name__)

WORKSPACE_FILE = "workspace.env"

DEFAULT_MODEL = "sonnet"
VALID_MODELS = ("sonnet", "opus", "haiku")

MAX_HOURS_WARNING = 24
MAX_ITERATIONS_WARNING = 10


class ConfigError(Exception):
    """Workspace configuration is missing or invalid."""
    pass


@dataclass
class WorkspaceConfig:
    """Workspace-level configuration from workspace.env"""
    name: str
    root: Path
    vault_path: Path
    project_path: str  # Logical path inside the vault, e.g. "Projects/claw"
    repos: dict[str, Path]  # Repository name -> absolute path
    default_branch: str = "main"
    model: str = DEFAULT_MODEL
    max_hours: float | None = 4.0
    max_stories: int | None = None
    agent_timeout: int = 30 * 60  # seconds
    max_turns: int = 50
    max_iterations: int = 5
    retry_initial_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff: float = 2.0
    skip_permissions: bool = False
    create_prs: bool = False

    def repo_path(self, name: str) -> Path:
        """Resolve a story's repo name to a path (unknown names raise ConfigError)."""
        if name not in self.repos:
            raise ConfigError(f"Unknown repository '{name}' (known: {', '.join(self.repos) or 'none'})")
        return self.repos[name]


@dataclass
class SessionConfig:
    """Budgets and modes for one run of the session loop."""
    max_hours: float | None = None  # None = no deadline
    max_stories: int | None = None
    stop_on_blocker: bool = False
    pause_between_stories: bool = False
    model: str = DEFAULT_MODEL
    iterate_until_green: bool = False
    max_iterations: int = 5
    create_pr_per_story: bool = False
    create_pr_on_complete: bool = False
    # Agent pass-through, not checkpointed
    skip_permissions: bool = False
    max_turns: int = 50
    agent_timeout: int = 30 * 60
    fatal_errors: list[str] = field(default_factory=list)

    def validate(self) -> None:
        """Reject budgets that would end a session before its first story.

        Raises:
            ConfigError: on a non-positive budget or an unknown model
        """
        if self.max_hours is not None and self.max_hours <= 0:
            raise ConfigError(f"max_hours must be a positive number, got {self.max_hours:g}")
        if self.max_stories is not None and self.max_stories <= 0:
            raise ConfigError(f"max_stories must be a positive number, got {self.max_stories}")
        if self.max_iterations <= 0:
            raise ConfigError(f"max_iterations must be a positive number, got {self.max_iterations}")
        if self.model not in VALID_MODELS:
            raise ConfigError(f"model must be one of {', '.join(VALID_MODELS)}, got '{self.model}'")

        if self.max_hours is not None and self.max_hours > MAX_HOURS_WARNING:
            logger.warning(f"Session budget of {self.max_hours:g}h; consider splitting into shorter sessions")
        if self.max_iterations > MAX_ITERATIONS_WARNING:
            logger.warning(f"max_iterations={self.max_iterations} is high; story scope may be unclear")

    def to_checkpoint(self) -> dict:
        """Subset of fields needed to resume a session."""
        return {name: getattr(self, name) for name in CHECKPOINT_CONFIG_FIELDS}

    @classmethod
    def from_checkpoint(cls, data: dict, **overrides) -> "SessionConfig":
        """Rebuild a config from checkpoint data, applying non-None overrides."""
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        config = cls(**values)
        return replace(config, **{k: v for k, v in overrides.items() if v is not None})


CHECKPOINT_CONFIG_FIELDS = (
    "max_hours",
    "max_stories",
    "stop_on_blocker",
    "pause_between_stories",
    "model",
    "iterate_until_green",
    "max_iterations",
    "create_pr_per_story",
    "create_pr_on_complete",
)


def find_workspace_root(start: Path) -> Path | None:
    """Walk up from `start` looking for workspace.env."""
    current = start.resolve()
    while True:
        if (current / WORKSPACE_FILE).exists():
            return current
        if current.parent == current:
            return None
        current = current.parent


def load_workspace_config(root: Path) -> WorkspaceConfig:
    """Load workspace.env and return WorkspaceConfig.

    Raises:
        ConfigError: if the file is missing, unparsable or incomplete
    """
    env_path = root / WORKSPACE_FILE
    try:
        env = envparse.load_env(env_path)
    except FileNotFoundError:
        raise ConfigError(f"No {WORKSPACE_FILE} found in {root}") from None
    except ValueError as e:
        raise ConfigError(f"{env_path}: {e}") from None

    if "VAULT_PATH" not in env:
        raise ConfigError(f"{env_path}: VAULT_PATH is required")

    try:
        repos = {
            name: (root / path).resolve()
            for name, path in envparse.get_mapping(env, "REPOS").items()
        }
        if not repos:
            repos = {root.name: root.resolve()}

        max_hours = envparse.get_float(env, "MAX_HOURS", 4.0)
        model = env.get("MODEL", DEFAULT_MODEL)
        if model not in VALID_MODELS:
            raise ValueError(f"MODEL must be one of {', '.join(VALID_MODELS)}, got '{model}'")

        return WorkspaceConfig(
            name=env.get("WORKSPACE_NAME", root.name),
            root=root,
            vault_path=Path(env["VAULT_PATH"]).expanduser(),
            project_path=env.get("PROJECT_PATH", f"Projects/{root.name}"),
            repos=repos,
            default_branch=env.get("DEFAULT_BRANCH", "main"),
            model=model,
            max_hours=max_hours if max_hours and max_hours > 0 else None,
            max_stories=envparse.get_int(env, "MAX_STORIES"),
            agent_timeout=envparse.get_int(env, "AGENT_TIMEOUT", 30 * 60),
            max_turns=envparse.get_int(env, "MAX_TURNS", 50),
            max_iterations=envparse.get_int(env, "MAX_ITERATIONS", 5),
            retry_initial_delay=envparse.get_float(env, "RETRY_INITIAL_DELAY", 1.0),
            retry_max_delay=envparse.get_float(env, "RETRY_MAX_DELAY", 30.0),
            retry_backoff=envparse.get_float(env, "RETRY_BACKOFF", 2.0),
            skip_permissions=envparse.get_bool(env, "SKIP_PERMISSIONS"),
            create_prs=envparse.get_bool(env, "CREATE_PRS"),
        )
    except ValueError as e:
        raise ConfigError(f"{env_path}: {e}") from None
