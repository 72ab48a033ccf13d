"""
claw run - Execute a feature's stories in dependency order.
"""

import logging
import sys

from rich.console import Console

from claw.agents.claude import ClaudeAgent
from claw.features.models import STORY_IN_PROGRESS, STORY_PENDING, Feature
from claw.features.store import FeatureStore
from claw.lib.agents_config import AgentsConfig, check_binary_available, get_stage_binary, load_agents_config
from claw.lib.config import SessionConfig, WorkspaceConfig
from claw.lib.validate import ValidationError
from claw.lib.vault import Vault
from claw.notifications import notify_blocked, notify_complete, notify_needs_input, notify_stopped
from claw.workflow.checkpoint import CheckpointStore
from claw.workflow.interrupts import HotkeyListener, InterruptChannel
from claw.workflow.iteration import IterationConfig
from claw.workflow.session import ConsolePrompt, SessionRunner
from claw.workflow.state_machine import SessionState, SessionStatus

logger = logging.getLogger(__name__)


class SessionEnvironment:
    """Stores, agent and terminal plumbing shared by run and resume."""

    def __init__(self, workspace: WorkspaceConfig, console: Console | None = None, assume_yes: bool = False):
        self.workspace = workspace
        self.console = console or Console()
        self.vault = Vault(workspace.vault_path)
        self.features = FeatureStore(self.vault, workspace.project_path)
        self.checkpoints = CheckpointStore(self.vault, workspace.project_path)
        self.agents_config: AgentsConfig = load_agents_config(workspace.root)
        self.channel = InterruptChannel()
        self.listener = HotkeyListener(self.channel)
        interactive = sys.stdin.isatty() and not assume_yes
        self.operator = ConsolePrompt(self.console, self.listener, assume_yes=not interactive)

    def check_agent(self) -> bool:
        binary = get_stage_binary(self.agents_config, "execute")
        if not check_binary_available(binary):
            print(f"ERROR: Agent binary '{binary}' not found on PATH")
            return False
        return True

    def load_feature(self, feature_id: str) -> Feature | None:
        try:
            feature = self.features.load_feature(feature_id)
        except ValidationError as e:
            print(f"ERROR: {e}")
            return None
        if feature is None:
            print(f"ERROR: Feature '{feature_id}' not found under {self.workspace.project_path}")
        return feature

    def agent_overrides(self) -> dict:
        """Agent settings that always come from the workspace, never the checkpoint."""
        ws = self.workspace
        return {
            "skip_permissions": ws.skip_permissions,
            "max_turns": ws.max_turns,
            "agent_timeout": ws.agent_timeout,
            "fatal_errors": list(self.agents_config.fatal_errors),
        }

    def make_runner(self, feature: Feature, config: SessionConfig) -> SessionRunner:
        ws = self.workspace
        return SessionRunner(
            feature,
            config,
            ClaudeAgent(ws.root, self.agents_config),
            self.features,
            self.checkpoints,
            self.vault,
            operator=self.operator,
            interrupts=self.channel,
            console=self.console,
            repos=ws.repos,
            default_branch=ws.default_branch,
            iteration_defaults=IterationConfig(
                initial_delay=ws.retry_initial_delay,
                max_delay=ws.retry_max_delay,
                backoff_multiplier=ws.retry_backoff,
            ),
        )

    def start_hotkeys(self) -> None:
        if self.listener.start():
            self.console.print("[dim]Hotkeys active: p pause, s skip, q abort, ? ask, v pivot, "
                               "i status, h help[/dim]")


def session_config_from_args(args, workspace: WorkspaceConfig, agents_config: AgentsConfig) -> SessionConfig:
    """Workspace defaults with CLI flags on top.

    Raises:
        ConfigError: if the resulting budgets are invalid
    """
    hours = args.hours if args.hours is not None else workspace.max_hours
    config = SessionConfig(
        max_hours=hours if hours else None,
        max_stories=args.stories if args.stories is not None else workspace.max_stories,
        stop_on_blocker=bool(args.stop_on_blocker),
        pause_between_stories=not args.no_pause,
        model=args.model or workspace.model,
        iterate_until_green=bool(args.retry),
        max_iterations=args.max_retries if args.max_retries is not None else workspace.max_iterations,
        create_pr_per_story=bool(args.pr_per_story),
        create_pr_on_complete=bool(args.pr_on_complete) or workspace.create_prs,
        skip_permissions=workspace.skip_permissions,
        max_turns=workspace.max_turns,
        agent_timeout=workspace.agent_timeout,
        fatal_errors=list(agents_config.fatal_errors),
    )
    config.validate()
    return config


def exit_code(state: SessionState) -> int:
    return 0 if state.status == SessionStatus.COMPLETED else 1


def notify_session_end(state: SessionState) -> None:
    if state.status == SessionStatus.COMPLETED:
        notify_complete(state.feature_id, state.stories_completed)
    elif state.pending_question:
        notify_needs_input(state.feature_id, state.pending_question)
    elif state.status == SessionStatus.BLOCKED:
        notify_blocked(state.feature_id, state.blocker_reason or "no ready stories")
    else:
        notify_stopped(state.feature_id, state.status.value, state.blocker_reason)


def cmd_run(args, workspace: WorkspaceConfig) -> int:
    """Run a feature from its current story statuses."""
    env = SessionEnvironment(workspace, assume_yes=args.yes)

    feature = env.load_feature(args.feature)
    if feature is None:
        return 2
    if not env.check_agent():
        return 2

    config = session_config_from_args(args, workspace, env.agents_config)

    cp = env.checkpoints.load(feature.id)
    if cp is not None and env.checkpoints.is_resumable(cp):
        print(f"WARNING: Feature '{feature.id}' has a resumable checkpoint ({cp.status.value}).")
        print(f"  Starting fresh replaces it. To continue instead: claw resume {feature.id}")

    # Stories left in progress by a crashed run start over
    interrupted = [s for s in feature.stories if s.status == STORY_IN_PROGRESS]
    if interrupted:
        for story in interrupted:
            story.status = STORY_PENDING
        env.features.save_feature(feature)

    logger.info(f"[RUN] {feature.id}: {config}")

    env.start_hotkeys()
    try:
        state = env.make_runner(feature, config).run()
    finally:
        env.listener.stop()

    notify_session_end(state)
    return exit_code(state)
