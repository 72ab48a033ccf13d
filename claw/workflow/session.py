"""
Session run-loop.

Executes a feature's stories one at a time in dependency order until the
graph is exhausted, a budget runs out, or the operator stops it.

Loop body while the session is running:
  1. Drain operator interrupts
  2. Deadline passed -> timeout
  3. Story budget reached -> completed
  4. Next ready story; none -> completed (all done) or blocked
  5. Optional operator confirmation between stories
  6. Run the story (iteration engine or one direct invocation)
  7. Dispatch on the outcome status through OUTCOME_HANDLERS
  8. Session-log entry + checkpoint

SessionState is immutable; every step returns a new value. Collaborators
travel in a SessionContext so handlers can be exercised without a terminal.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Protocol

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.markup import escape

from claw.agents.claude import AgentOutcome, AgentStatus, ExecutionAgent, InvokeOptions
from claw.features.models import (
    STORY_BLOCKED,
    STORY_COMPLETE,
    STORY_IN_PROGRESS,
    STORY_PENDING,
    STORY_SKIPPED,
    Feature,
    Story,
)
from claw.features.store import FeatureStore, session_log_path
from claw.git import RepoChange, coordinated_commit, get_current_branch
from claw.lib.config import SessionConfig
from claw.lib.github import GitHubClient, GitHubError
from claw.lib.prompts import build_story_prompt
from claw.lib.validate import ValidationError
from claw.lib.vault import DocumentStore, SessionLogEntry
from claw.workflow.checkpoint import CheckpointStore
from claw.workflow.dependencies import DependencyManager
from claw.workflow.interrupts import (
    HotkeyListener,
    InterruptChannel,
    InterruptCommand,
    help_text,
)
from claw.workflow.iteration import (
    INTERRUPTED_REASON,
    IterationConfig,
    IterationEngine,
    IterationResult,
    IterationState,
)
from claw.workflow.progress import ProgressReporter
from claw.workflow.state_machine import (
    SessionState,
    SessionStatus,
    can_transition,
    transition,
)

logger = logging.getLogger(__name__)

# Floor for the agent timeout when the session budget is nearly spent
MIN_AGENT_TIMEOUT = 0.1  # seconds

ABORT_REASON = "Aborted by operator"

PIVOT_REPRIORITIZE = "Reprioritize a story"
PIVOT_ADD_STORY = "Add a new story"
PIVOT_SKIP_REMAINING = "Skip all remaining stories"
PIVOT_RESTART = "Restart current story"
PIVOT_CANCEL = "Cancel"
PIVOT_CHOICES = [PIVOT_REPRIORITIZE, PIVOT_ADD_STORY, PIVOT_SKIP_REMAINING, PIVOT_RESTART, PIVOT_CANCEL]


class OperatorPrompt(Protocol):
    """Blocking questions to the human running the session."""

    def ask(self, message: str) -> Optional[str]: ...

    def confirm(self, message: str, default: bool = True) -> bool: ...

    def choose(self, message: str, choices: list[str]) -> Optional[str]: ...


class ConsolePrompt:
    """OperatorPrompt on a rich console.

    Suspends the hotkey listener while waiting so the terminal is back in
    line mode. With assume_yes, confirmations pass and questions get no answer.
    """

    def __init__(self, console: Console, listener: HotkeyListener | None = None,
                 assume_yes: bool = False):
        self.console = console
        self.listener = listener
        self.assume_yes = assume_yes

    def _prompt(self, fn: Callable[[], object]):
        if self.listener:
            self.listener.suspend()
        try:
            return fn()
        except EOFError:
            return None
        finally:
            if self.listener:
                self.listener.resume()

    def ask(self, message: str) -> Optional[str]:
        if self.assume_yes:
            return None
        answer = self._prompt(lambda: Prompt.ask(message, console=self.console, default=""))
        return answer.strip() if answer else None

    def confirm(self, message: str, default: bool = True) -> bool:
        if self.assume_yes:
            return True
        answer = self._prompt(lambda: Confirm.ask(message, console=self.console, default=default))
        return bool(answer) if answer is not None else default

    def choose(self, message: str, choices: list[str]) -> Optional[str]:
        if self.assume_yes or not choices:
            return None
        for i, choice in enumerate(choices, start=1):
            self.console.print(f"  [bold]{i}[/bold]  {choice}")
        picked = self._prompt(lambda: Prompt.ask(
            message, console=self.console, choices=[str(i) for i in range(1, len(choices) + 1)],
        ))
        return choices[int(picked) - 1] if picked else None


@dataclass
class StoryRun:
    """Normalized result of running one story."""
    story: Story
    outcome: AgentOutcome
    iterations: int
    reason: Optional[str] = None
    iteration_result: Optional[IterationResult] = None


@dataclass
class SessionContext:
    feature: Feature
    config: SessionConfig
    agent: ExecutionAgent
    features: FeatureStore
    checkpoints: CheckpointStore
    documents: DocumentStore
    scheduler: DependencyManager
    engine: IterationEngine
    progress: ProgressReporter
    operator: OperatorPrompt
    interrupts: InterruptChannel
    console: Console
    repos: dict[str, Path] = field(default_factory=dict)
    default_branch: str = "main"
    code_host: Callable[[Path], GitHubClient] = GitHubClient
    clock: Callable[[], datetime] = datetime.now
    deadline: Optional[datetime] = None
    stories_started: int = 0
    # Operator answers waiting to be threaded into a story's next prompt
    answers: dict[str, str] = field(default_factory=dict)
    results: list[IterationResult] = field(default_factory=list)

    @property
    def session_log(self) -> str:
        return session_log_path(self.features.project_path, self.feature.id)


# --- persistence helpers ---

def log_event(ctx: SessionContext, action: str, details: str) -> None:
    entry = SessionLogEntry(date=ctx.clock().strftime("%Y-%m-%d %H:%M"), action=action, details=details)
    try:
        ctx.documents.append_session_log(ctx.session_log, entry)
    except OSError as e:
        logger.warning(f"[SESSION] {ctx.feature.id}: session log append failed: {e}")


def update_story(ctx: SessionContext, story_id: str, **updates) -> None:
    """Update a story in the feature; persistence failures are logged and swallowed."""
    try:
        ctx.features.update_story(ctx.feature, story_id, **updates)
    except (OSError, ValidationError) as e:
        logger.error(f"[SESSION] {ctx.feature.id}: could not persist story {story_id}: {e}")


def save_feature(ctx: SessionContext) -> None:
    try:
        ctx.features.save_feature(ctx.feature)
    except (OSError, ValidationError) as e:
        logger.error(f"[SESSION] {ctx.feature.id}: could not persist feature: {e}")


def save_checkpoint(ctx: SessionContext, state: SessionState) -> None:
    if ctx.checkpoints.save(ctx.feature, state, ctx.config):
        ctx.progress.checkpoint(ctx.feature.id)


# --- outcome handlers ---

def handle_complete(ctx: SessionContext, state: SessionState, run: StoryRun) -> SessionState:
    story = run.story
    unblocked = ctx.scheduler.mark_complete(story.id)
    pr = run.outcome.pr
    if ctx.config.create_pr_per_story:
        pr = open_story_pr(ctx, story, run.outcome) or pr

    update_story(ctx, story.id, status=STORY_COMPLETE, iterations=story.iterations + run.iterations,
                 pr=pr if pr is not None else story.pr, notes=None)
    ctx.progress.story_complete(story.id, len(run.outcome.commits), run.iterations)
    details = f"Story {story.id} ({len(run.outcome.commits)} commits, {run.iterations} iterations)"
    if unblocked:
        details += f"; unblocked {', '.join(unblocked)}"
    log_event(ctx, "Story complete", details)

    prs = state.prs + ((pr,) if pr is not None and pr not in state.prs else ())
    return replace(
        state,
        stories_completed=state.stories_completed + 1,
        commits=state.commits + tuple(run.outcome.commits),
        prs=prs,
    )


def _mark_story_blocked(ctx: SessionContext, state: SessionState, run: StoryRun,
                        reason: str, action: str) -> SessionState:
    story = run.story
    ctx.scheduler.mark_blocked(story.id)
    update_story(ctx, story.id, status=STORY_BLOCKED, iterations=story.iterations + run.iterations,
                 notes=reason)
    ctx.progress.story_blocked(story.id, reason, run.iterations)
    log_event(ctx, action, f"Story {story.id}: {reason}")

    state = replace(
        state,
        stories_blocked=state.stories_blocked + 1,
        blocker_reason=reason,
        commits=state.commits + tuple(run.outcome.commits),
    )
    if ctx.config.stop_on_blocker:
        logger.info(f"[SESSION] {ctx.feature.id}: stopping on blocker ({story.id})")
        state = transition(state, SessionStatus.BLOCKED, reason=f"story {story.id} blocked")
    return state


def handle_blocked(ctx: SessionContext, state: SessionState, run: StoryRun) -> SessionState:
    reason = run.reason or run.outcome.blocker_reason or "blocked"
    return _mark_story_blocked(ctx, state, run, reason, "Story blocked")


def handle_failure(ctx: SessionContext, state: SessionState, run: StoryRun) -> SessionState:
    """Agent error or timeout. Counted as blocked."""
    reason = run.reason or run.outcome.failure_reason or run.outcome.status.value
    action = "Story timed out" if run.outcome.status == AgentStatus.TIMEOUT else "Story failed"
    return _mark_story_blocked(ctx, state, run, reason, action)


def handle_needs_input(ctx: SessionContext, state: SessionState, run: StoryRun) -> SessionState:
    """Pause, ask the operator, and retry the story with the answer in its prompt."""
    story = run.story
    question = run.outcome.question or "(no question given)"
    update_story(ctx, story.id, status=STORY_PENDING, iterations=story.iterations + run.iterations)
    ctx.scheduler.reset_story(story.id)

    state = transition(state, SessionStatus.PAUSED, reason="agent needs input")
    state = replace(state, pending_question=question)
    log_event(ctx, "Needs input", f"Story {story.id}: {question}")
    save_checkpoint(ctx, state)

    answer = ctx.operator.ask(f"Story {story.id} needs input: {question}\nAnswer")
    if not answer:
        logger.info(f"[SESSION] {ctx.feature.id}: no answer for {story.id}, staying paused")
        return state

    log_event(ctx, "Operator answer", f"Story {story.id}: {answer}")
    ctx.answers[story.id] = f"Question: {question}\nAnswer: {answer}"
    state = transition(state, SessionStatus.RUNNING, reason="operator answered")
    return replace(state, pending_question=None)


OutcomeHandler = Callable[[SessionContext, SessionState, StoryRun], SessionState]

OUTCOME_HANDLERS: dict[AgentStatus, OutcomeHandler] = {
    AgentStatus.COMPLETE: handle_complete,
    AgentStatus.BLOCKED: handle_blocked,
    AgentStatus.NEEDS_INPUT: handle_needs_input,
    AgentStatus.ERROR: handle_failure,
    AgentStatus.TIMEOUT: handle_failure,
}

_unhandled = set(AgentStatus) - set(OUTCOME_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No outcome handler for: {sorted(s.value for s in _unhandled)}")


# --- pull requests ---

def _story_repos(ctx: SessionContext, story: Story) -> list[tuple[str, Path]]:
    names = story.repos or list(ctx.repos)
    repos = []
    for name in names:
        path = ctx.repos.get(name)
        if path is None:
            logger.warning(f"[SESSION] story {story.id}: unknown repository '{name}', skipping")
            continue
        repos.append((name, path))
    return repos


def _open_pr(ctx: SessionContext, repo: Path, title: str, body: str) -> Optional[int]:
    """Push the current branch of `repo` and open (or reuse) its PR."""
    branch = get_current_branch(repo)
    if not branch or branch == ctx.default_branch:
        logger.warning(f"[SESSION] {repo.name}: on {branch or 'detached HEAD'}, not opening a PR")
        return None

    host = ctx.code_host(repo)
    ok, error = host.push_branch(branch)
    if not ok:
        ctx.progress.error(f"{repo.name}: {error}")
        return None

    existing = host.get_existing_pr(branch)
    if existing is not None:
        return existing.number
    try:
        return host.create_pr(branch, ctx.default_branch, title, body).number
    except GitHubError as e:
        ctx.progress.error(f"{repo.name}: {e}")
        return None


def open_story_pr(ctx: SessionContext, story: Story, outcome: AgentOutcome) -> Optional[int]:
    """Commit leftovers across the story's repos, then open one PR per repo.

    Returns the first PR number opened.
    """
    repos = _story_repos(ctx, story)
    if not repos:
        return None

    message = f"{story.title}\n\nStory {story.id} of {ctx.feature.title}"
    result = coordinated_commit([RepoChange(repo=path, name=name) for name, path in repos], message)
    if not result.success:
        failures = "; ".join(f"{r.name}: {r.error}" for r in result.results if not r.success)
        if result.partial_rollback:
            failures = f"PARTIAL ROLLBACK, check history by hand. {failures}"
        ctx.progress.error(f"Story {story.id}: commit failed, no PR opened ({failures})")
        log_event(ctx, "Commit failed", f"Story {story.id}: {failures}")
        return None

    commits = "\n".join(f"- {c}" for c in outcome.commits) or "- (none reported)"
    body = f"Story {story.id} of **{ctx.feature.title}**\n\n## Scope\n\n" + \
        "\n".join(f"- {line}" for line in story.scope) + f"\n\n## Commits\n\n{commits}\n"

    first = None
    for _, path in repos:
        number = _open_pr(ctx, path, story.title, body)
        if number is not None and first is None:
            first = number
    if first is not None:
        log_event(ctx, "PR opened", f"Story {story.id}: #{first}")
    return first


def open_feature_pr(ctx: SessionContext, state: SessionState) -> SessionState:
    completed = [s for s in ctx.feature.stories if s.status == STORY_COMPLETE]
    if not completed:
        return state

    names: list[str] = []
    for s in completed:
        for name in s.repos or list(ctx.repos):
            if name not in names:
                names.append(name)

    stories = "\n".join(f"- {s.id}: {s.title}" + (f" (#{s.pr})" if s.pr else "") for s in completed)
    commits = "\n".join(f"- {c}" for c in state.commits) or "- (none reported)"
    body = f"{ctx.feature.description}\n\n## Stories\n\n{stories}\n\n## Commits\n\n{commits}\n"

    prs = list(state.prs)
    for name in names:
        path = ctx.repos.get(name)
        if path is None:
            continue
        number = _open_pr(ctx, path, ctx.feature.title, body.strip() + "\n")
        if number is not None and number not in prs:
            prs.append(number)
            log_event(ctx, "Feature PR opened", f"{name}: #{number}")
    return replace(state, prs=tuple(prs))


# --- operator interrupts ---

def render_status(ctx: SessionContext, state: SessionState) -> str:
    progress = ctx.scheduler.get_progress()
    elapsed = (ctx.clock() - state.start_time).total_seconds() / 60
    lines = [
        f"Feature: {ctx.feature.title} ({ctx.feature.id})",
        f"Status: {state.status.value}   Elapsed: {elapsed:.1f}m",
        f"Completed: {state.stories_completed}   Blocked: {state.stories_blocked}   "
        f"Iterations: {state.total_iterations}",
        f"Graph: {progress['complete']}/{progress['total']} complete, {progress['ready']} ready, "
        f"{progress['pending']} pending, {progress['blocked']} blocked",
    ]
    if ctx.deadline:
        remaining = max((ctx.deadline - ctx.clock()).total_seconds() / 60, 0)
        lines.append(f"Time left: {remaining:.1f}m")
    if state.current_story_id:
        lines.append(f"Current story: {state.current_story_id}")
    lines += ["", ctx.scheduler.visualize()]
    return "\n".join(lines)


def _skip_target(ctx: SessionContext, state: SessionState) -> Optional[Story]:
    if state.current_story_id:
        story = ctx.feature.get_story(state.current_story_id)
        if story is not None and not story.is_done:
            return story
    node = ctx.scheduler.get_next_story()
    return ctx.feature.get_story(node.id) if node else None


def interrupt_pause(ctx: SessionContext, state: SessionState) -> SessionState:
    state = transition(state, SessionStatus.PAUSED, reason="operator pause")
    log_event(ctx, "Paused", "Operator paused the session")
    save_checkpoint(ctx, state)
    if ctx.operator.confirm("Session paused. Continue?", default=True):
        log_event(ctx, "Resumed", "Operator resumed the session")
        return transition(state, SessionStatus.RUNNING, reason="operator continue")
    return state


def interrupt_skip(ctx: SessionContext, state: SessionState) -> SessionState:
    story = _skip_target(ctx, state)
    if story is None:
        ctx.console.print("[dim]Nothing to skip[/dim]")
        return state
    ctx.scheduler.mark_blocked(story.id)
    update_story(ctx, story.id, status=STORY_SKIPPED, notes="Skipped by operator")
    ctx.console.print(f"[yellow]⏭️  Skipped story {story.id}: {story.title}[/yellow]")
    log_event(ctx, "Story skipped", f"Story {story.id} skipped by operator")
    return state


def interrupt_abort(ctx: SessionContext, state: SessionState) -> SessionState:
    state = replace(transition(state, SessionStatus.ERROR, reason="operator abort"),
                    blocker_reason=ABORT_REASON)
    log_event(ctx, "Aborted", ABORT_REASON)
    return state


def interrupt_ask(ctx: SessionContext, state: SessionState) -> SessionState:
    question = ctx.operator.ask("Question for Claude")
    if not question:
        return state
    answer = ctx.agent.ask(question, render_status(ctx, state))
    ctx.console.print(f"\n[bold blue]Claude:[/bold blue] {escape(answer)}\n")
    log_event(ctx, "Question", question)
    return state


def interrupt_status(ctx: SessionContext, state: SessionState) -> SessionState:
    ctx.console.print(render_status(ctx, state))
    return state


def interrupt_help(ctx: SessionContext, state: SessionState) -> SessionState:
    ctx.console.print(help_text())
    return state


def _next_story_id(feature: Feature) -> str:
    numeric = [int(s.id) for s in feature.stories if s.id.isdigit()]
    candidate = max(numeric, default=len(feature.stories)) + 1
    while feature.get_story(str(candidate)) is not None:
        candidate += 1
    return str(candidate)


def pivot(ctx: SessionContext, state: SessionState, choice: str) -> SessionState:
    """Apply one pivot-menu action."""
    open_ids = [s.id for s in ctx.feature.stories if not s.is_done]

    if choice == PIVOT_REPRIORITIZE:
        story_id = ctx.operator.choose("Story to run next", open_ids)
        if story_id is None:
            return state
        ctx.scheduler.clear_dependencies(story_id)
        update_story(ctx, story_id, blocked_by=[])
        log_event(ctx, "Pivot", f"Reprioritized story {story_id} (dependencies cleared)")

    elif choice == PIVOT_ADD_STORY:
        title = ctx.operator.ask("Story title")
        if not title:
            return state
        scope = ctx.operator.ask("Scope (separate items with ';')") or ""
        deps = ctx.operator.ask("Depends on (comma-separated story ids)") or ""
        story = Story(
            id=_next_story_id(ctx.feature),
            title=title,
            scope=[s.strip() for s in scope.split(";") if s.strip()],
            blocked_by=[d.strip() for d in deps.split(",") if d.strip()],
        )
        ctx.feature.stories.append(story)
        save_feature(ctx)
        ctx.scheduler.add_node(story.id, story.title, story.blocked_by)
        ctx.progress.stats.total_stories += 1
        log_event(ctx, "Pivot", f"Added story {story.id}: {title}")

    elif choice == PIVOT_SKIP_REMAINING:
        for story_id in open_ids:
            ctx.scheduler.mark_blocked(story_id)
            ctx.feature.get_story(story_id).status = STORY_SKIPPED
        save_feature(ctx)
        log_event(ctx, "Pivot", f"Skipped remaining stories: {', '.join(open_ids) or 'none'}")
        state = transition(state, SessionStatus.COMPLETED, reason="operator skipped remaining stories")

    elif choice == PIVOT_RESTART:
        story_id = state.current_story_id
        story = ctx.feature.get_story(story_id) if story_id else None
        if story is None:
            ctx.console.print("[dim]No current story to restart[/dim]")
            return state
        if story.is_done:
            ctx.console.print(f"[dim]Story {story_id} is already {story.status}; nothing to restart[/dim]")
            return state
        ctx.scheduler.reset_story(story_id)
        ctx.engine.clear_state(story_id)
        update_story(ctx, story_id, status=STORY_PENDING, notes=None)
        log_event(ctx, "Pivot", f"Restarted story {story_id}")

    return state


def interrupt_pivot(ctx: SessionContext, state: SessionState) -> SessionState:
    choice = ctx.operator.choose("Pivot", PIVOT_CHOICES)
    if choice is None or choice == PIVOT_CANCEL:
        return state
    return pivot(ctx, state, choice)


INTERRUPT_HANDLERS: dict[InterruptCommand, Callable[[SessionContext, SessionState], SessionState]] = {
    InterruptCommand.PAUSE: interrupt_pause,
    InterruptCommand.SKIP: interrupt_skip,
    InterruptCommand.ABORT: interrupt_abort,
    InterruptCommand.ASK: interrupt_ask,
    InterruptCommand.PIVOT: interrupt_pivot,
    InterruptCommand.STATUS: interrupt_status,
    InterruptCommand.HELP: interrupt_help,
}


def drain_interrupts(ctx: SessionContext, state: SessionState) -> SessionState:
    """Apply queued operator commands until one takes the session out of running."""
    for command in ctx.interrupts.drain():
        if state.status != SessionStatus.RUNNING:
            logger.debug(f"[SESSION] dropping {command.value}, session is {state.status.value}")
            continue
        logger.info(f"[SESSION] {ctx.feature.id}: operator {command.value}")
        state = INTERRUPT_HANDLERS[command](ctx, state)
    return state


# --- the loop ---

class SessionRunner:
    """Runs one feature to completion or until a budget/operator stops it."""

    def __init__(
        self,
        feature: Feature,
        config: SessionConfig,
        agent: ExecutionAgent,
        features: FeatureStore,
        checkpoints: CheckpointStore,
        documents: DocumentStore,
        *,
        operator: OperatorPrompt | None = None,
        interrupts: InterruptChannel | None = None,
        progress: ProgressReporter | None = None,
        console: Console | None = None,
        repos: dict[str, Path] | None = None,
        default_branch: str = "main",
        code_host: Callable[[Path], GitHubClient] = GitHubClient,
        iteration_defaults: IterationConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        console = console or Console()
        base = iteration_defaults or IterationConfig()
        iteration_config = replace(
            base,
            max_iterations=config.max_iterations,
            model=config.model,
            skip_permissions=config.skip_permissions,
            max_turns=config.max_turns,
            timeout=config.agent_timeout,
            fatal_errors=config.fatal_errors or base.fatal_errors,
        )
        self.ctx = SessionContext(
            feature=feature,
            config=config,
            agent=agent,
            features=features,
            checkpoints=checkpoints,
            documents=documents,
            scheduler=DependencyManager(),
            engine=IterationEngine(agent, iteration_config, sleep=sleep),
            progress=progress or ProgressReporter(len(feature.stories), console=console, clock=clock),
            operator=operator or ConsolePrompt(console, assume_yes=True),
            interrupts=interrupts or InterruptChannel(),
            console=console,
            repos=dict(repos or {}),
            default_branch=default_branch,
            code_host=code_host,
            clock=clock,
        )

    def run(self, initial_state: SessionState | None = None) -> SessionState:
        """Run the loop and return the final state. Never raises for story failures."""
        ctx = self.ctx
        now = ctx.clock()
        state = initial_state or SessionState(start_time=now, feature_id=ctx.feature.id)
        if ctx.config.max_hours is not None:
            ctx.deadline = now + timedelta(hours=ctx.config.max_hours)

        graph = ctx.scheduler.build_from_stories(ctx.feature.stories)
        cycles = ctx.scheduler.detect_circular_dependencies()
        if cycles:
            ctx.progress.error(f"Circular dependencies: {'; '.join(' -> '.join(c) for c in cycles)}")
        logger.info(f"[SESSION] {ctx.feature.id}: starting with {len(graph.nodes)} stories, order {graph.order}")

        ctx.progress.session_start(ctx.feature.title)
        log_event(ctx, "Session started", self._budget_summary())

        try:
            while state.status == SessionStatus.RUNNING:
                state = self._step(state)
        except KeyboardInterrupt:
            logger.warning(f"[SESSION] {ctx.feature.id}: interrupted")
            if state.status in (SessionStatus.RUNNING, SessionStatus.PAUSED):
                state = interrupt_abort(ctx, state)
        except Exception as e:
            logger.exception(f"[SESSION] {ctx.feature.id}: unexpected error")
            ctx.progress.error(f"Unexpected error: {e}", e)
            if can_transition(state.status, SessionStatus.ERROR):
                state = transition(state, SessionStatus.ERROR, reason="unexpected error")
            state = replace(state, blocker_reason=str(e) or type(e).__name__)

        return self._finish(state)

    def _budget_summary(self) -> str:
        c = self.ctx.config
        hours = f"{c.max_hours:g}h" if c.max_hours is not None else "unlimited"
        stories = str(c.max_stories) if c.max_stories else "all"
        mode = f"retry x{c.max_iterations}" if c.iterate_until_green else "single attempt"
        return f"budget {hours}, stories {stories}, {mode}, model {c.model}"

    def _step(self, state: SessionState) -> SessionState:
        ctx = self.ctx

        state = drain_interrupts(ctx, state)
        if state.status != SessionStatus.RUNNING:
            return state

        if ctx.deadline and ctx.clock() >= ctx.deadline:
            log_event(ctx, "Timeout", "Session time budget exhausted")
            return transition(state, SessionStatus.TIMEOUT, reason="deadline passed")

        if ctx.config.max_stories and ctx.stories_started >= ctx.config.max_stories:
            log_event(ctx, "Story budget reached", f"{ctx.stories_started} stories run")
            return transition(state, SessionStatus.COMPLETED, reason="story budget reached")

        node = ctx.scheduler.get_next_story()
        if node is None:
            if all(s.is_done for s in ctx.feature.stories):
                return transition(state, SessionStatus.COMPLETED, reason="all stories done")
            open_ids = [s.id for s in ctx.feature.stories if not s.is_done]
            state = replace(
                transition(state, SessionStatus.BLOCKED, reason="no ready stories"),
                blocker_reason=state.blocker_reason or f"No ready stories; open: {', '.join(open_ids)}",
            )
            return state

        story = ctx.feature.get_story(node.id)
        if ctx.config.pause_between_stories and ctx.stories_started > 0:
            if not ctx.operator.confirm(f"Start story {story.id}: {story.title}?", default=True):
                state = transition(state, SessionStatus.PAUSED, reason="operator declined next story")
                return state

        ctx.scheduler.mark_in_progress(story.id)
        update_story(ctx, story.id, status=STORY_IN_PROGRESS)
        ctx.stories_started += 1
        state = replace(state, current_story_id=story.id, blocker_reason=None)
        ctx.progress.story_start(story.id, story.title)

        run = self._execute(state, story)
        state = replace(state, total_iterations=state.total_iterations + run.iterations)

        if run.reason == INTERRUPTED_REASON:
            # Retry loop cut short by an operator command; drained next step
            ctx.scheduler.reset_story(story.id)
            update_story(ctx, story.id, status=STORY_PENDING,
                         iterations=story.iterations + run.iterations)
            log_event(ctx, "Story interrupted", f"Story {story.id} after {run.iterations} iterations")
            save_checkpoint(ctx, state)
            return state

        state = OUTCOME_HANDLERS[run.outcome.status](ctx, state, run)
        save_checkpoint(ctx, state)
        return state

    def _agent_timeout(self) -> float:
        ctx = self.ctx
        timeout = float(ctx.config.agent_timeout)
        if ctx.deadline:
            remaining = (ctx.deadline - ctx.clock()).total_seconds()
            timeout = max(min(timeout, remaining), MIN_AGENT_TIMEOUT)
        return timeout

    def _execute(self, state: SessionState, story: Story) -> StoryRun:
        ctx = self.ctx
        extra_context = ctx.answers.pop(story.id, None)
        timeout = self._agent_timeout()

        if ctx.config.iterate_until_green:
            def on_progress(it_state: IterationState) -> None:
                if it_state.last_outcome and it_state.last_outcome.status != AgentStatus.COMPLETE:
                    ctx.progress.iteration(story.id, it_state.iteration,
                                           it_state.last_error or it_state.last_outcome.status.value)

            result = ctx.engine.execute_until_green(
                story,
                ctx.feature.title,
                on_progress=on_progress,
                extra_context=extra_context,
                should_stop=ctx.interrupts.should_stop,
                timeout=timeout,
            )
            if result.stuck_reason != INTERRUPTED_REASON:
                ctx.results.append(result)
            ctx.engine.clear_state(story.id)
            outcome = result.final_output or AgentOutcome(status=AgentStatus.ERROR, error=result.stuck_reason)
            return StoryRun(story=story, outcome=outcome, iterations=result.iterations,
                            reason=result.stuck_reason, iteration_result=result)

        prompt = build_story_prompt(story, ctx.feature.title, extra_context)
        options = InvokeOptions(
            model=ctx.config.model,
            max_turns=ctx.config.max_turns,
            timeout=timeout,
            skip_permissions=ctx.config.skip_permissions,
        )
        try:
            outcome = ctx.agent.invoke(prompt, options)
        except Exception as e:
            logger.exception(f"[SESSION] story {story.id}: agent raised")
            outcome = AgentOutcome(status=AgentStatus.ERROR, error=str(e) or type(e).__name__)
        return StoryRun(story=story, outcome=outcome, iterations=1)

    def _finish(self, state: SessionState) -> SessionState:
        ctx = self.ctx
        if ctx.config.create_pr_on_complete and state.status != SessionStatus.ERROR:
            state = open_feature_pr(ctx, state)

        if state.status == SessionStatus.COMPLETED:
            ctx.checkpoints.delete(ctx.feature.id)
        else:
            save_checkpoint(ctx, state)

        log_event(ctx, "Session ended", f"{state.status.value}: {state.stories_completed} completed, "
                                        f"{state.stories_blocked} blocked")
        self.print_summary(state)
        return state

    def print_summary(self, state: SessionState) -> None:
        ctx = self.ctx
        # Iterations from paused or interrupted runs and resumed totals only live in the state
        ctx.progress.sync_counts(state.stories_completed, state.stories_blocked,
                                 state.total_iterations, len(ctx.feature.stories))
        ctx.progress.session_complete(state.status == SessionStatus.COMPLETED)
        rows = [
            ("Status", state.status.value),
            ("Commits", str(len(state.commits))),
            ("PRs", ", ".join(f"#{n}" for n in state.prs) or "none"),
        ]
        if state.blocker_reason:
            rows.append(("Blocker", state.blocker_reason))
        if state.pending_question:
            rows.append(("Pending question", state.pending_question))
        ctx.console.print(ctx.progress.summary_table(rows))

        analysis = ctx.engine.analyze_stuck_patterns(ctx.results)
        if analysis.recommendations:
            ctx.console.print("[bold]Recommendations:[/bold]")
            for rec in analysis.recommendations:
                ctx.console.print(f"  • {rec}")


# --- resume ---

class ResumeError(Exception):
    """A checkpoint cannot be resumed."""
    pass


def prepare_resume(
    checkpoints: CheckpointStore,
    features: FeatureStore,
    feature_id: str,
    overrides: dict | None = None,
    force: bool = False,
    clock: Callable[[], datetime] = datetime.now,
) -> tuple[Feature, SessionConfig, SessionState]:
    """Turn a checkpoint into the inputs of a fresh run.

    The time budget is the override if given (0 meaning unlimited), else
    whatever was left in the checkpointed budget, else unlimited. The
    checkpoint is deleted before the run starts; interrupted and blocked
    stories go back to pending.

    Raises:
        ResumeError: missing checkpoint or feature, or a terminal checkpoint without force
        ConfigError: overrides that make the budgets invalid
    """
    cp = checkpoints.load(feature_id)
    if cp is None:
        raise ResumeError(f"No checkpoint found for feature '{feature_id}'")
    if not checkpoints.is_resumable(cp) and not force:
        status = cp.status.value if cp.status else "unknown"
        raise ResumeError(f"Checkpoint for '{feature_id}' ended as {status}; use --force to resume anyway")

    feature = features.load_feature(feature_id)
    if feature is None:
        raise ResumeError(f"Feature '{feature_id}' not found")

    overrides = dict(overrides or {})
    hours = overrides.pop("max_hours", None)
    config = SessionConfig.from_checkpoint(cp.config, **overrides)
    if hours is not None:
        # 0 lifts the deadline, as it does for a fresh run
        config = replace(config, max_hours=hours or None)
    config.validate()
    if hours is None:
        config = replace(config, max_hours=checkpoints.get_remaining_time(cp, now=clock()))

    checkpoints.delete(feature_id)

    for story in feature.stories:
        if story.status in (STORY_IN_PROGRESS, STORY_BLOCKED):
            story.status = STORY_PENDING
    features.save_feature(feature)

    previous = cp.to_session_state()
    state = SessionState(
        start_time=clock(),
        feature_id=feature_id,
        stories_completed=previous.stories_completed,
        total_iterations=previous.total_iterations,
        commits=previous.commits,
        prs=previous.prs,
    )
    logger.info(f"[SESSION] {feature_id}: resuming from {cp.status.value if cp.status else '?'}, "
                f"budget {config.max_hours if config.max_hours is not None else 'unlimited'}h")
    return feature, config, state


def resume_session(
    checkpoints: CheckpointStore,
    features: FeatureStore,
    feature_id: str,
    make_runner: Callable[[Feature, SessionConfig], SessionRunner],
    overrides: dict | None = None,
    force: bool = False,
    clock: Callable[[], datetime] = datetime.now,
) -> SessionState:
    feature, config, state = prepare_resume(checkpoints, features, feature_id, overrides, force, clock)
    return make_runner(feature, config).run(initial_state=state)
