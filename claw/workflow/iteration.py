"""
Iteration engine: drive one story until the agent reports it complete.

Each attempt re-prompts the agent with the story scope; from the second
attempt on, the previous error is appended so the agent can change approach.
Retries back off exponentially. The loop stops early when:

- the agent needs operator input (never retried)
- the error matches the fatal list (auth, permissions, rate limits)
- the last three attempts failed with the identical error (stuck)
- the operator interrupted between attempts
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from claw.agents.claude import AgentOutcome, AgentStatus, ExecutionAgent, InvokeOptions
from claw.lib.agents_config import DEFAULT_FATAL_ERRORS
from claw.lib.prompts import build_retry_section, build_story_prompt

logger = logging.getLogger(__name__)

STUCK_WINDOW = 3

INTERRUPTED_REASON = "Interrupted by operator"

RECOMMENDATIONS = {
    "test_failure": "Consider reviewing test setup and mocking strategies",
    "import_error": "Check module resolution and dependencies",
    "type_error": "Review type annotations and type-checker configuration",
    "permission_error": "Check agent permissions and credentials for the target repositories",
    "timeout": "Increase timeout limits or simplify story scope",
    "needs_input": "Provide more context in story scope or add default values",
    "other": "Review the session log for the failing stories",
}


@dataclass
class IterationConfig:
    max_iterations: int = 5
    initial_delay: float = 1.0   # seconds
    max_delay: float = 30.0
    backoff_multiplier: float = 2.0
    fatal_errors: list[str] = field(default_factory=lambda: list(DEFAULT_FATAL_ERRORS))
    model: str = "sonnet"
    skip_permissions: bool = False
    max_turns: int = 50
    timeout: float = 30 * 60


@dataclass
class IterationAttempt:
    iteration: int
    timestamp: datetime
    status: AgentStatus
    error: Optional[str]
    duration: float  # seconds


@dataclass
class IterationState:
    story_id: str
    iteration: int = 0
    last_error: Optional[str] = None
    last_outcome: Optional[AgentOutcome] = None
    start_time: datetime = field(default_factory=datetime.now)
    history: list[IterationAttempt] = field(default_factory=list)


@dataclass
class IterationResult:
    success: bool
    iterations: int
    final_output: Optional[AgentOutcome]
    history: list[IterationAttempt]
    stuck_reason: Optional[str] = None


@dataclass
class StuckAnalysis:
    total_stuck: int
    patterns: list[tuple[str, int]]
    recommendations: list[str]


def extract_pattern(reason: str) -> str:
    """Coarse bucket for a stuck/failure reason."""
    text = reason.lower()
    if "needs input" in text:
        return "needs_input"
    if "test" in text:
        return "test_failure"
    if "import" in text or "module" in text:
        return "import_error"
    if "type" in text:
        return "type_error"
    if "permission" in text:
        return "permission_error"
    if "timeout" in text or "timed out" in text:
        return "timeout"
    return "other"


class IterationEngine:
    def __init__(
        self,
        agent: ExecutionAgent,
        config: IterationConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.agent = agent
        self.config = config or IterationConfig()
        self._sleep = sleep
        self._states: dict[str, IterationState] = {}

    def execute_until_green(
        self,
        story,
        feature_title: str,
        on_progress: Callable[[IterationState], None] | None = None,
        extra_context: str | None = None,
        should_stop: Callable[[], bool] | None = None,
        timeout: float | None = None,
    ) -> IterationResult:
        """Retry `story` until complete, stuck, fatal or out of iterations.

        `timeout` overrides the configured per-attempt timeout (the session
        caps it at its remaining budget).
        """
        state = IterationState(story_id=story.id)
        self._states[story.id] = state
        delay = self.config.initial_delay
        max_iterations = self.config.max_iterations

        def result(success: bool, reason: str | None = None) -> IterationResult:
            return IterationResult(
                success=success,
                iterations=state.iteration,
                final_output=state.last_outcome,
                history=list(state.history),
                stuck_reason=reason,
            )

        while state.iteration < max_iterations:
            state.iteration += 1
            logger.info(f"[ITER] {story.id}: iteration {state.iteration}/{max_iterations}")

            started = time.monotonic()
            outcome = self._run_iteration(story, feature_title, state, extra_context, timeout)
            duration = time.monotonic() - started

            error = outcome.error or outcome.blocker_reason
            state.history.append(IterationAttempt(
                iteration=state.iteration,
                timestamp=datetime.now(),
                status=outcome.status,
                error=error,
                duration=duration,
            ))
            state.last_outcome = outcome
            state.last_error = error

            if on_progress:
                on_progress(state)

            if outcome.status == AgentStatus.COMPLETE:
                logger.info(f"[ITER] {story.id}: completed in {state.iteration} iteration(s)")
                return result(True)

            if outcome.status == AgentStatus.NEEDS_INPUT:
                return result(False, f"Needs input: {outcome.question}")

            if self.is_fatal_error(outcome):
                logger.warning(f"[ITER] {story.id}: fatal error, not retrying: {error}")
                return result(False, f"Fatal error: {error}")

            if self.is_stuck(state):
                logger.warning(f"[ITER] {story.id}: same error repeated {STUCK_WINDOW} times")
                return result(False, f"Stuck: same error repeated ({error})")

            if state.iteration < max_iterations:
                logger.debug(f"[ITER] {story.id}: waiting {delay:.1f}s before retry")
                self._sleep(delay)
                delay = min(delay * self.config.backoff_multiplier, self.config.max_delay)
                if should_stop and should_stop():
                    logger.info(f"[ITER] {story.id}: stopping, operator interrupt pending")
                    return result(False, INTERRUPTED_REASON)

        logger.warning(f"[ITER] {story.id}: max iterations ({max_iterations}) reached")
        return result(False, f"Max iterations reached: {state.last_error or 'unknown error'}")

    def _run_iteration(self, story, feature_title: str, state: IterationState,
                       extra_context: str | None, timeout: float | None) -> AgentOutcome:
        prompt = build_story_prompt(story, feature_title, extra_context)
        if state.iteration > 1 and state.last_error:
            prompt += "\n\n" + build_retry_section(state.iteration - 1, state.last_error)

        options = InvokeOptions(
            model=self.config.model,
            max_turns=self.config.max_turns,
            timeout=timeout if timeout is not None else self.config.timeout,
            skip_permissions=self.config.skip_permissions,
        )
        try:
            return self.agent.invoke(prompt, options)
        except Exception as e:
            logger.exception(f"[ITER] {story.id}: agent raised")
            return AgentOutcome(status=AgentStatus.ERROR, error=str(e) or type(e).__name__)

    def is_fatal_error(self, outcome: AgentOutcome) -> bool:
        text = (outcome.error or outcome.blocker_reason or "").lower()
        return any(fatal.lower() in text for fatal in self.config.fatal_errors)

    def is_stuck(self, state: IterationState) -> bool:
        if len(state.history) < STUCK_WINDOW:
            return False
        errors = [a.error for a in state.history[-STUCK_WINDOW:]]
        return all(errors) and len(set(errors)) == 1

    def get_state(self, story_id: str) -> Optional[IterationState]:
        return self._states.get(story_id)

    def clear_state(self, story_id: str) -> None:
        self._states.pop(story_id, None)

    def analyze_stuck_patterns(self, results: list[IterationResult]) -> StuckAnalysis:
        """Bucket failed results by reason and suggest one fix per bucket."""
        stuck = [r for r in results if not r.success and r.stuck_reason]

        counts: dict[str, int] = {}
        for r in stuck:
            pattern = extract_pattern(r.stuck_reason)
            counts[pattern] = counts.get(pattern, 0) + 1

        patterns = sorted(counts.items(), key=lambda item: item[1], reverse=True)
        return StuckAnalysis(
            total_stuck=len(stuck),
            patterns=patterns,
            recommendations=[RECOMMENDATIONS[p] for p, _ in patterns],
        )
