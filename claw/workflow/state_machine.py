"""Session state and validated status transitions.

All transition rules live in fsm.py - this module provides:
- SessionStatus enum for type safety
- SessionState, the immutable run-loop state that gets checkpointed
- transition() which validates a status change and returns the new state

Usage:
    from claw.workflow.state_machine import transition, SessionStatus

    state = transition(state, SessionStatus.PAUSED, reason="operator pause")
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class SessionStatus(Enum):
    """All valid session statuses. Values match FSM state strings."""

    RUNNING = "running"
    PAUSED = "paused"

    # Terminal for this invocation
    COMPLETED = "completed"
    TIMEOUT = "timeout"
    ERROR = "error"

    # No ready stories left but work remains; resumable
    BLOCKED = "blocked"


RESUMABLE_STATUSES = (SessionStatus.PAUSED, SessionStatus.RUNNING, SessionStatus.BLOCKED)


@dataclass(frozen=True)
class SessionState:
    """Run-loop state. Replaced, never mutated."""
    start_time: datetime
    feature_id: str
    stories_completed: int = 0
    stories_blocked: int = 0
    total_iterations: int = 0
    current_story_id: Optional[str] = None
    status: SessionStatus = SessionStatus.RUNNING
    blocker_reason: Optional[str] = None
    pending_question: Optional[str] = None
    commits: tuple[str, ...] = ()
    prs: tuple[int, ...] = ()


class InvalidTransition(Exception):
    """Raised when attempting an invalid status transition."""

    def __init__(self, from_state: SessionStatus, to_state: SessionStatus, session_id: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        self.session_id = session_id
        super().__init__(
            f"Invalid transition: {from_state.value} -> {to_state.value}"
            + (f" (session: {session_id})" if session_id else "")
        )


def parse_status(status_str: str | None) -> SessionStatus | None:
    """Parse a status string into SessionStatus. Returns None if unknown."""
    if status_str is None:
        return None
    for status in SessionStatus:
        if status.value == status_str:
            return status
    return None


def can_transition(from_state: SessionStatus, to_state: SessionStatus) -> bool:
    from claw.workflow.fsm import TRIGGER_FOR

    if from_state == to_state:
        return True
    return (from_state.value, to_state.value) in TRIGGER_FOR


def transition(state: SessionState, to_state: SessionStatus, reason: str = "") -> SessionState:
    """Return `state` moved to `to_state`, validated by the FSM.

    Self-transitions are a no-op.

    Raises:
        InvalidTransition: If the transition is not allowed
    """
    from transitions import MachineError
    from claw.workflow.fsm import SessionFSM, TRIGGER_FOR

    current = state.status
    reason_str = f" ({reason})" if reason else ""

    if current == to_state:
        logger.debug(f"[STATE] {state.feature_id}: already {to_state.value}, no-op")
        return state

    trigger = TRIGGER_FOR.get((current.value, to_state.value))
    if trigger is None:
        raise InvalidTransition(current, to_state, state.feature_id)

    fsm = SessionFSM(current.value, session_id=state.feature_id)
    try:
        logger.debug(f"[STATE] {state.feature_id}: {current.value} -> {to_state.value}{reason_str}")
        getattr(fsm, trigger)()
    except MachineError as e:
        raise InvalidTransition(current, to_state, state.feature_id) from e

    return replace(state, status=parse_status(fsm.state))
