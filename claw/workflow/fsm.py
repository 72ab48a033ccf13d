"""Session state machine using transitions library.

Encodes which session status changes are legal:

    running -> paused | completed | blocked | timeout | error
    paused  -> running | completed | error
    blocked -> running

Usage:
    from claw.workflow.fsm import SessionFSM

    fsm = SessionFSM("running", session_id="auth")
    fsm.pause()    # running -> paused
    fsm.resume()   # paused -> running
"""

import logging
from typing import Callable

from transitions import Machine

logger = logging.getLogger(__name__)


# State values must match SessionStatus enum
STATES = [
    "running",
    "paused",
    "completed",
    "blocked",
    "timeout",
    "error",
]

TERMINAL_STATES = ("completed", "timeout", "error")

# Transitions defined as (trigger, source, dest)
# Each trigger becomes a method on the FSM
TRANSITIONS = [
    {"trigger": "pause", "source": "running", "dest": "paused"},
    {"trigger": "resume", "source": "paused", "dest": "running"},
    {"trigger": "resume", "source": "blocked", "dest": "running"},

    # Graph exhausted, story budget reached, or operator skipped the rest
    {"trigger": "finish", "source": "running", "dest": "completed"},
    {"trigger": "finish", "source": "paused", "dest": "completed"},

    # No ready story left but work remains
    {"trigger": "block", "source": "running", "dest": "blocked"},

    # Wall-clock budget exhausted
    {"trigger": "time_out", "source": "running", "dest": "timeout"},

    # Abort or unexpected exception
    {"trigger": "fail", "source": "running", "dest": "error"},
    {"trigger": "fail", "source": "paused", "dest": "error"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()


class SessionFSM:
    """State machine for one session's status.

    Holds no session data; callers keep the status on SessionState and use
    the FSM only to validate and log each change.
    """

    def __init__(self, initial: str = "running", session_id: str = "",
                 on_transition: Callable[[str, str, str], None] | None = None):
        """
        Args:
            initial: Current status value
            session_id: Label for log lines (feature id)
            on_transition: Optional callback(from_state, to_state, trigger)
        """
        self.session_id = session_id
        self.on_transition = on_transition

        if initial not in STATES:
            raise ValueError(f"Unknown session state '{initial}'")

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.info(f"[FSM] {self.session_id}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        return self.machine.get_triggers(self.state)
