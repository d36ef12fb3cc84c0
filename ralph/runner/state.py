"""Controller state and iteration state machine.

ControllerState holds the per-run counters and is owned by one Controller;
it is passed explicitly to the retry policy instead of living in module
globals. LoopFSM sequences the phases of an iteration:

    init -> selecting -> invoking -> validating -> recording -> selecting
                                 \\-> recording (agent did not succeed)

Any phase can move to terminated.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional

from transitions import Machine

logger = logging.getLogger(__name__)


STATES = [
    "init",
    "selecting",
    "invoking",
    "validating",
    "recording",
    "terminated",
]

TRANSITIONS = [
    {"trigger": "start", "source": "init", "dest": "selecting"},
    {"trigger": "select", "source": "selecting", "dest": "invoking"},
    {"trigger": "agent_finished", "source": "invoking", "dest": "validating"},
    {"trigger": "agent_failed", "source": "invoking", "dest": "recording"},
    {"trigger": "validated", "source": "validating", "dest": "recording"},
    {"trigger": "next_iteration", "source": "recording", "dest": "selecting"},
    {"trigger": "terminate", "source": "*", "dest": "terminated"},
]


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass
class ControllerState:
    """Mutable counters for one run. Discarded at exit."""
    run_id: str = field(default_factory=new_run_id)
    iteration: int = 0
    consecutive_failures: int = 0
    consecutive_rate_limits: int = 0
    feature_errors: dict[str, int] = field(default_factory=dict)
    last_error: Optional[Exception] = None
    cancelled: bool = False


class LoopFSM:
    """Iteration phase machine, logging every transition."""

    def __init__(self, on_transition: Callable[[str, str, str], None] | None = None):
        self.on_transition = on_transition
        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial="init",
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        from_state = event.transition.source
        to_state = event.transition.dest
        trigger = event.event.name

        logger.debug(f"[FSM] {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        return trigger in self.machine.get_triggers(self.state)
