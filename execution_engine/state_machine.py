"""
Execution Engine - Pipeline State Machine.

============================================================
PURPOSE
============================================================
Tracks one indicator's pipeline run and the scheduler loop
through strict state transitions.

PIPELINE:

    ACQUIRING ──────────────────────────────► IDLE   (skipped)
        │
        ▼
    COLLECTING ──► EVALUATING ──► ALERTING
        │              │             │
        └──────────────┴─────────────┴──► RECORDING
                                              │
                                              ▼
                                          RELEASING ──► IDLE

LOOP:

    IDLE ◄──► SCANNING
      │           │
      └───────────┴──► STOPPED

INVARIANTS:
- Acquire strictly precedes collect, which strictly precedes
  evaluate, alert and record; release comes last
- Any failure after acquisition goes through RECORDING and
  RELEASING
- STOPPED is terminal

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Set, Tuple

from core.exceptions import StateTransitionError


logger = logging.getLogger(__name__)


# ============================================================
# STATES
# ============================================================

class PipelineState(Enum):
    """State of one indicator's pipeline run."""

    ACQUIRING = "acquiring"
    COLLECTING = "collecting"
    EVALUATING = "evaluating"
    ALERTING = "alerting"
    RECORDING = "recording"
    RELEASING = "releasing"
    IDLE = "idle"


class LoopState(Enum):
    """State of the scheduler loop."""

    IDLE = "idle"
    SCANNING = "scanning"
    STOPPED = "stopped"


# ============================================================
# STATE TRANSITION RULES
# ============================================================

PIPELINE_TRANSITIONS: Dict[PipelineState, Set[PipelineState]] = {
    PipelineState.ACQUIRING: {
        PipelineState.COLLECTING,
        PipelineState.RECORDING,
        PipelineState.IDLE,
    },
    PipelineState.COLLECTING: {
        PipelineState.EVALUATING,
        PipelineState.RECORDING,
    },
    PipelineState.EVALUATING: {
        PipelineState.ALERTING,
        PipelineState.RECORDING,
    },
    PipelineState.ALERTING: {
        PipelineState.RECORDING,
    },
    PipelineState.RECORDING: {
        PipelineState.RELEASING,
    },
    PipelineState.RELEASING: {
        PipelineState.IDLE,
    },
    PipelineState.IDLE: set(),
}

LOOP_TRANSITIONS: Dict[LoopState, Set[LoopState]] = {
    LoopState.IDLE: {LoopState.SCANNING, LoopState.STOPPED},
    LoopState.SCANNING: {LoopState.IDLE, LoopState.STOPPED},
    LoopState.STOPPED: set(),
}


def can_transition(transitions: Dict, from_state: Enum, to_state: Enum) -> Tuple[bool, str]:
    """Check a transition against a transition table."""
    if to_state in transitions.get(from_state, set()):
        return True, "Valid transition"
    if not transitions.get(from_state):
        return False, f"Cannot transition from terminal state {from_state.value}"
    return False, f"Invalid transition: {from_state.value} -> {to_state.value}"


# ============================================================
# TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """One recorded transition."""

    from_state: Enum
    to_state: Enum
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str = ""


# ============================================================
# PIPELINE STATE MACHINE
# ============================================================

class PipelineStateMachine:
    """State machine for one pipeline run of one indicator."""

    def __init__(self, indicator_id: int):
        self.indicator_id = indicator_id
        self._state = PipelineState.ACQUIRING
        self._history: List[StateTransitionEvent] = []

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def history(self) -> List[StateTransitionEvent]:
        return list(self._history)

    @property
    def visited(self) -> List[PipelineState]:
        """States in the order they were entered."""
        return [PipelineState.ACQUIRING] + [event.to_state for event in self._history]

    def transition_to(self, target: PipelineState, reason: str = "") -> StateTransitionEvent:
        """
        Move to ``target``.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        allowed, why = can_transition(PIPELINE_TRANSITIONS, self._state, target)
        if not allowed:
            raise StateTransitionError(
                f"Indicator {self.indicator_id}: {why}",
                from_state=self._state.value,
                to_state=target.value,
            )

        event = StateTransitionEvent(from_state=self._state, to_state=target, reason=reason)
        self._history.append(event)
        self._state = target

        logger.debug(
            f"Indicator {self.indicator_id}: "
            f"{event.from_state.value} -> {event.to_state.value}"
            + (f" ({reason})" if reason else "")
        )
        return event


# ============================================================
# LOOP STATE MACHINE
# ============================================================

class LoopStateMachine:
    """State machine of the scheduler loop."""

    def __init__(self):
        self._state = LoopState.IDLE

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def is_stopped(self) -> bool:
        return self._state == LoopState.STOPPED

    def transition_to(self, target: LoopState) -> None:
        allowed, why = can_transition(LOOP_TRANSITIONS, self._state, target)
        if not allowed:
            raise StateTransitionError(
                f"Scheduler loop: {why}",
                from_state=self._state.value,
                to_state=target.value,
            )
        logger.debug(f"Scheduler loop: {self._state.value} -> {target.value}")
        self._state = target
