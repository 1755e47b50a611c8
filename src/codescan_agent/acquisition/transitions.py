"""
Acquisition State Transitions
=============================

Allowed transitions of the acquisition controller.

Transition Table:
    IDLE         → INITIALIZING, TERMINATED
    INITIALIZING → SCANNING, TERMINATED
    SCANNING     → PAUSED, TERMINATED
    PAUSED       → SCANNING, TERMINATED
    TERMINATED   → (none)

Anything else raises InvalidTransitionError.
"""

from typing import Dict, FrozenSet

from codescan_agent.models.state import AcquisitionState


ALLOWED_TRANSITIONS: Dict[AcquisitionState, FrozenSet[AcquisitionState]] = {
    AcquisitionState.IDLE: frozenset(
        {AcquisitionState.INITIALIZING, AcquisitionState.TERMINATED}
    ),
    AcquisitionState.INITIALIZING: frozenset(
        {AcquisitionState.SCANNING, AcquisitionState.TERMINATED}
    ),
    AcquisitionState.SCANNING: frozenset(
        {AcquisitionState.PAUSED, AcquisitionState.TERMINATED}
    ),
    AcquisitionState.PAUSED: frozenset(
        {AcquisitionState.SCANNING, AcquisitionState.TERMINATED}
    ),
    AcquisitionState.TERMINATED: frozenset(),
}


class InvalidTransitionError(Exception):
    """Raised when the controller is asked for a transition the table forbids."""

    def __init__(self, current: AcquisitionState, target: AcquisitionState) -> None:
        super().__init__(f"Invalid transition: {current.value} → {target.value}")
        self.current = current
        self.target = target


def can_transition(current: AcquisitionState, target: AcquisitionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: AcquisitionState, target: AcquisitionState) -> None:
    """
    Raises:
        InvalidTransitionError: If current → target is not allowed
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
