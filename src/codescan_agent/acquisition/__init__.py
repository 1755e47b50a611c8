"""
Acquisition Module
==================

Session state machine tying the frame source, the decode loops, the
throttle gate and the validator together.

Components:
    - AcquisitionController: One acquisition session
    - ALLOWED_TRANSITIONS / InvalidTransitionError: State machine rules
    - create_controller: Factory wiring a controller from settings
"""

from codescan_agent.acquisition.transitions import (
    ALLOWED_TRANSITIONS,
    InvalidTransitionError,
    can_transition,
    check_transition,
)
from codescan_agent.acquisition.controller import AcquisitionController, EventListener
from codescan_agent.acquisition.factory import create_controller, create_frame_source


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidTransitionError",
    "can_transition",
    "check_transition",
    "AcquisitionController",
    "EventListener",
    "create_controller",
    "create_frame_source",
]
