"""
Acquisition State Models
========================

Discrete states and modes of an acquisition session.

State Machine:
    IDLE → INITIALIZING → SCANNING ⇄ PAUSED → TERMINATED

    - IDLE → INITIALIZING: session start, frame source being acquired
    - INITIALIZING → SCANNING: frame source reported its first frame
    - SCANNING → PAUSED: accepted code (continuous) or any decode (single-shot)
    - PAUSED → SCANNING: cooldown elapsed (continuous) or explicit resume
    - * → TERMINATED: explicit close or fatal initialisation error
"""

from enum import Enum


class AcquisitionState(str, Enum):
    """
    Lifecycle states of the acquisition controller.

    Attributes:
        IDLE: Created, nothing acquired yet
        INITIALIZING: Frame source starting, waiting for first frame
        SCANNING: Decode loops active
        PAUSED: Decode loops suspended (cooldown or awaiting resume)
        TERMINATED: Session closed, no further work accepted
    """

    IDLE = "IDLE"
    INITIALIZING = "INITIALIZING"
    SCANNING = "SCANNING"
    PAUSED = "PAUSED"
    TERMINATED = "TERMINATED"


class AcquisitionMode(str, Enum):
    """
    Acquisition modes.

    Attributes:
        CONTINUOUS: Acceptance pauses briefly, then scanning resumes
        SINGLE_SHOT: Any decode pauses until an explicit resume
    """

    CONTINUOUS = "continuous"
    SINGLE_SHOT = "single_shot"
