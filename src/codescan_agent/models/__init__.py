"""
Data Models
===========

Data models for CodeScanAgent.

Models:
    Input:
        - FrameMessage: Schema for messages from a remote frame stream

    State:
        - AcquisitionState: Controller lifecycle states
        - AcquisitionMode: Continuous or single-shot acquisition

    Codes:
        - DecodeAttempt: One strategy invocation on one frame
        - CandidateCode: Decoded string awaiting validation
        - ProductRange: Declared numeric code range
        - ReconciliationResult: Missing / excess codes for a range

    Events:
        - CodeAcceptedEvent, FeedbackEvent, FeedbackKind: UI event contract
"""

from codescan_agent.models.input import FrameMessage
from codescan_agent.models.state import AcquisitionMode, AcquisitionState
from codescan_agent.models.codes import (
    CandidateCode,
    DecodeAttempt,
    ProductRange,
    ReconciliationResult,
)
from codescan_agent.models.events import (
    AcquisitionEvent,
    CodeAcceptedEvent,
    FeedbackEvent,
    FeedbackKind,
)

__all__ = [
    # Input
    "FrameMessage",
    # State
    "AcquisitionMode",
    "AcquisitionState",
    # Codes
    "CandidateCode",
    "DecodeAttempt",
    "ProductRange",
    "ReconciliationResult",
    # Events
    "AcquisitionEvent",
    "CodeAcceptedEvent",
    "FeedbackEvent",
    "FeedbackKind",
]
