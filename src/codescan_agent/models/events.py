"""
UI Event Schema
===============

Pydantic models for events emitted to the UI shell.

Output Contract:
    Accepted code:
        {
            "type": "code_accepted",
            "code": "69801",
            "raw_text": "HTSM1/3SN69801",
            "source_strategy": "native",
            "timestamp": 1707321234.567
        }

    Feedback:
        {
            "type": "feedback",
            "kind": "DUPLICATE_WARNING",
            "message": "Code 69801 already exists for product default",
            "code": "69801",
            "timestamp": 1707321234.567
        }

Each event kind is throttled independently before emission.
"""

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field


class FeedbackKind(str, Enum):
    """
    User-visible feedback categories.

    Attributes:
        DUPLICATE_WARNING: Scanned code already stored for the product
        DECODE_ERROR: Decoded text held no usable code
        INIT_ERROR: Session could not start (camera missing, denied, ...)
    """

    DUPLICATE_WARNING = "DUPLICATE_WARNING"
    DECODE_ERROR = "DECODE_ERROR"
    INIT_ERROR = "INIT_ERROR"


class CodeAcceptedEvent(BaseModel):
    """A candidate code passed the throttle gate and the validator."""

    type: Literal["code_accepted"] = "code_accepted"
    code: str = Field(..., min_length=1, description="Cleaned code")
    raw_text: str = Field(..., description="Text as decoded by the strategy")
    source_strategy: str = Field(..., description="Strategy that decoded the code")
    timestamp: float = Field(..., description="UNIX timestamp of acceptance")


class FeedbackEvent(BaseModel):
    """User-visible warning or error."""

    type: Literal["feedback"] = "feedback"
    kind: FeedbackKind = Field(..., description="Feedback category")
    message: str = Field(..., description="Human readable message")
    code: Optional[str] = Field(default=None, description="Code concerned, if any")
    timestamp: float = Field(..., description="UNIX timestamp of emission")


AcquisitionEvent = Union[CodeAcceptedEvent, FeedbackEvent]
