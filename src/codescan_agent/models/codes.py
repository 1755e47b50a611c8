"""
Code Data Models
================

Internal value types passed between the decode chain, the throttle gate and
the reconciliation engine.

Lifecycle:
    - DecodeAttempt / CandidateCode live for one capture cycle
    - ProductRange / ReconciliationResult are recomputed on demand
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True, slots=True)
class DecodeAttempt:
    """
    Outcome of one strategy invocation on one frame.

    Attributes:
        strategy_id: Identifier of the strategy that ran
        frame_id: Frame the strategy was given
        result_text: Decoded text, None when nothing was found
        succeeded: True iff result_text is a non-empty string
        skipped: True when the strategy was still in flight and not re-entered
    """

    strategy_id: str
    frame_id: int
    result_text: Optional[str] = None
    succeeded: bool = False
    skipped: bool = False


@dataclass(frozen=True, slots=True)
class CandidateCode:
    """
    A decoded string proposed by a strategy, not yet validated.

    Attributes:
        raw_text: Text exactly as returned by the strategy
        cleaned: Canonical code form (see codes.cleaning.extract)
        source_strategy: Strategy that produced the text
        timestamp: Monotonic time the candidate was produced
    """

    raw_text: str
    cleaned: str
    source_strategy: str
    timestamp: float


@dataclass(frozen=True, slots=True)
class ProductRange:
    """
    Declared numeric code range of a product.

    Start and end are kept as strings; their lengths define the zero-padding
    width of every expected code.
    """

    start: str
    end: str

    @property
    def padding_width(self) -> int:
        return max(len(self.start), len(self.end))

    @property
    def numeric_start(self) -> int:
        return int(self.start)

    @property
    def numeric_end(self) -> int:
        return int(self.end)

    @property
    def size(self) -> int:
        """Number of codes in the range."""
        return self.numeric_end - self.numeric_start + 1


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Result of reconciling existing codes against a product range.

    Every existing code is either in valid_codes or in excess_codes, never
    both. missing_codes never intersects the existing codes.

    Attributes:
        missing_codes: Expected zero-padded codes with no stored entry, ascending
        excess_codes: Existing codes that are non-numeric, out of range or of
            the wrong width, in first-seen order
        valid_codes: Existing codes matching an expected code, ascending
        width: Padding width of the range (0 when no range is configured)
        expected_count: Number of codes in the range (0 when not configured)
    """

    missing_codes: List[str] = field(default_factory=list)
    excess_codes: List[str] = field(default_factory=list)
    valid_codes: List[str] = field(default_factory=list)
    width: int = 0
    expected_count: int = 0

    @property
    def has_missing(self) -> bool:
        return bool(self.missing_codes)

    @property
    def has_excess(self) -> bool:
        return bool(self.excess_codes)
