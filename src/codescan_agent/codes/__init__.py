"""
Codes Module
============

Pure code-level logic, free of I/O and timing side effects:
    - cleaning: raw decoded text → canonical code
    - throttle: per-channel temporal deduplication gate
    - validator: duplicate check against stored codes
    - reconcile: missing / excess codes for a numeric range
"""

from codescan_agent.codes.cleaning import (
    extract,
    extract_digit_runs,
    is_usable_code,
    pick_code_run,
)
from codescan_agent.codes.throttle import (
    GateDecision,
    ThrottleChannel,
    ThrottleGate,
    ThrottleRecord,
)
from codescan_agent.codes.validator import ValidationResult, validate
from codescan_agent.codes.reconcile import (
    completion_rate,
    effective_width,
    expected_codes,
    parse_range,
    range_too_large,
    reconcile,
)


__all__ = [
    "extract",
    "extract_digit_runs",
    "is_usable_code",
    "pick_code_run",
    "GateDecision",
    "ThrottleChannel",
    "ThrottleGate",
    "ThrottleRecord",
    "ValidationResult",
    "validate",
    "completion_rate",
    "effective_width",
    "expected_codes",
    "parse_range",
    "range_too_large",
    "reconcile",
]
