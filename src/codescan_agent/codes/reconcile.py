"""
Range Reconciliation Engine
===========================

Compares the stored codes of a product against its declared numeric range.

Algorithm:
    width    = max(len(start), len(end)), widened to the longest stored
               numeric code whose value lies in the range (labels are
               often zero-padded wider than the range was typed)
    expected = every integer in [start, end], zero-padded to width
    missing  = expected codes with no stored entry (ascending)
    excess   = stored codes that are non-numeric, out of range, or whose
               length differs from width (each once, first-seen order)

Examples:
    existing = {"001", "003"}, range "1".."3"
    → width 3, missing ["002"], excess []

    existing = {"1", "2", "5"}, range "1".."3"
    → width 1, missing ["3"], excess ["5"]

A range that does not parse, or whose start is above its end, means "no
range configured" and yields an empty result rather than an error. So
does a range holding more than max_size codes when a limit is given;
callers that must tell the two apart check range_too_large() first.
"""

import logging
import math
import re
from typing import Iterable, List, Optional, Set

from codescan_agent.models.codes import ProductRange, ReconciliationResult


logger = logging.getLogger(__name__)

_NUMERIC = re.compile(r"[0-9]+")


def _parse_bounds(start: Optional[str], end: Optional[str]) -> Optional[ProductRange]:
    start = (start or "").strip()
    end = (end or "").strip()

    if not _NUMERIC.fullmatch(start) or not _NUMERIC.fullmatch(end):
        return None

    product_range = ProductRange(start=start, end=end)
    if product_range.numeric_start > product_range.numeric_end:
        return None
    return product_range


def range_too_large(start: Optional[str], end: Optional[str], max_size: int) -> bool:
    """True if the bounds form a valid range of more than max_size codes."""
    product_range = _parse_bounds(start, end)
    return product_range is not None and product_range.size > max_size


def parse_range(
    start: Optional[str],
    end: Optional[str],
    max_size: Optional[int] = None,
) -> Optional[ProductRange]:
    """
    Build a ProductRange from raw bounds.

    Args:
        start: First code, as entered
        end: Last code, as entered
        max_size: Largest accepted number of codes (None = unlimited)

    Returns:
        ProductRange, or None if a bound is missing, non-numeric, the
        range is inverted or it exceeds max_size
    """
    product_range = _parse_bounds(start, end)
    if product_range is None:
        return None

    if max_size is not None and product_range.size > max_size:
        logger.warning(
            f"Range {product_range.start}..{product_range.end} holds "
            f"{product_range.size} codes, limit is {max_size}"
        )
        return None
    return product_range


def _in_range(code: str, product_range: ProductRange) -> bool:
    if not _NUMERIC.fullmatch(code):
        return False
    return product_range.numeric_start <= int(code) <= product_range.numeric_end


def effective_width(existing_codes: Iterable[str], product_range: ProductRange) -> int:
    """Range width widened by the longest in-range stored code."""
    width = product_range.padding_width
    for code in existing_codes:
        if len(code) > width and _in_range(code, product_range):
            width = len(code)
    return width


def expected_codes(product_range: ProductRange, width: Optional[int] = None) -> List[str]:
    """Every code of the range, zero-padded to width (default: range width), ascending."""
    if width is None:
        width = product_range.padding_width
    return [
        str(i).zfill(width)
        for i in range(product_range.numeric_start, product_range.numeric_end + 1)
    ]


def reconcile(
    existing_codes: Iterable[str],
    range_start: Optional[str],
    range_end: Optional[str],
    max_size: Optional[int] = None,
) -> ReconciliationResult:
    """
    Reconcile stored codes against a product range.

    Pure and deterministic: identical inputs give equal results.

    Args:
        existing_codes: Snapshot of the product's stored codes
        range_start: First code of the range, as entered
        range_end: Last code of the range, as entered
        max_size: Largest range that is expanded (None = unlimited)

    Returns:
        ReconciliationResult (empty when no valid range is configured)
    """
    product_range = parse_range(range_start, range_end, max_size)
    if product_range is None:
        logger.debug(f"No valid range configured ({range_start!r}..{range_end!r})")
        return ReconciliationResult()

    existing = list(existing_codes)
    existing_set: Set[str] = set(existing)
    width = effective_width(existing, product_range)
    expected = expected_codes(product_range, width)

    missing = [code for code in expected if code not in existing_set]
    valid = [code for code in expected if code in existing_set]

    excess: List[str] = []
    seen: Set[str] = set()
    for code in existing:
        if code in seen:
            continue
        seen.add(code)
        if len(code) != width or not _in_range(code, product_range):
            excess.append(code)

    return ReconciliationResult(
        missing_codes=missing,
        excess_codes=excess,
        valid_codes=valid,
        width=width,
        expected_count=len(expected),
    )


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def completion_rate(
    existing_codes: Iterable[str],
    range_start: Optional[str],
    range_end: Optional[str],
    required_quantity: int,
) -> int:
    """
    Completion percentage of a product, capped at 100.

    With a valid range only in-range codes of the effective width count
    (the valid codes of reconcile(), found without expanding the range);
    without one, every distinct stored code counts. A non-positive
    required quantity is treated as complete.

    Returns:
        Integer percentage in [0, 100]
    """
    if required_quantity <= 0:
        return 100

    existing = set(existing_codes)
    product_range = parse_range(range_start, range_end)
    if product_range is None:
        count = len(existing)
    else:
        width = effective_width(existing, product_range)
        count = sum(
            1 for code in existing if len(code) == width and _in_range(code, product_range)
        )

    return min(100, _round_half_up(100 * count / required_quantity))
