"""
Code Validator
==============

Business check of a cleaned code against the codes already stored for the
product. Pure function; surfacing the warning is the caller's job.
"""

from enum import Enum
from typing import Iterable


class ValidationResult(str, Enum):
    """Outcome of validating a cleaned code."""

    VALID = "VALID"
    DUPLICATE_IN_PRODUCT = "DUPLICATE_IN_PRODUCT"


def validate(cleaned_code: str, existing_codes: Iterable[str]) -> ValidationResult:
    """
    DUPLICATE_IN_PRODUCT iff the code is present verbatim in existing_codes.

    "001" and "1" are different codes here; padding is part of the code.
    """
    for existing in existing_codes:
        if existing == cleaned_code:
            return ValidationResult.DUPLICATE_IN_PRODUCT
    return ValidationResult.VALID
