"""
Code Cleaning & Extraction
==========================

Normalises raw decoded text into the canonical code form.

Extraction order:
    1. Text ending in digits → the trailing digit run
       ("HTSM1/3SN69801" → "69801")
    2. Otherwise → every digit, concatenated ("AB-12-CD" → "12")
    3. No digits at all → the trimmed text unchanged ("----" → "----")

Trailing runs win over scattered digits because product codes are
suffix-encoded on labels. Case 3 is not a usable code; callers check with
is_usable_code().
"""

import re
from typing import List


_TRAILING_DIGITS = re.compile(r"[0-9]+$")
_NON_DIGITS = re.compile(r"[^0-9]")
_DIGIT_RUN = re.compile(r"[0-9]+")


def extract(raw_text: str) -> str:
    """
    Extract the canonical code from decoded text.

    Deterministic, and idempotent on digits-only input.

    Args:
        raw_text: Text returned by a decode strategy

    Returns:
        Cleaned code, or the trimmed input when it holds no digits
    """
    text = (raw_text or "").strip()

    trailing = _TRAILING_DIGITS.search(text)
    if trailing:
        return trailing.group(0)

    digits = _NON_DIGITS.sub("", text)
    if digits:
        return digits

    return text


def is_usable_code(code: str) -> bool:
    """True if the code is a non-empty run of ASCII digits."""
    return bool(code) and code.isascii() and code.isdigit()


def extract_digit_runs(text: str, min_length: int = 1) -> List[str]:
    """
    All maximal digit runs in free text, in reading order.

    Args:
        text: Recognised text (e.g. OCR output)
        min_length: Runs shorter than this are dropped

    Returns:
        Digit runs of at least min_length characters
    """
    return [run for run in _DIGIT_RUN.findall(text or "") if len(run) >= min_length]


def pick_code_run(runs: List[str]) -> str:
    """
    Choose the most plausible code among digit runs: the longest one,
    the last of equals.

    Returns:
        Chosen run, or "" when there are none
    """
    best = ""
    for run in runs:
        if len(run) >= len(best):
            best = run
    return best
