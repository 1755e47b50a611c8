"""
Code Logic Tests
================

Tests for cleaning, the throttle gate and the validator.
"""

import pytest

from codescan_agent.codes import (
    GateDecision,
    ThrottleChannel,
    ThrottleGate,
    ValidationResult,
    extract,
    extract_digit_runs,
    is_usable_code,
    pick_code_run,
    validate,
)


class TestExtract:
    """Tests for code extraction from decoded text."""

    def test_trailing_digit_run(self):
        """Text ending in digits yields the trailing run."""
        assert extract("HTSM1/3SN69801") == "69801"

    def test_scattered_digits(self):
        """Without a trailing run, all digits are concatenated."""
        assert extract("AB-12-CD") == "12"
        assert extract("A1B2C") == "12"

    def test_no_digits_returns_trimmed_text(self):
        """Text without digits comes back unchanged (trimmed)."""
        assert extract("----") == "----"
        assert extract("  abc  ") == "abc"

    def test_whitespace_is_trimmed_before_matching(self):
        """Trailing whitespace does not hide a trailing run."""
        assert extract("SN 00042 \n") == "00042"

    def test_empty_input(self):
        assert extract("") == ""

    @pytest.mark.parametrize("raw", ["HTSM1/3SN69801", "AB-12-CD", "0007", "x9y8"])
    def test_idempotent(self, raw):
        """extract(extract(x)) == extract(x) once x is digits-only."""
        once = extract(raw)
        assert extract(once) == once

    def test_leading_zeros_preserved(self):
        assert extract("LOT-000123") == "000123"


class TestUsableCode:
    """Tests for the usable-code check."""

    def test_digits_are_usable(self):
        assert is_usable_code("0042")

    def test_text_is_not_usable(self):
        assert not is_usable_code("----")
        assert not is_usable_code("")
        assert not is_usable_code("12a")

    def test_non_ascii_digits_are_not_usable(self):
        """Full-width digits are not ASCII codes."""
        assert not is_usable_code("１２３")


class TestDigitRuns:
    """Tests for digit run extraction used on recognised text."""

    def test_runs_in_order(self):
        assert extract_digit_runs("LOT 12 SN 004567 X 99") == ["12", "004567", "99"]

    def test_min_length_filter(self):
        assert extract_digit_runs("LOT 12 SN 004567 X 99", min_length=3) == ["004567"]

    def test_pick_longest(self):
        assert pick_code_run(["12", "004567", "99"]) == "004567"

    def test_pick_last_of_equals(self):
        """Ties go to the last run (codes are suffix-encoded)."""
        assert pick_code_run(["123", "456"]) == "456"

    def test_pick_empty(self):
        assert pick_code_run([]) == ""


class TestThrottleGate:
    """Tests for the temporal deduplication gate."""

    @pytest.fixture
    def gate(self, fake_clock):
        return ThrottleGate(
            {
                ThrottleChannel.ACCEPTED_CODE: 2.0,
                ThrottleChannel.DUPLICATE_WARNING: 5.0,
                ThrottleChannel.WARNING: 3.0,
            },
            clock=fake_clock,
        )

    def test_first_value_accepted(self, gate):
        assert gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0) is GateDecision.ACCEPTED

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (0.0, GateDecision.SUPPRESSED),
            (1.999, GateDecision.SUPPRESSED),
            (2.0, GateDecision.ACCEPTED),
            (5.0, GateDecision.ACCEPTED),
        ],
    )
    def test_repeat_suppressed_iff_within_window(self, gate, delta, expected):
        """Same value at T+delta is suppressed iff delta < window."""
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        assert gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0 + delta) is expected

    def test_different_value_accepted(self, gate):
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        assert gate.accept(ThrottleChannel.ACCEPTED_CODE, "002", now=10.5) is GateDecision.ACCEPTED

    def test_suppression_does_not_extend_window(self, gate):
        """Suppressed repeats do not refresh the record timestamp."""
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=11.5)
        assert gate.record(ThrottleChannel.ACCEPTED_CODE).last_timestamp == 10.0
        assert gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=12.0) is GateDecision.ACCEPTED

    def test_channels_are_independent(self, gate):
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        assert gate.accept(ThrottleChannel.DUPLICATE_WARNING, "001", now=10.0) is GateDecision.ACCEPTED
        assert gate.accept(ThrottleChannel.DUPLICATE_WARNING, "001", now=14.0) is GateDecision.SUPPRESSED

    def test_uses_clock_when_no_time_given(self, gate, fake_clock):
        gate.accept(ThrottleChannel.WARNING, "boom")
        fake_clock.advance(1.0)
        assert gate.accept(ThrottleChannel.WARNING, "boom") is GateDecision.SUPPRESSED
        fake_clock.advance(2.0)
        assert gate.accept(ThrottleChannel.WARNING, "boom") is GateDecision.ACCEPTED

    def test_reset_forgets_records(self, gate):
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        gate.reset()
        assert gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.1) is GateDecision.ACCEPTED

    def test_metrics_count_suppressions(self, gate):
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.0)
        gate.accept(ThrottleChannel.ACCEPTED_CODE, "001", now=10.1)
        assert gate.get_metrics()["suppressed_accepted_code"] == 1


class TestValidator:
    """Tests for the duplicate check."""

    def test_valid(self):
        assert validate("003", ["001", "002"]) is ValidationResult.VALID

    def test_duplicate(self):
        assert validate("002", ["001", "002"]) is ValidationResult.DUPLICATE_IN_PRODUCT

    def test_membership_is_verbatim(self):
        """Padding is part of the code: '1' is not '001'."""
        assert validate("1", ["001"]) is ValidationResult.VALID
