"""
Range Reconciliation Tests
==========================

Tests for missing/excess computation and completion rate.
"""

import pytest

from codescan_agent.codes.reconcile import (
    completion_rate,
    effective_width,
    expected_codes,
    parse_range,
    range_too_large,
    reconcile,
)
from codescan_agent.models.codes import ProductRange, ReconciliationResult


class TestReconcile:
    """Tests for reconcile()."""

    def test_padded_range(self):
        """{"001","003"} over "001".."003" misses 002."""
        result = reconcile(["001", "003"], "001", "003")
        assert result.width == 3
        assert result.missing_codes == ["002"]
        assert result.excess_codes == []

    def test_padding_width_from_bounds(self):
        """Width is max(len(start), len(end)): "1".."003" pads to 3."""
        result = reconcile(["001", "003"], "1", "003")
        assert result.width == 3
        assert result.missing_codes == ["002"]
        assert result.excess_codes == []

    def test_padded_codes_widen_unpadded_range(self):
        """{"001","003"} over "1".."3": stored padding sets width 3."""
        result = reconcile(["001", "003"], "1", "3")
        assert result.width == 3
        assert result.missing_codes == ["002"]
        assert result.excess_codes == []
        assert result.valid_codes == ["001", "003"]

    def test_mixed_widths_shorter_code_is_excess(self):
        """Once the width is 3, an in-range "1" no longer matches."""
        result = reconcile(["1", "003"], "1", "3")
        assert result.width == 3
        assert result.missing_codes == ["001", "002"]
        assert result.excess_codes == ["1"]

    def test_out_of_range_long_code_does_not_widen(self):
        """Only in-range codes widen the padding."""
        result = reconcile(["1", "0009"], "1", "3")
        assert result.width == 1
        assert result.excess_codes == ["0009"]

    def test_out_of_range_is_excess(self):
        """{"1","2","5"} over 1..3: missing ["3"], excess ["5"]."""
        result = reconcile(["1", "2", "5"], "1", "3")
        assert result.width == 1
        assert result.missing_codes == ["3"]
        assert result.excess_codes == ["5"]
        assert result.valid_codes == ["1", "2"]

    def test_non_numeric_is_excess(self):
        result = reconcile(["01", "AB", "02"], "01", "03")
        assert result.excess_codes == ["AB"]
        assert result.missing_codes == ["03"]

    def test_excess_reported_once_in_first_seen_order(self):
        result = reconcile(["9", "X", "9", "7"], "1", "3")
        assert result.excess_codes == ["9", "X", "7"]

    @pytest.mark.parametrize(
        "start,end",
        [("5", "1"), ("", "3"), ("1", None), ("a", "3"), ("-1", "3"), (None, None)],
    )
    def test_invalid_range_gives_empty_result(self, start, end):
        """No valid range configured: no missing, no excess."""
        assert reconcile(["1", "X"], start, end) == ReconciliationResult()

    def test_idempotent(self):
        existing = ["0005", "0001", "ABC", "0099", "0003"]
        assert reconcile(existing, "0001", "0010") == reconcile(existing, "0001", "0010")

    @pytest.mark.parametrize(
        "existing,start,end",
        [
            (["1", "2", "5"], "1", "3"),
            (["001", "003", "003", "X"], "001", "010"),
            ([], "10", "20"),
            (["0100", "0101", "99"], "0100", "0150"),
        ],
    )
    def test_completeness_invariant(self, existing, start, end):
        """missing + valid-in-range == end - start + 1."""
        result = reconcile(existing, start, end)
        assert len(result.missing_codes) + len(result.valid_codes) == int(end) - int(start) + 1
        assert result.expected_count == int(end) - int(start) + 1

    def test_oversized_range_gives_empty_result(self):
        """A range above max_size is treated as no range, without expanding it."""
        result = reconcile(["5"], "0", "999999999999", max_size=1000)
        assert result == ReconciliationResult()
        assert not result.has_missing and not result.has_excess

    def test_range_at_limit_is_expanded(self):
        result = reconcile(["2"], "1", "3", max_size=3)
        assert result.missing_codes == ["1", "3"]
        assert result.has_missing and not result.has_excess

    def test_partition_of_existing(self):
        """Every existing code is either valid or excess, never both."""
        existing = ["001", "1", "004", "X", "002"]
        result = reconcile(existing, "001", "003")
        valid, excess = set(result.valid_codes), set(result.excess_codes)
        assert valid | excess == set(existing)
        assert not valid & excess
        assert not set(result.missing_codes) & set(existing)


class TestRangeHelpers:
    """Tests for range parsing and expansion."""

    def test_parse_range_strips(self):
        assert parse_range(" 1 ", "3") == ProductRange(start="1", end="3")

    def test_expected_codes(self):
        assert expected_codes(ProductRange(start="8", end="011")) == ["008", "009", "010", "011"]

    def test_expected_codes_explicit_width(self):
        assert expected_codes(ProductRange(start="1", end="2"), width=3) == ["001", "002"]

    def test_effective_width(self):
        product_range = ProductRange(start="1", end="20")
        assert effective_width([], product_range) == 2
        assert effective_width(["0005", "X", "00099"], product_range) == 4

    def test_product_range_properties(self):
        product_range = ProductRange(start="0098", end="102")
        assert product_range.padding_width == 4
        assert product_range.numeric_start == 98
        assert product_range.numeric_end == 102
        assert product_range.size == 5

    def test_parse_range_limit(self):
        assert parse_range("1", "10", max_size=10) == ProductRange(start="1", end="10")
        assert parse_range("1", "11", max_size=10) is None

    @pytest.mark.parametrize(
        "start,end,too_large",
        [("1", "11", True), ("1", "10", False), ("11", "1", False), ("x", "99999", False)],
    )
    def test_range_too_large(self, start, end, too_large):
        """Only a valid range above the limit counts as too large."""
        assert range_too_large(start, end, 10) is too_large


class TestCompletionRate:
    """Tests for completion_rate()."""

    def test_in_range_codes_count(self):
        """Only in-range codes count toward completion."""
        assert completion_rate(["1", "2", "5"], "1", "3", 3) == 67

    def test_capped_at_100(self):
        assert completion_rate(["1", "2", "3"], "1", "3", 2) == 100

    def test_rounds_half_up(self):
        assert completion_rate(["1"], "1", "8", 8) == 13  # 12.5 → 13

    def test_non_positive_required_is_complete(self):
        assert completion_rate([], "1", "3", 0) == 100
        assert completion_rate([], "1", "3", -4) == 100

    def test_without_range_counts_distinct_codes(self):
        assert completion_rate(["7", "7", "8"], None, None, 4) == 50

    def test_matches_reconcile_valid_codes(self):
        existing = ["001", "1", "003", "0004", "X", "003"]
        valid = reconcile(existing, "1", "5").valid_codes
        assert completion_rate(existing, "1", "5", 4) == round(100 * len(valid) / 4)

    def test_huge_range_is_not_expanded(self):
        """Completion only looks at stored codes, whatever the range size."""
        assert completion_rate(["000000000007"], "1", "999999999999", 2) == 50
