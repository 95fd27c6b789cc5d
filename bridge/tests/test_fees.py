"""
Tests for fee arithmetic.
"""

from __future__ import annotations

import pytest

from bridge.fees import is_evenly_distributed, split_evenly, treasury_fee


class TestTreasuryFee:
    """Tests for the treasury fee."""

    def test_floor_division(self) -> None:
        """Test the fee rounds down."""
        assert treasury_fee(1_000_000, 2000) == 500
        assert treasury_fee(1_999, 2000) == 0

    def test_disabled(self) -> None:
        """Test a zero divisor disables the fee."""
        assert treasury_fee(1_000_000, 0) == 0


class TestSplitEvenly:
    """Tests for splitting an amount evenly."""

    @pytest.mark.parametrize(
        "total,count", [(0, 1), (5_003, 3), (7, 7), (1, 4), (123_456_789, 17)]
    )
    def test_sum_and_spread(self, total, count) -> None:
        """Test shares add up and differ by at most one."""
        shares = split_evenly(total, count)
        assert len(shares) == count
        assert sum(shares) == total
        assert max(shares) - min(shares) <= 1

    def test_remainder_to_earliest(self) -> None:
        """Test the remainder goes to the earliest shares."""
        assert split_evenly(10, 4) == [3, 3, 2, 2]

    def test_invalid_count(self) -> None:
        """Test a zero count is refused."""
        with pytest.raises(ValueError):
            split_evenly(10, 0)


class TestEvenDistribution:
    """Tests for checking an even distribution."""

    def test_exact_split(self) -> None:
        """Test equal shares are even."""
        assert is_evenly_distributed([100_001, 100_001, 100_001])

    def test_remainder_range(self) -> None:
        """Test shares may exceed the floor share by the remainder."""
        # 300,005 / 3 = 100,001 remainder 2
        assert is_evenly_distributed([100_003, 100_001, 100_001])
        assert is_evenly_distributed([100_002, 100_002, 100_001])

    def test_below_share(self) -> None:
        """Test a share below the floor share is refused."""
        assert not is_evenly_distributed([100_000, 100_001, 100_002])

    def test_split_evenly_output_is_accepted(self) -> None:
        """Test split_evenly output passes the check."""
        assert is_evenly_distributed(split_evenly(1_000_007, 5))

    def test_empty(self) -> None:
        """Test an empty list is not even."""
        assert not is_evenly_distributed([])
