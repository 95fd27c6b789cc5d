"""
Fee arithmetic shared by the reconcilers.
"""

from __future__ import annotations


def treasury_fee(amount: int, divisor: int) -> int:
    """Protocol fee skimmed from amount; a divisor of 0 disables it."""
    if divisor == 0:
        return 0
    return amount // divisor


def split_evenly(total: int, count: int) -> list[int]:
    """
    Split total into count shares differing by at most 1.

    The remainder is handed out one unit at a time starting from the first
    share, so earlier positions carry the extra unit.

    Examples:
        >>> split_evenly(5_003, 3)
        [1668, 1668, 1667]
    """
    if count <= 0:
        raise ValueError("count must be positive")
    if total < 0:
        raise ValueError("total must not be negative")
    share, remainder = divmod(total, count)
    return [share + 1 if i < remainder else share for i in range(count)]


def is_evenly_distributed(values: list[int]) -> bool:
    """
    Check values against the even split of their own sum.

    Each value must lie within [total // count, total // count + total % count].
    """
    if not values:
        return False
    total = sum(values)
    share, remainder = divmod(total, len(values))
    return all(share <= value <= share + remainder for value in values)
