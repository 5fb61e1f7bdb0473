"""
Module: batch_helpers.py
Description: Utility functions for batch operations.

Key Components:
- validate_batch_size(): Validate batch size constraints
- find_duplicate_handles(): Detect receipt handles submitted twice

Dependencies: typing
"""

from typing import Any, List, Sequence


def validate_batch_size(items: Sequence[Any], max_size: int) -> None:
    """
    Validate that a batch is non-empty and doesn't exceed the maximum size.

    Args:
        items: Items to validate
        max_size: Maximum allowed batch size

    Raises:
        ValueError: If the batch is empty or too large

    Example:
        >>> validate_batch_size([1, 2, 3], 5)  # OK
        >>> validate_batch_size([1, 2, 3], 2)  # Raises ValueError
    """
    if not isinstance(items, (list, tuple)):
        raise ValueError("items must be a list")
    if not items:
        raise ValueError("batch must contain at least one item")
    if len(items) > max_size:
        raise ValueError(f"batch size cannot exceed {max_size} items")


def find_duplicate_handles(receipt_handles: Sequence[str]) -> List[str]:
    """
    Return receipt handles that appear more than once, in first-seen order.

    Example:
        >>> find_duplicate_handles(["a", "b", "a"])
        ['a']
    """
    seen = set()
    duplicates: List[str] = []
    for handle in receipt_handles:
        if handle in seen and handle not in duplicates:
            duplicates.append(handle)
        seen.add(handle)
    return duplicates
