"""
Data validation utilities for sequence data.
"""

from typing import Tuple

from audioseq.errors import SeqError


class ValidationError(SeqError):
    """Raised when a value is outside the range its encoding allows."""

    pass


def validate_range(value: int, value_range: Tuple[int, int], name: str = "value") -> None:
    """
    Validate that a value lies inside an inclusive range.

    Args:
        value: The value to validate
        value_range: (minimum, maximum), both inclusive
        name: Name of the value for error messages

    Raises:
        ValidationError: If value is out of range
    """
    low, high = value_range
    if not low <= value <= high:
        raise ValidationError(f"{name} must be {low}-{high}, got {value}")


def fits_unsigned(value: int, num_bytes: int) -> bool:
    """Check whether value fits an unsigned field of num_bytes."""
    return 0 <= value < (1 << (8 * num_bytes))


def fits_signed(value: int, num_bytes: int) -> bool:
    """Check whether value fits a two's complement field of num_bytes."""
    limit = 1 << (8 * num_bytes - 1)
    return -limit <= value < limit
