"""Runtime contract validation utilities.

Internal module for parameter and input validation. Configuration errors
are raised immediately as ValueError so that bad models never reach the
numeric code.
"""

from typing import Iterable

import numpy as np


def validate_positive(value: float, name: str) -> None:
    """Validate that a value is strictly positive.

    Args:
        value: Value to validate
        name: Parameter name for error message

    Raises:
        ValueError: If value <= 0
    """
    if value <= 0:
        raise ValueError(
            f"{name} must be positive, got {value}"
        )


def validate_non_negative(value: float, name: str) -> None:
    """Validate that a value is non-negative.

    Args:
        value: Value to validate
        name: Parameter name for error message

    Raises:
        ValueError: If value < 0
    """
    if value < 0:
        raise ValueError(
            f"{name} must be non-negative, got {value}"
        )


def validate_positive_integer(value: int, name: str) -> None:
    """Validate that a value is a positive integer.

    Raises:
        ValueError: If value is not a positive integer
    """
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")


def validate_choice(value: str, choices: Iterable[str], name: str) -> None:
    """Validate that a string option is one of the supported names.

    Raises:
        ValueError: If value is not in choices
    """
    choices = tuple(choices)
    if value not in choices:
        raise ValueError(
            f"{name} must be one of {choices}, got '{value}'"
        )


def validate_point_index(index: int, point_count: int) -> None:
    """Validate a point index against the number of points in a model.

    Raises:
        ValueError: If index is out of range
    """
    if not 0 <= index < point_count:
        raise ValueError(
            f"Point index {index} out of range for a model with "
            f"{point_count} points"
        )


def validate_vector(vector: np.ndarray, size: int, name: str) -> None:
    """Validate a 1-D state vector has the expected size and finite values.

    Args:
        vector: Vector to validate
        size: Expected length
        name: Vector name for error message

    Raises:
        ValueError: If the vector is empty, has the wrong shape or
            contains non-finite values
    """
    if vector.size == 0:
        raise ValueError(f"Empty state vector: {name}")

    if vector.shape != (size,):
        raise ValueError(
            f"{name} must have shape ({size},), got {vector.shape}"
        )

    if not np.all(np.isfinite(vector)):
        raise ValueError(
            f"{name} contains non-finite values: {vector}"
        )


def validate_matching_sizes(first: np.ndarray, second: np.ndarray,
                            first_name: str, second_name: str) -> None:
    """Validate two state vectors have the same, non-zero length.

    Raises:
        ValueError: If either vector is empty or the sizes differ
    """
    if first.size == 0 or second.size == 0:
        raise ValueError(
            f"Empty state vector: {first_name}={first.size}, "
            f"{second_name}={second.size}"
        )
    if first.shape != second.shape:
        raise ValueError(
            f"{first_name} and {second_name} sizes differ: "
            f"{first.shape} vs {second.shape}"
        )
