"""Internal validation utilities for inputs and parameters.

These functions are for internal use only (note the leading underscore in
module name).
"""

from typing import Any

import numpy as np

from acoustic_secr.exceptions import DataError, ValidationError


def ensure_coordinates(value: Any, name: str) -> np.ndarray:
    """Convert to a float array of 2-D Cartesian coordinates.

    Parameters
    ----------
    value : array_like, shape (n_points, 2)
    name : str
        Name of the array for error messages

    Returns
    -------
    coordinates : np.ndarray, shape (n_points, 2)

    Raises
    ------
    ValidationError
        If the array is not two-dimensional with exactly two columns, is
        empty, or contains non-finite values.

    Examples
    --------
    >>> ensure_coordinates([[0.0, 0.0], [1.0, 0.0]], "detectors").shape
    (2, 2)
    """
    arr = np.asarray(value, dtype=float)
    if arr.ndim != 2 or arr.shape[1] != 2:
        raise ValidationError(
            f"{name} must be a two-column array of Cartesian coordinates",
            expected="shape (n_points, 2)",
            got=f"shape {arr.shape}",
            hint="Stack x and y with np.column_stack([x, y])",
            example=f"    {name} = np.array([[0.0, 0.0], [10.0, 0.0]])",
        )
    if arr.shape[0] == 0:
        raise ValidationError(
            f"{name} must contain at least one point",
            expected="n_points >= 1",
            got="n_points = 0",
        )
    if not np.all(np.isfinite(arr)):
        raise ValidationError(
            f"{name} contains non-finite coordinates",
            expected="finite x and y values",
            got=f"{np.sum(~np.isfinite(arr))} non-finite value(s)",
        )
    return arr


def ensure_positive_scalar(
    value: float, name: str, minimum: float = 0.0, strict: bool = True
) -> None:
    """Verify value is positive (or non-negative).

    Parameters
    ----------
    value : float
        Value to check
    name : str
        Name of the parameter for error messages
    minimum : float, optional
        Minimum allowed value, by default 0.0
    strict : bool, optional
        If True, value must be > minimum. If False, value must be >= minimum.
        By default True.

    Raises
    ------
    ValidationError
        If value does not meet the constraint

    Examples
    --------
    >>> ensure_positive_scalar(0.5, "area")  # OK
    >>> ensure_positive_scalar(0.0, "buffer", strict=False)  # OK
    """
    if strict:
        condition = value > minimum
        expected_str = f"{name} > {minimum}"
    else:
        condition = value >= minimum
        expected_str = f"{name} >= {minimum}"

    if not condition:
        raise ValidationError(
            f"Invalid value for {name}",
            expected=expected_str,
            got=f"{name} = {value}",
            hint=f"Use a {'positive' if strict else 'non-negative'} value",
        )


def ensure_all_finite(arr: np.ndarray, name: str) -> None:
    """Verify all array elements are finite (no NaN or Inf).

    Raises
    ------
    DataError
        If array contains NaN or Inf values
    """
    if not np.all(np.isfinite(arr)):
        n_nan = np.sum(np.isnan(arr))
        n_inf = np.sum(np.isinf(arr))
        raise DataError(
            f"Found non-finite values in {name}",
            data_name=name,
            hint=f"Array contains {n_nan} NaN value(s) and {n_inf} Inf value(s). "
            "Use 0 for detectors that did not detect the call.",
        )


def ensure_all_non_negative(arr: np.ndarray, name: str) -> None:
    """Verify all array elements are non-negative.

    Raises
    ------
    DataError
        If array contains negative values
    """
    if np.any(arr < 0):
        n_negative = np.sum(arr < 0)
        raise DataError(
            f"{name} must contain only non-negative values, "
            f"found {n_negative} negative value(s) (minimum = {np.min(arr):.6f})",
            data_name=name,
        )


def ensure_binary(arr: np.ndarray, name: str) -> None:
    """Verify an array only contains zeros and ones.

    Raises
    ------
    DataError
        If any entry is not 0 or 1

    Examples
    --------
    >>> ensure_binary(np.array([[1, 0], [0, 1]]), "binary")  # OK
    >>> ensure_binary(np.array([[2, 0]]), "binary")  # Raises
    """
    is_binary = (arr == 0) | (arr == 1)
    if not np.all(is_binary):
        bad_values = np.unique(arr[~is_binary])[:5]
        raise DataError(
            f"{name} capture history must only contain 0s and 1s, "
            f"found {bad_values.tolist()}",
            data_name=name,
        )
