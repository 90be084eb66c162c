"""Custom exceptions and warnings for acoustic_secr.

Error messages should say what went wrong, name the offending parameter
or capture-history component, and suggest a fix.

Usage Guidelines
----------------
- **ConfigurationError**: Options that are individually valid but
  contradictory, missing required options, or parameter overrides that
  cannot be honoured (start value outside bounds, underivable start
  value). Raised before any geometry or likelihood work.

- **ValidationError**: Coordinate arrays, masks or other inputs with the
  wrong shape or values.

- **DomainError**: A link transform was asked to map a value at or beyond
  the edge of its domain (e.g. ``log(0)`` or ``logit(1)``).

- **DataError**: Problems with the capture history itself: dimension
  mismatches between components, non-binary values in the binary
  component, detections with no detector firing.

- **FittingError**: The optimizer could not produce finite estimates.

- **NumericalWarning**: A likelihood evaluation was clamped or failed
  (out-of-bounds parameters, non-finite objective). The optimizer may
  keep probing, so these are warnings rather than errors.

All exceptions inherit from **AcousticSecrError**.

Examples
--------
>>> from acoustic_secr.exceptions import DataError, AcousticSecrError
>>> try:
...     raise DataError(
...         "Binary capture history contains values other than 0 and 1",
...         data_name="binary",
...     )
... except AcousticSecrError as e:
...     print(e)
Binary capture history contains values other than 0 and 1 (data: binary)
"""


class AcousticSecrError(Exception):
    """Base exception for all acoustic_secr errors."""

    pass


class ValidationError(AcousticSecrError):
    """Raised when input validation fails.

    Parameters
    ----------
    message : str
        Description of what went wrong
    expected : str, optional
        What was expected (for structured error messages)
    got : str, optional
        What was actually received
    hint : str, optional
        Actionable suggestion for fixing the error
    example : str, optional
        Code snippet showing correct usage

    Examples
    --------
    >>> raise ValidationError(
    ...     "detectors must have two columns",
    ...     expected="shape (n_detectors, 2)",
    ...     got="shape (6, 3)",
    ...     hint="Pass Cartesian (x, y) coordinates",
    ... )
    """

    def __init__(
        self,
        message: str,
        expected: str | None = None,
        got: str | None = None,
        hint: str | None = None,
        example: str | None = None,
    ):
        """Initialize ValidationError with structured message components."""
        parts = [message]

        if expected is not None:
            parts.append(f"\nExpected: {expected}")

        if got is not None:
            parts.append(f"Got: {got}")

        if hint is not None:
            parts.append(f"\nHint: {hint}")

        if example is not None:
            parts.append(f"\nExample:\n{example}")

        super().__init__("\n".join(parts))


class DomainError(ValidationError):
    """Raised when a link transform is applied outside its domain.

    Examples
    --------
    >>> raise DomainError(
    ...     "Cannot apply the logit link to g0",
    ...     expected="0 < g0 < 1",
    ...     got="g0 = 1.0",
    ... )
    """

    pass


class FittingError(AcousticSecrError):
    """Raised when model fitting fails.

    Parameters
    ----------
    message : str
        Description of what went wrong during fitting
    hint : str, optional
        Actionable suggestion for fixing the error
    """

    def __init__(self, message: str, hint: str | None = None) -> None:
        if hint is not None:
            message = f"{message}\n\nHint: {hint}"
        super().__init__(message)


class ConfigurationError(AcousticSecrError):
    """Raised when configuration is invalid or inconsistent.

    Parameters
    ----------
    message : str
        Description of the configuration problem
    hint : str, optional
        Actionable suggestion for fixing the configuration

    Examples
    --------
    >>> raise ConfigurationError(
    ...     "lower_cutoff must be lower than cutoff",
    ...     hint="Use SignalStrengthOptions(cutoff=150, lower_cutoff=140)",
    ... )
    """

    def __init__(self, message: str, hint: str | None = None) -> None:
        if hint is not None:
            message = f"{message}\n\nHint: {hint}"
        super().__init__(message)


class DataError(AcousticSecrError):
    """Raised when capture-history data have problems.

    Parameters
    ----------
    message : str
        Description of the data problem
    data_name : str, optional
        Name of the problematic component (e.g. ``"binary"``, ``"bearing"``)
    hint : str, optional
        Actionable suggestion for fixing the data issue
    """

    def __init__(
        self, message: str, data_name: str | None = None, hint: str | None = None
    ) -> None:
        if data_name is not None:
            message = f"{message} (data: {data_name})"
        if hint is not None:
            message = f"{message}\n\nHint: {hint}"
        super().__init__(message)


class NumericalWarning(RuntimeWarning):
    """Issued when a likelihood evaluation is clamped or fails numerically."""

    pass
