"""
Exception hierarchy for pymultifit.

All exceptions inherit from MultiFitError to allow catching any
library-specific error. Domain-specific exceptions should inherit from
the appropriate base class here.

Design principles:
    - Exceptions carry diagnostic information as attributes
    - Error messages are actionable with actual vs expected values
    - Never catch and re-raise with less information
"""


class MultiFitError(Exception):
    """Base exception for all pymultifit errors."""
    pass


class ValidationError(MultiFitError):
    """
    Input validation failed.

    Raised when user-provided inputs fail validation checks.
    """
    pass


class DimensionError(ValidationError):
    """
    Array dimensions are incorrect or inconsistent.

    Raised when array shapes don't match expected dimensions or
    when multiple arrays have inconsistent shapes.
    """
    pass


class ConfigurationError(ValidationError):
    """
    Invalid option or combination of options.

    Raised while building the fit configuration, before any partition
    tree is built.

    Attributes:
        option: Name of the offending option, if a single one is at fault
        value: The rejected value
    """

    def __init__(
        self,
        message: str,
        option: str | None = None,
        value: object = None,
    ):
        super().__init__(message)
        self.option = option
        self.value = value


class DegenerateMarginError(MultiFitError):
    """
    Input margins are constant.

    Constant columns cannot be bisected. They are normally excluded from
    testing and reported as warnings; this error is raised only when no
    margin pair is left to test.

    Attributes:
        x_columns: Indices of the degenerate x columns
        y_columns: Indices of the degenerate y columns
    """

    def __init__(
        self,
        message: str,
        x_columns: tuple[int, ...] = (),
        y_columns: tuple[int, ...] = (),
    ):
        super().__init__(message)
        self.x_columns = tuple(x_columns)
        self.y_columns = tuple(y_columns)


class NumericalError(MultiFitError):
    """
    Numerical computation failed.

    Base class for errors arising from numerical issues during computation.
    """
    pass


class NumericalInstabilityError(NumericalError):
    """
    A p-value could not be computed to a finite value.

    Exact tests are evaluated in the log domain; this is raised only if
    that still produces a non-finite result.

    Attributes:
        table: The (a, b, c, d) counts being tested
        method: Name of the test method
    """

    def __init__(
        self,
        message: str,
        table: tuple[int, int, int, int] | None = None,
        method: str | None = None,
    ):
        super().__init__(message)
        self.table = table
        self.method = method
