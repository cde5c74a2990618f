"""
Exception Classes Module

Defines exception hierarchy for the k12fert package.
"""


class K12FertError(Exception):
    """
    Base exception class for all k12fert package errors.

    All custom exceptions in the k12fert package inherit from this class,
    allowing users to catch any k12fert-specific error with:

        try:
            panel = build_person_period_panel(...)
        except K12FertError as e:
            # Handle any k12fert error
            print(f"k12fert error: {e}")
    """
    pass


class ValidationError(K12FertError):
    """
    Exception raised when panel construction inputs are malformed.

    Common triggers include:

    - A risk-set window with ``min_age >= max_age`` or non-integer bounds
    - A required field that is missing on input rows that were not
      filtered by the caller
    - An unsupported file suffix passed to the tabular I/O helpers

    Fatal to the single call. The caller must fix the configuration or the
    upstream filtering before retrying.

    See Also
    --------
    MissingRequiredColumnError : For columns absent from the input table.
    """
    pass


class MissingRequiredColumnError(ValidationError):
    """
    Exception raised when an input DataFrame is missing required columns.

    Required columns depend on the call but typically include:

    - the subject identifier (``caseid``)
    - age at observation (``age``)
    - the grouping key, cohort, exposure and weight columns
    - regression outcome, focal regressor, controls and fixed effects

    Examples
    --------
    >>> build_person_period_panel(df, window)  # doctest: +SKIP
    MissingRequiredColumnError: Required column(s) ['weight'] not found in data

    See Also
    --------
    k12fert.validation.validate_required_columns : Performs this check.
    """
    pass


class FitError(K12FertError):
    """
    Exception raised when a single regression fit is infeasible.

    Trigger conditions include:

    - No observations left after dropping missing values
    - Number of observations not larger than the number of parameters
    - Fewer than two clusters for cluster-robust inference
    - Focal regressor without variation or collinear with the fixed effects
    - Non-finite or non-positive standard error

    Inside :func:`k12fert.sensitivity.leave_one_group_out` this error is
    recovered locally: the (group, outcome) cell is marked unavailable and
    the loop continues.

    See Also
    --------
    k12fert.estimation.fit_fixed_effects : Raises this error.
    """
    pass


class ConfigurationError(K12FertError):
    """
    Exception raised when a refit run as a whole cannot produce output.

    Trigger conditions include:

    - The grouping key has fewer than two distinct values
    - The baseline (full-sample) fit fails for every outcome
    - An empty outcome list or an unknown regression engine

    No partial results are returned when this error is raised.

    Examples
    --------
    >>> leave_one_group_out(df, LeaveOneOutConfig('province', ['y']), spec)  # doctest: +SKIP
    ConfigurationError: Grouping key 'province' has 1 distinct value(s); at least 2 are required
    """
    pass


class VisualizationError(K12FertError):
    """
    Exception raised for visualization-related errors.

    Trigger conditions include:

    - Plot data missing required columns (for example ``age_at``, ``hazard``)
    - Missing plotting backend (matplotlib not installed)
    """
    pass
