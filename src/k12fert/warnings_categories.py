"""
Warning category hierarchy for the k12fert package.

Provides structured warning categories for panel construction and
refit loops, enabling selective filtering via Python's standard
``warnings.filterwarnings()`` mechanism. All warning classes inherit
from :class:`K12FertWarning`, which itself inherits from
:class:`UserWarning`.

Examples
--------
Suppress only fit-failure summaries while keeping others visible:

>>> import warnings
>>> from k12fert import FitFailureWarning
>>> warnings.filterwarnings('ignore', category=FitFailureWarning)

Suppress all k12fert warnings at once:

>>> warnings.filterwarnings('ignore', category=K12FertWarning)
"""


class K12FertWarning(UserWarning):
    """
    Base warning class for all k12fert package warnings.
    """
    pass


class DataWarning(K12FertWarning):
    """
    Warning raised for data quality issues.

    Triggered when subjects are dropped during precondition normalisation
    (events before the risk-set window) or when rows with missing values
    are removed from a regression sample.
    """
    pass


class FitFailureWarning(K12FertWarning):
    """
    Warning raised when one or more refit cells could not be estimated.

    Emitted (aggregated) after a leave-one-group-out or restriction loop
    completes. The affected cells carry the unavailable sentinel in the
    result table.
    """
    pass


class SmallSampleWarning(K12FertWarning):
    """
    Warning raised when the number of clusters is small.

    Cluster-robust standard errors are unreliable with few clusters; the
    threshold used by the regression engine is 10.
    """
    pass
