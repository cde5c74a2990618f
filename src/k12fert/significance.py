"""
Significance annotation for reported coefficients.

Maps two-sided p-values to the conventional star markers used in the
result tables and formats coefficient / standard-error cells.
"""

from __future__ import annotations

import math

# (upper bound, marker), checked in order; bounds are strict.
STAR_THRESHOLDS = (
    (0.01, '***'),
    (0.05, '**'),
    (0.10, '*'),
)


def significance_stars(pvalue: float | None) -> str:
    """
    Return the star marker for a two-sided p-value.

    ``p < 0.01`` gives ``'***'``, ``p < 0.05`` gives ``'**'``,
    ``p < 0.10`` gives ``'*'``; anything else (including missing values)
    gives an empty string.

    Examples
    --------
    >>> significance_stars(0.0099)
    '***'
    >>> significance_stars(0.05)
    '*'
    >>> significance_stars(0.10)
    ''
    """
    if pvalue is None:
        return ''
    try:
        p = float(pvalue)
    except (TypeError, ValueError):
        return ''
    if math.isnan(p):
        return ''
    for bound, marker in STAR_THRESHOLDS:
        if p < bound:
            return marker
    return ''


def format_coefficient(coef: float, pvalue: float | None, digits: int = 3) -> str:
    """Format ``coef`` with its star marker, e.g. ``'-0.021**'``."""
    if coef is None or math.isnan(coef):
        return '--'
    return f"{coef:.{digits}f}{significance_stars(pvalue)}"


def format_se(se: float, digits: int = 3) -> str:
    """Format a standard error in parentheses, e.g. ``'(0.010)'``."""
    if se is None or math.isnan(se):
        return '--'
    return f"({se:.{digits}f})"
