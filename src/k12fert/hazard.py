"""
Discrete-time hazard of first birth.

Expands the woman-level survey table into a person-year risk-set panel and
provides the two estimators run on it: the weighted empirical hazard by
age and the linear-probability hazard regression.

Panel construction
------------------
For subject ``i`` observed at age ``A_i`` with first-birth age ``E_i``
(possibly missing) and a window ``[a_min, a_max]``:

.. math::

    U_i = \\min(A_i, a_{max}), \\qquad
    L_i = \\begin{cases} E_i & a_{min} \\le E_i \\le U_i \\\\
                         U_i & \\text{otherwise} \\end{cases}

and one person-year is generated for every integer age in
``[a_min, L_i]`` (none when ``L_i < a_min``). The event indicator is 1 only
in the row where ``age_at == E_i``, so each subject contributes at most one
event and no exposure after it.

Empirical hazard
----------------
Per age ``a`` with person-year weights ``w``:

.. math::

    h_a = \\frac{\\sum w e}{\\sum w}, \\qquad
    N^{eff}_a = \\frac{(\\sum w)^2}{\\sum w^2}, \\qquad
    se_a = \\sqrt{\\frac{h_a (1 - h_a)}{N^{eff}_a}}

The Kish effective sample size replaces the raw count of person-years;
with unequal survey weights the raw count overstates precision.
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from .config import ModelSpec, PanelWindow
from .estimation import fit_model
from .exceptions import ValidationError
from .results import HazardResult
from .validation import validate_no_missing, validate_required_columns

PERIOD_FIELD = 'age_at'
EVENT_FIELD = 'event'

_RESERVED_COLUMNS = (PERIOD_FIELD, EVENT_FIELD)


def _last_period(subjects: pd.DataFrame, window: PanelWindow) -> np.ndarray:
    """Last age in the risk set of each subject (may fall below min_age)."""
    age = subjects[window.age_field].to_numpy(dtype=float)
    event_age = subjects[window.event_age_field].to_numpy(dtype=float)

    upper = np.floor(np.minimum(age, window.max_age))
    event_in_window = (
        ~np.isnan(event_age)
        & (event_age >= window.min_age)
        & (event_age <= upper)
        & (event_age == np.floor(event_age))
    )
    return np.where(event_in_window, event_age, upper)


def build_person_period_panel(
    subjects: pd.DataFrame,
    window: PanelWindow,
    keep: list[str] | None = None,
) -> pd.DataFrame:
    """
    Expand subjects into a person-year panel for discrete-time hazards.

    Parameters
    ----------
    subjects : pd.DataFrame
        One row per woman. Must contain ``window.id_field``,
        ``window.age_field``, ``window.event_age_field`` and every column
        in ``window.required``; all of these except the event age must be
        non-missing.
    window : PanelWindow
        Risk-set window and column names.
    keep : list of str, optional
        Subject columns copied onto each person-year. Defaults to all
        columns of ``subjects``.

    Returns
    -------
    pd.DataFrame
        One row per (subject, age) with the kept columns plus ``age_at``
        and ``event``. Rows of a subject are contiguous and in increasing
        age order. The index is a fresh RangeIndex.

    Raises
    ------
    MissingRequiredColumnError
        If a required column is absent.
    ValidationError
        If a required column has missing values, or ``subjects`` already
        contains ``age_at`` or ``event``.

    Notes
    -----
    Subjects whose first birth precedes ``window.min_age`` must be removed
    by the caller (see :func:`k12fert.validation.drop_early_events`); such
    rows would otherwise contribute event-free person-years.
    """
    if not isinstance(window, PanelWindow):
        raise ValidationError(
            f"window must be a PanelWindow, got {type(window).__name__}"
        )

    required = [window.id_field, window.age_field, *window.required]
    validate_required_columns(subjects, [*required, window.event_age_field])
    validate_no_missing(subjects, required, id_field=window.id_field)

    clash = [c for c in _RESERVED_COLUMNS if c in subjects.columns]
    if clash:
        raise ValidationError(
            f"Input data contains reserved column name(s) {clash}; "
            f"rename them before building the panel."
        )

    if keep is None:
        keep = list(subjects.columns)
    else:
        keep = list(dict.fromkeys([window.id_field, *keep]))
        validate_required_columns(subjects, keep)

    last = _last_period(subjects, window)
    counts = np.clip(last - window.min_age + 1, 0, None).astype(np.int64)
    total = int(counts.sum())

    rows = np.repeat(np.arange(len(subjects)), counts)
    starts = np.repeat(np.cumsum(counts) - counts, counts)
    age_at = window.min_age + (np.arange(total) - starts)

    panel = subjects.iloc[rows][keep].reset_index(drop=True)
    panel[PERIOD_FIELD] = age_at.astype(np.int64)

    event_age = subjects[window.event_age_field].to_numpy(dtype=float)[rows]
    panel[EVENT_FIELD] = (event_age == age_at).astype(np.int64)
    return panel


def empirical_hazard(
    panel: pd.DataFrame,
    age_field: str = PERIOD_FIELD,
    event_field: str = EVENT_FIELD,
    weight_field: str | None = 'weight',
    z: float = 1.96,
) -> pd.DataFrame:
    """
    Weighted empirical hazard of the event by age.

    Parameters
    ----------
    panel : pd.DataFrame
        Person-year panel from :func:`build_person_period_panel`.
    age_field, event_field : str
        Period and event indicator columns.
    weight_field : str or None
        Survey weight. None gives equal weights.
    z : float, default 1.96
        Normal critical value for the confidence bounds.

    Returns
    -------
    pd.DataFrame
        Columns ``age_at, W, WE, W2, n_obs, hazard, n_eff, se_h, ci_low,
        ci_high, ci_degenerate``, one row per age, sorted by age. The
        bounds ``hazard -/+ z * se_h`` are clipped to ``[0, 1]``;
        ``ci_degenerate`` flags zero-width intervals.
    """
    cols = [age_field, event_field] + ([weight_field] if weight_field else [])
    validate_required_columns(panel, cols)

    if weight_field is None:
        w = pd.Series(1.0, index=panel.index)
    else:
        w = panel[weight_field].astype(float)
    e = panel[event_field].astype(float)

    work = pd.DataFrame({
        'age': panel[age_field],
        'W': w,
        'WE': w * e,
        'W2': w ** 2,
    })
    grouped = work.groupby('age', sort=True)
    out = grouped[['W', 'WE', 'W2']].sum()
    out['n_obs'] = grouped.size()

    out['hazard'] = out['WE'] / out['W']
    out['n_eff'] = out['W'] ** 2 / out['W2']
    out['se_h'] = np.sqrt(out['hazard'] * (1 - out['hazard']) / out['n_eff'])
    out['ci_low'] = (out['hazard'] - z * out['se_h']).clip(lower=0.0)
    out['ci_high'] = (out['hazard'] + z * out['se_h']).clip(upper=1.0)
    out['ci_degenerate'] = out['ci_high'] <= out['ci_low']

    out.index.name = PERIOD_FIELD
    return out.reset_index()


def estimate_hazard_model(
    panel: pd.DataFrame,
    spec: ModelSpec,
    id_field: str = 'caseid',
    z: float = 1.96,
) -> HazardResult:
    """
    Discrete-time hazard regression (linear probability model).

    Regresses the person-year event indicator on ``spec.focal`` with the
    controls, absorbed fixed effects (typically ``age_at``, province and
    cohort), weights and clustering of ``spec``.

    Returns
    -------
    HazardResult
        Regression summary together with the empirical hazard table.

    Raises
    ------
    FitError
        If the regression is not estimable.
    """
    validate_required_columns(panel, [EVENT_FIELD, PERIOD_FIELD])
    fit = fit_model(panel, EVENT_FIELD, spec)
    hazard_table = empirical_hazard(panel, weight_field=spec.weight, z=z)

    n_subjects = (
        int(panel[id_field].nunique()) if id_field in panel.columns else None
    )
    return HazardResult(
        fit=fit,
        hazard_table=hazard_table,
        n_person_periods=len(panel),
        n_subjects=n_subjects,
        n_events=int(panel[EVENT_FIELD].sum()),
    )
