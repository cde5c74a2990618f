"""
Validation Module

Input checks and explicit precondition normalisation for the subject-level
survey table. Normalisation steps (cohort derivation, removal of subjects
whose first birth precedes the risk-set window, construction of the
exposure x era regressor) are performed once by the caller before the
panel builder or the refit engine is invoked; those components then
require a fully populated schema.
"""

import warnings
from typing import Iterable, List, Optional

import numpy as np
import pandas as pd

from .exceptions import MissingRequiredColumnError, ValidationError
from .warnings_categories import DataWarning


def validate_required_columns(
    data: pd.DataFrame,
    columns: Iterable[str],
) -> None:
    """
    Validate existence of required columns

    Raises
    ------
    TypeError
        If data is not a pandas DataFrame.
    MissingRequiredColumnError
        If any column is absent.
    """
    if not isinstance(data, pd.DataFrame):
        raise TypeError(
            f"Input data must be a pandas DataFrame. Got: {type(data).__name__}"
        )

    missing_cols = [col for col in columns if col not in data.columns]

    if missing_cols:
        raise MissingRequiredColumnError(
            f"Required column(s) not found in data: {missing_cols}. "
            f"Available columns: {list(data.columns)}"
        )


def validate_no_missing(
    data: pd.DataFrame,
    columns: Iterable[str],
    id_field: Optional[str] = None,
) -> None:
    """
    Validate that required columns carry no missing values.

    Parameters
    ----------
    data : pd.DataFrame
        Subject-level table.
    columns : iterable of str
        Columns that must be fully populated.
    id_field : str, optional
        Identifier column used to point at offending rows in the message.

    Raises
    ------
    ValidationError
        If any of the columns contains NaN.
    """
    columns = list(columns)
    validate_required_columns(data, columns)

    na_counts = data[columns].isna().sum()
    bad = na_counts[na_counts > 0]
    if bad.empty:
        return

    first_col = bad.index[0]
    offending = data.loc[data[first_col].isna()]
    if id_field is not None and id_field in data.columns:
        examples = offending[id_field].head(5).tolist()
    else:
        examples = offending.index[:5].tolist()
    raise ValidationError(
        f"Required field(s) contain missing values: "
        f"{ {col: int(n) for col, n in bad.items()} }. "
        f"Example rows with missing '{first_col}': {examples}. "
        f"Filter these subjects before calling."
    )


def derive_cohort(
    data: pd.DataFrame,
    survey_year_field: str = 'survey_year',
    age_field: str = 'age',
    cohort_field: str = 'cohort',
) -> pd.DataFrame:
    """
    Add the birth cohort column ``survey_year - age``.

    Returns a copy; an existing cohort column is overwritten so that the
    derived value is always consistent with the survey year and age.
    """
    validate_required_columns(data, [survey_year_field, age_field])
    out = data.copy()
    out[cohort_field] = out[survey_year_field] - out[age_field]
    return out


def drop_early_events(
    data: pd.DataFrame,
    event_age_field: str,
    min_age: int,
) -> pd.DataFrame:
    """
    Remove subjects whose first event occurs before the risk-set window.

    Subjects with a missing event age are kept. Emits a ``DataWarning``
    with the number of dropped rows when any are removed.

    Parameters
    ----------
    data : pd.DataFrame
        Subject-level table.
    event_age_field : str
        Age at first event (nullable).
    min_age : int
        First age of the risk-set window.

    Returns
    -------
    pd.DataFrame
        Copy of ``data`` without the early-event subjects.
    """
    validate_required_columns(data, [event_age_field])
    early = data[event_age_field].notna() & (data[event_age_field] < min_age)
    n_early = int(early.sum())
    if n_early > 0:
        warnings.warn(
            f"Dropped {n_early} subject(s) with {event_age_field} < {min_age} "
            f"(event before the risk-set window).",
            DataWarning,
            stacklevel=2,
        )
    return data.loc[~early].copy()


def add_exposure_interaction(
    data: pd.DataFrame,
    exposure: str = 'exposure',
    era: str = 'era',
    name: Optional[str] = None,
) -> pd.DataFrame:
    """
    Add the difference-in-differences regressor ``exposure x era``.

    The era flag must be binary (0/1, missing allowed). Returns a copy.
    """
    validate_required_columns(data, [exposure, era])
    era_values = data[era].dropna().unique()
    if not np.isin(era_values, [0, 1]).all():
        raise ValidationError(
            f"Treatment-era flag '{era}' must be binary (0/1). "
            f"Found values: {sorted(era_values.tolist())[:10]}"
        )
    name = name or f"{exposure}_x_{era}"
    out = data.copy()
    out[name] = out[exposure] * out[era]
    return out


def complete_cases(
    data: pd.DataFrame,
    columns: List[str],
    context: str = 'regression',
    warn: bool = True,
) -> pd.DataFrame:
    """
    Keep rows with no missing value in ``columns``.

    Emits a ``DataWarning`` when rows are dropped and ``warn`` is True.
    """
    validate_required_columns(data, columns)
    keep = data[columns].notna().all(axis=1)
    n_dropped = int((~keep).sum())
    if n_dropped > 0 and warn:
        warnings.warn(
            f"Dropped {n_dropped} of {len(data)} row(s) with missing values "
            f"in {context} columns.",
            DataWarning,
            stacklevel=3,
        )
    if n_dropped > 0:
        return data.loc[keep]
    return data
