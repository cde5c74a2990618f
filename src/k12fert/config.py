"""
Configuration objects for panel construction and refit runs.

All configuration is passed explicitly to each component as a frozen
dataclass; there are no module-level path or variable-name globals.
Constructors validate eagerly so that a malformed configuration fails
before any data is touched.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass, field
from typing import Callable, Hashable

import pandas as pd

from .exceptions import ConfigurationError, ValidationError

# Adolescent risk-set window used in the study.
DEFAULT_MIN_AGE = 13
DEFAULT_MAX_AGE = 19

VALID_ENGINES = ('statsmodels', 'pyfixest')


def _as_tuple(names) -> tuple:
    """Column names as a tuple; a bare string is one name."""
    if names is None:
        return ()
    if isinstance(names, str):
        return (names,)
    return tuple(names)


@dataclass(frozen=True)
class PanelWindow:
    """
    Risk-set window for person-period expansion.

    Attributes
    ----------
    min_age : int
        First age at which a subject enters the risk set.
    max_age : int
        Last age included in the window (inclusive).
    event_age_field : str
        Column holding the age at first event (nullable).
    age_field : str
        Column holding the age at observation.
    id_field : str
        Subject identifier column.
    required : tuple of str
        Further subject columns that must be present and non-missing.
        Defaults to the study's grouping key, cohort, exposure and weight.
    """
    min_age: int = DEFAULT_MIN_AGE
    max_age: int = DEFAULT_MAX_AGE
    event_age_field: str = 'age_first_birth'
    age_field: str = 'age'
    id_field: str = 'caseid'
    required: tuple[str, ...] = ('province', 'cohort', 'exposure', 'weight')

    def __post_init__(self):
        for name in ('min_age', 'max_age'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise ValidationError(
                    f"{name} must be an integer, got {value!r}"
                )
            object.__setattr__(self, name, int(value))
        if self.min_age >= self.max_age:
            raise ValidationError(
                f"min_age must be smaller than max_age, got "
                f"min_age={self.min_age}, max_age={self.max_age}"
            )
        object.__setattr__(self, 'required', tuple(self.required))

    @property
    def ages(self) -> range:
        """All integer ages covered by the window."""
        return range(self.min_age, self.max_age + 1)


@dataclass(frozen=True)
class ModelSpec:
    """
    Fixed regression specification shared by every fit of a run.

    Attributes
    ----------
    focal : str
        Regressor whose coefficient is reported (typically the
        exposure x treatment-era interaction).
    controls : tuple of str
        Additional regressors whose coefficients are not reported.
    absorb : tuple of str
        Categorical fields entered as fixed effects.
    cluster : str or None
        Cluster field for cluster-robust standard errors.
    weight : str or None
        Sampling-weight field.
    engine : {'statsmodels', 'pyfixest'}
        Backend used by :func:`k12fert.estimation.fit_fixed_effects`.
    """
    focal: str
    controls: tuple[str, ...] = ()
    absorb: tuple[str, ...] = ()
    cluster: str | None = None
    weight: str | None = None
    engine: str = 'statsmodels'

    def __post_init__(self):
        if not self.focal:
            raise ConfigurationError("ModelSpec.focal must name a regressor")
        if self.engine not in VALID_ENGINES:
            raise ConfigurationError(
                f"Unknown regression engine {self.engine!r}. "
                f"Must be one of {list(VALID_ENGINES)}"
            )
        object.__setattr__(self, 'controls', _as_tuple(self.controls))
        object.__setattr__(self, 'absorb', _as_tuple(self.absorb))
        if self.focal in self.controls:
            raise ConfigurationError(
                f"Focal regressor {self.focal!r} is also listed as a control"
            )

    @property
    def columns(self) -> list[str]:
        """Every input column the specification reads (outcome excluded)."""
        cols = [self.focal, *self.controls, *self.absorb]
        for extra in (self.cluster, self.weight):
            if extra is not None and extra not in cols:
                cols.append(extra)
        return cols


@dataclass(frozen=True)
class LeaveOneOutConfig:
    """
    Grouping and outcome configuration of a leave-one-group-out run.

    Attributes
    ----------
    group_key : str
        Column identifying the group dropped in each refit (province code).
    outcomes : tuple of str
        Ordered outcome columns; one fit per group and outcome.
    group_label : str or None
        Column with the display name of each group. When None the group
        identifier itself is used as display name.
    """
    group_key: str
    outcomes: tuple[str, ...]
    group_label: str | None = None

    def __post_init__(self):
        if not self.group_key:
            raise ConfigurationError("group_key must name a column")
        if isinstance(self.outcomes, str):
            object.__setattr__(self, 'outcomes', (self.outcomes,))
        else:
            object.__setattr__(self, 'outcomes', tuple(self.outcomes))
        if len(self.outcomes) == 0:
            raise ConfigurationError("At least one outcome is required")
        if len(set(self.outcomes)) != len(self.outcomes):
            raise ConfigurationError(
                f"Duplicate outcomes in {list(self.outcomes)}"
            )


@dataclass(frozen=True)
class RestrictionSpec:
    """
    Named sample restriction for :func:`refit_under_restrictions`.

    Attributes
    ----------
    name : hashable
        Label of the restriction in the result table.
    mask_fn : callable
        ``mask_fn(sample) -> pd.Series[bool]`` selecting the rows kept.
    description : str
        Free text shown in reports.
    """
    name: Hashable
    mask_fn: Callable[[pd.DataFrame], pd.Series] = field(repr=False)
    description: str = ''

    def apply(self, sample: pd.DataFrame) -> pd.DataFrame:
        mask = self.mask_fn(sample)
        if not isinstance(mask, pd.Series) or mask.dtype != bool:
            mask = pd.Series(mask, index=sample.index).astype(bool)
        return sample.loc[mask].copy()


def cohort_window(field_name: str, lo: int, hi: int) -> RestrictionSpec:
    """Keep birth cohorts in ``[lo, hi]``."""
    if lo > hi:
        raise ConfigurationError(f"Empty cohort window [{lo}, {hi}]")
    return RestrictionSpec(
        name=f"{field_name}_{lo}_{hi}",
        mask_fn=lambda df: df[field_name].between(lo, hi),
        description=f"{field_name} in [{lo}, {hi}]",
    )


def exposure_percentile(
    field_name: str,
    q: float,
    above: bool = True,
) -> RestrictionSpec:
    """
    Keep observations at or above (or below) the ``q``-th percentile.

    The threshold is computed on the sample the restriction is applied to,
    so the same restriction can be reused across samples.
    """
    if not 0 < q < 1:
        raise ConfigurationError(f"q must lie in (0, 1), got {q}")

    def _mask(df: pd.DataFrame) -> pd.Series:
        threshold = df[field_name].quantile(q)
        if above:
            return df[field_name] >= threshold
        return df[field_name] < threshold

    side = 'ge' if above else 'lt'
    return RestrictionSpec(
        name=f"{field_name}_{side}_p{int(round(q * 100))}",
        mask_fn=_mask,
        description=f"{field_name} {'>=' if above else '<'} p{q * 100:g}",
    )
