"""
Results Container Module

Containers for the hazard analysis and the refit engines, with summary,
ranking, plotting and export methods. Containers are built once at the end
of a run and are not mutated afterwards; every accessor returns a new
DataFrame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Hashable

import numpy as np
import pandas as pd

from .config import LeaveOneOutConfig, ModelSpec
from .estimation import FitResult
from .significance import format_coefficient, format_se, significance_stars


class RobustnessLevel(Enum):
    """
    Categorical assessment of estimate stability across refits.

    Determined by the sensitivity ratio, the range of refit coefficients
    relative to the magnitude of the baseline coefficient.

    Attributes
    ----------
    HIGHLY_ROBUST : str
        Sensitivity ratio below 10%.
    MODERATELY_ROBUST : str
        Sensitivity ratio between 10% and 25%.
    SENSITIVE : str
        Sensitivity ratio between 25% and 50%.
    HIGHLY_SENSITIVE : str
        Sensitivity ratio at or above 50%.
    """
    HIGHLY_ROBUST = "highly_robust"
    MODERATELY_ROBUST = "moderately_robust"
    SENSITIVE = "sensitive"
    HIGHLY_SENSITIVE = "highly_sensitive"


@dataclass(frozen=True)
class RefitCell:
    """
    Result of one refit: a (group or restriction, outcome) cell.

    Cells whose fit failed are kept with ``available=False``; their
    numeric fields are NaN and ``error`` holds the failure message.

    Attributes
    ----------
    group : hashable
        Excluded group (leave-one-out) or restriction name.
    group_name : str
        Display name of the group or restriction.
    outcome : str
        Dependent variable.
    coef, se, pvalue : float
        Focal-coefficient estimate, standard error and two-sided p-value.
    nobs : int
        Observations in the refit sample (0 when unavailable).
    r2 : float
        R-squared of the refit.
    available : bool
        False when the fit failed.
    error : str or None
        Failure message of an unavailable cell.
    """
    group: Hashable
    group_name: str
    outcome: str
    coef: float = np.nan
    se: float = np.nan
    pvalue: float = np.nan
    nobs: int = 0
    r2: float = np.nan
    available: bool = True
    error: str | None = None

    @classmethod
    def from_fit(cls, group, group_name, fit: FitResult) -> RefitCell:
        return cls(
            group=group,
            group_name=group_name,
            outcome=fit.outcome,
            coef=fit.coef,
            se=fit.se,
            pvalue=fit.pvalue,
            nobs=fit.nobs,
            r2=fit.r2,
        )

    @classmethod
    def unavailable(cls, group, group_name, outcome, error: str) -> RefitCell:
        return cls(
            group=group,
            group_name=group_name,
            outcome=outcome,
            available=False,
            error=error,
        )

    @property
    def stars(self) -> str:
        return significance_stars(self.pvalue)

    def to_dict(self) -> dict:
        return {
            'group': self.group,
            'group_name': self.group_name,
            'outcome': self.outcome,
            'coef': self.coef,
            'se': self.se,
            'pvalue': self.pvalue,
            'stars': self.stars,
            'nobs': self.nobs,
            'r2': self.r2,
            'available': self.available,
            'error': self.error,
        }


@dataclass(frozen=True)
class OutcomeSummary:
    """
    Summary of the refit coefficients of one outcome.

    Attributes
    ----------
    outcome : str
        Dependent variable.
    baseline_coef, baseline_se, baseline_pvalue : float
        Full-sample estimate (NaN when the baseline fit failed).
    mean, std : float
        Mean and sample standard deviation (ddof=1) over available cells.
    min_value, max_value : float
        Extreme coefficients.
    min_group, max_group : hashable or None
        Groups whose exclusion produced the extremes.
    n_available, n_unavailable : int
        Number of estimated and failed cells.
    sensitivity_ratio : float
        ``(max - min) / |baseline|``.
    robustness_level : RobustnessLevel or None
        Category of the sensitivity ratio (None without baseline).
    all_same_sign : bool
        Whether every available refit shares the sign of the baseline.
    """
    outcome: str
    baseline_coef: float
    baseline_se: float
    baseline_pvalue: float
    mean: float
    std: float
    min_value: float
    min_group: Hashable | None
    max_value: float
    max_group: Hashable | None
    n_available: int
    n_unavailable: int
    sensitivity_ratio: float
    robustness_level: RobustnessLevel | None
    all_same_sign: bool

    @property
    def baseline_stars(self) -> str:
        return significance_stars(self.baseline_pvalue)

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome,
            'baseline_coef': self.baseline_coef,
            'baseline_se': self.baseline_se,
            'baseline_pvalue': self.baseline_pvalue,
            'baseline_stars': self.baseline_stars,
            'mean': self.mean,
            'std': self.std,
            'min': self.min_value,
            'min_group': self.min_group,
            'max': self.max_value,
            'max_group': self.max_group,
            'n_available': self.n_available,
            'n_unavailable': self.n_unavailable,
            'sensitivity_ratio': self.sensitivity_ratio,
            'robustness_level': (
                self.robustness_level.value if self.robustness_level else None
            ),
            'all_same_sign': self.all_same_sign,
        }


def _write_latex(tables: list[pd.DataFrame], path: str) -> None:
    content = [
        df.to_latex(index=False, escape=True, na_rep='--', float_format='%.4f')
        for df in tables
    ]
    with open(path, 'w', encoding='utf-8') as f:
        f.write("\n\n".join(content))


@dataclass(frozen=True)
class LeaveOneOutResult:
    """
    Result of a leave-one-group-out run.

    Attributes
    ----------
    config : LeaveOneOutConfig
        Grouping and outcomes of the run.
    spec : ModelSpec
        Model refitted in every cell.
    cells : tuple of RefitCell
        One cell per (group, outcome), groups in sorted identifier order
        and outcomes in configured order.
    baseline : dict
        Outcome -> full-sample :class:`FitResult`, or None if it failed.
    summaries : dict
        Outcome -> :class:`OutcomeSummary`.
    groups : tuple
        Distinct group values present in the base sample (sorted).
    diagnostics : list of dict
        Aggregated warning records (see ``WarningRegistry``).
    """
    config: LeaveOneOutConfig
    spec: ModelSpec
    cells: tuple[RefitCell, ...]
    baseline: dict[str, FitResult | None]
    summaries: dict[str, OutcomeSummary]
    groups: tuple
    diagnostics: list[dict] = field(default_factory=list)

    @property
    def outcomes(self) -> tuple[str, ...]:
        return self.config.outcomes

    @property
    def n_groups(self) -> int:
        return len(self.groups)

    @property
    def n_unavailable(self) -> int:
        return sum(not c.available for c in self.cells)

    def get(self, group, outcome: str) -> RefitCell:
        """Cell for ``group`` excluded and ``outcome``."""
        for cell in self.cells:
            if cell.group == group and cell.outcome == outcome:
                return cell
        raise KeyError((group, outcome))

    def to_dataframe(self) -> pd.DataFrame:
        """Long table: one row per (group, outcome) in computation order."""
        return pd.DataFrame([c.to_dict() for c in self.cells])

    def to_wide(self) -> pd.DataFrame:
        """
        One row per group, sorted by display name.

        Columns ``group``, ``group_name`` and, per outcome,
        ``{outcome}_coef``, ``{outcome}_se``, ``{outcome}_pvalue``.
        Failed cells hold NaN.
        """
        long = self.to_dataframe()
        wide = long.pivot(index='group', columns='outcome',
                          values=['coef', 'se', 'pvalue'])
        wide.columns = [f'{outcome}_{stat}' for stat, outcome in wide.columns]
        ordered = [
            f'{outcome}_{stat}'
            for outcome in self.outcomes
            for stat in ('coef', 'se', 'pvalue')
        ]
        names = long.drop_duplicates('group').set_index('group')['group_name']
        wide = wide[ordered]
        wide.insert(0, 'group_name', names.reindex(wide.index))
        wide = wide.reset_index()
        return _sort_by_name(wide)

    def summary_statistics(self) -> pd.DataFrame:
        """One row per outcome with baseline and across-group statistics."""
        return pd.DataFrame([self.summaries[o].to_dict() for o in self.outcomes])

    def report(self, outcome: str | None = None) -> pd.DataFrame:
        """
        Per-group report sorted by group display name.

        Parameters
        ----------
        outcome : str, optional
            Restrict to one outcome. Default reports all outcomes, grouped
            by display name and then by configured outcome order.

        Returns
        -------
        pd.DataFrame
            Columns ``group, group_name, outcome, coef, se, pvalue, stars,
            coef_fmt, se_fmt, nobs, available``.
        """
        df = self.to_dataframe()
        if outcome is not None:
            self._check_outcome(outcome)
            df = df.loc[df['outcome'] == outcome].copy()
        df['coef_fmt'] = [
            format_coefficient(c, p) for c, p in zip(df['coef'], df['pvalue'])
        ]
        df['se_fmt'] = [format_se(s) for s in df['se']]
        df['_outcome_order'] = df['outcome'].map(
            {o: i for i, o in enumerate(self.outcomes)}
        )
        df = _sort_by_name(df, extra=['_outcome_order'])
        return df[[
            'group', 'group_name', 'outcome', 'coef', 'se', 'pvalue', 'stars',
            'coef_fmt', 'se_fmt', 'nobs', 'available',
        ]]

    def ranked(self, outcome: str, ascending: bool = True) -> pd.DataFrame:
        """
        Groups ordered by the refit coefficient of ``outcome``.

        Unavailable cells come last with a missing rank. The ``shift``
        column is the refit coefficient minus the baseline coefficient.
        """
        self._check_outcome(outcome)
        df = self.to_dataframe()
        df = df.loc[df['outcome'] == outcome].copy()
        df = df.sort_values('coef', ascending=ascending, na_position='last',
                            kind='mergesort')
        df['rank'] = df['coef'].rank(method='min', ascending=ascending)
        df['rank'] = df['rank'].astype('Int64')
        baseline = self.summaries[outcome].baseline_coef
        df['shift'] = df['coef'] - baseline
        return df.reset_index(drop=True)

    def _check_outcome(self, outcome: str) -> None:
        if outcome not in self.outcomes:
            raise KeyError(
                f"Unknown outcome {outcome!r}; run outcomes: {list(self.outcomes)}"
            )

    def summary(self) -> str:
        """Human-readable report of baseline and leave-one-out statistics."""
        lines = [
            "=" * 75,
            "LEAVE-ONE-GROUP-OUT SENSITIVITY",
            "=" * 75,
            "",
            "CONFIGURATION:",
            f"  Group key: {self.config.group_key} ({self.n_groups} groups)",
            f"  Focal regressor: {self.spec.focal}",
            f"  Fixed effects: {', '.join(self.spec.absorb) or 'none'}",
            f"  Cluster: {self.spec.cluster or 'none (HC1)'}",
            f"  Weights: {self.spec.weight or 'none'}",
            f"  Unavailable cells: {self.n_unavailable}/{len(self.cells)}",
            "",
        ]
        for outcome in self.outcomes:
            s = self.summaries[outcome]
            level = (
                s.robustness_level.value.replace('_', ' ').title()
                if s.robustness_level else 'n/a'
            )
            lines += [
                f"OUTCOME: {outcome}",
                f"  Baseline: {format_coefficient(s.baseline_coef, s.baseline_pvalue, 4)} "
                f"{format_se(s.baseline_se, 4)}",
                f"  Mean (SD): {s.mean:.4f} ({s.std:.4f})",
                f"  Min: {s.min_value:.4f} (excluding {s.min_group})",
                f"  Max: {s.max_value:.4f} (excluding {s.max_group})",
                f"  Sensitivity ratio: {s.sensitivity_ratio:.1%} ({level})",
                f"  Same sign as baseline: {'YES' if s.all_same_sign else 'NO'}",
                f"  Estimated: {s.n_available}, unavailable: {s.n_unavailable}",
                "",
            ]
        lines.append("=" * 75)
        return "\n".join(lines)

    def plot(self, outcome: str, **kwargs) -> Any:
        """Coefficient plot for ``outcome``; see :func:`plot_leave_one_out`."""
        from .visualization import plot_leave_one_out
        return plot_leave_one_out(self, outcome, **kwargs)

    def to_csv(self, path: str) -> None:
        """Write the per-group report (all outcomes) to CSV."""
        self.report().to_csv(path, index=False)

    def to_latex(self, path: str) -> None:
        """Write the summary statistics and the per-group wide table."""
        summary = self.summary_statistics().drop(columns=['robustness_level'])
        _write_latex([summary, self.to_wide()], path)


@dataclass(frozen=True)
class RestrictionResult:
    """
    Result of :func:`refit_under_restrictions`.

    ``cells`` hold one :class:`RefitCell` per (restriction, outcome); the
    cell's ``group`` is the restriction name and ``group_name`` its
    description.
    """
    spec: ModelSpec
    outcomes: tuple[str, ...]
    cells: tuple[RefitCell, ...]
    baseline: dict[str, FitResult | None]
    diagnostics: list[dict] = field(default_factory=list)

    def to_dataframe(self) -> pd.DataFrame:
        df = pd.DataFrame([c.to_dict() for c in self.cells])
        return df.rename(columns={'group': 'restriction', 'group_name': 'description'})

    def summary(self) -> str:
        lines = ["=" * 75, "RESTRICTED-SAMPLE REFITS", "=" * 75]
        for outcome in self.outcomes:
            base = self.baseline.get(outcome)
            lines.append(f"OUTCOME: {outcome}")
            if base is not None:
                lines.append(
                    f"  {'full sample':<28} {format_coefficient(base.coef, base.pvalue, 4):>12} "
                    f"{format_se(base.se, 4):>10}  N={base.nobs}"
                )
            for cell in self.cells:
                if cell.outcome != outcome:
                    continue
                label = cell.group_name or str(cell.group)
                lines.append(
                    f"  {label:<28} {format_coefficient(cell.coef, cell.pvalue, 4):>12} "
                    f"{format_se(cell.se, 4):>10}  N={cell.nobs}"
                )
            lines.append("")
        return "\n".join(lines)

    def to_latex(self, path: str) -> None:
        cols = ['restriction', 'description', 'outcome', 'coef', 'se', 'pvalue', 'stars', 'nobs']
        _write_latex([self.to_dataframe()[cols]], path)


@dataclass(frozen=True, eq=False)
class HazardResult:
    """
    Result of the discrete-time hazard analysis.

    Attributes
    ----------
    fit : FitResult
        Linear-probability hazard regression.
    hazard_table : pd.DataFrame
        Weighted empirical hazard by age.
    n_person_periods : int
        Rows of the person-year panel.
    n_subjects : int or None
        Distinct subjects in the panel.
    n_events : int
        Person-years with the event.
    """
    fit: FitResult
    hazard_table: pd.DataFrame = field(repr=False)
    n_person_periods: int = 0
    n_subjects: int | None = None
    n_events: int = 0

    def summary(self) -> str:
        f = self.fit
        ci_lower, ci_upper = f.conf_int()
        lines = [
            "=" * 75,
            "DISCRETE-TIME HAZARD MODEL (LPM)",
            "=" * 75,
            f"Person-years: {self.n_person_periods}",
            f"Subjects: {self.n_subjects if self.n_subjects is not None else 'n/a'}",
            f"Events: {self.n_events}",
            "",
            f"{f.focal}: {format_coefficient(f.coef, f.pvalue, 4)} {format_se(f.se, 4)}",
            f"  t = {f.t_stat:.3f}, p = {f.pvalue:.4f}, df = {f.df_resid}",
            f"  95% CI: [{ci_lower:.4f}, {ci_upper:.4f}]",
            f"  N = {f.nobs}, R2 = {f.r2:.4f}",
            "=" * 75,
        ]
        return "\n".join(lines)

    def plot(self, **kwargs) -> Any:
        from .visualization import plot_hazard
        return plot_hazard(self.hazard_table, **kwargs)

    def to_csv(self, path: str) -> None:
        """Write the empirical hazard table (``age_at, hazard, se_h, ci_low, ci_high``)."""
        cols = ['age_at', 'hazard', 'se_h', 'ci_low', 'ci_high', 'n_eff', 'n_obs']
        self.hazard_table[cols].to_csv(path, index=False)


def _sort_by_name(df: pd.DataFrame, extra: list[str] | None = None) -> pd.DataFrame:
    """Stable sort by display name (as text), then by ``extra`` columns."""
    df = df.assign(_name_key=df['group_name'].astype(str))
    keys = ['_name_key'] + (extra or [])
    df = df.sort_values(keys, kind='mergesort')
    return df.drop(columns=['_name_key'] + (extra or [])).reset_index(drop=True)
