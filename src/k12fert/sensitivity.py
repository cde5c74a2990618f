"""
Sensitivity analysis by repeated refitting.

Two refit engines share one cell-level failure policy:

- :func:`leave_one_group_out` re-estimates the model once per group
  (province), each time excluding that group, and summarises how much the
  focal coefficient moves.
- :func:`refit_under_restrictions` re-estimates the model on named
  subsamples (cohort windows, exposure-percentile thresholds).

A fit that is infeasible for one subsample (too few residual degrees of
freedom, collinear design) marks that cell unavailable and the loop goes
on; failures are buffered in a :class:`WarningRegistry` and reported once
after the loop. Only run-level problems (fewer than two groups, every
baseline fit failing) abort the run.

Notes
-----
Summaries follow the robustness classification of the sensitivity ratio,
the range of refit coefficients divided by the absolute baseline
coefficient: highly robust (< 10%), moderately robust (10-25%), sensitive
(25-50%) and highly sensitive (>= 50%).
"""

from __future__ import annotations

import warnings
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Hashable, Sequence

import numpy as np
import pandas as pd

from .config import LeaveOneOutConfig, ModelSpec, RestrictionSpec
from .estimation import MIN_RELIABLE_CLUSTERS, FitResult, fit_model
from .exceptions import ConfigurationError, FitError
from .results import (
    LeaveOneOutResult,
    OutcomeSummary,
    RefitCell,
    RestrictionResult,
    RobustnessLevel,
)
from .validation import validate_no_missing, validate_required_columns
from .warning_registry import WarningRegistry
from .warnings_categories import FitFailureWarning, SmallSampleWarning

FitFn = Callable[[pd.DataFrame, str, ModelSpec], FitResult]


# =============================================================================
# Helpers
# =============================================================================

def _determine_robustness_level(sensitivity_ratio: float) -> RobustnessLevel:
    """
    Determine robustness level based on sensitivity ratio.

    Parameters
    ----------
    sensitivity_ratio : float
        Ratio of coefficient range to baseline coefficient.

    Returns
    -------
    RobustnessLevel
        Categorical robustness assessment.
    """
    if sensitivity_ratio < 0.10:
        return RobustnessLevel.HIGHLY_ROBUST
    elif sensitivity_ratio < 0.25:
        return RobustnessLevel.MODERATELY_ROBUST
    elif sensitivity_ratio < 0.50:
        return RobustnessLevel.SENSITIVE
    else:
        return RobustnessLevel.HIGHLY_SENSITIVE


def _compute_sensitivity_ratio(
    coefs: Sequence[float],
    baseline_coef: float,
) -> float:
    """
    Range of refit coefficients relative to the baseline magnitude.

    Returns infinity if the baseline is numerically zero but the range is
    positive, zero if both are, and NaN without refits or baseline.
    """
    if len(coefs) == 0 or not np.isfinite(baseline_coef):
        return np.nan

    coef_range = max(coefs) - min(coefs)

    if abs(baseline_coef) > 1e-10:
        return coef_range / abs(baseline_coef)
    else:
        return float('inf') if coef_range > 1e-10 else 0.0


def _note_small_clusters(
    sample: pd.DataFrame,
    outcome: str,
    spec: ModelSpec,
    group: Hashable,
    registry: WarningRegistry,
) -> None:
    """Record a few-clusters diagnostic for one cell in the registry."""
    if spec.cluster is None or spec.cluster not in sample.columns:
        return
    rows = sample[outcome].notna() if outcome in sample.columns else slice(None)
    n_clusters = int(sample.loc[rows, spec.cluster].nunique())
    if 2 <= n_clusters < MIN_RELIABLE_CLUSTERS:
        registry.collect(
            SmallSampleWarning,
            f"Fewer than {MIN_RELIABLE_CLUSTERS} clusters in '{spec.cluster}'; "
            f"cluster-robust standard errors may be unreliable.",
            group=group,
            outcome=outcome,
            context={'n_clusters': n_clusters},
        )


def _cell_order(groups: Sequence, outcomes: Sequence[str]):
    """Sort key placing baseline records first, then cells in run order."""
    group_rank = {g: i for i, g in enumerate(groups)}
    outcome_rank = {o: i for i, o in enumerate(outcomes)}

    def key(record):
        return (group_rank.get(record.group, -1), outcome_rank.get(record.outcome, -1))

    return key


def _try_fit(
    fit_fn: FitFn,
    sample: pd.DataFrame,
    outcome: str,
    spec: ModelSpec,
    group: Hashable,
    group_name: str,
    registry: WarningRegistry,
) -> RefitCell:
    """Fit one cell; a ``FitError`` yields an unavailable cell."""
    _note_small_clusters(sample, outcome, spec, group, registry)
    try:
        fit = fit_fn(sample, outcome, spec)
    except FitError as exc:
        registry.collect(
            FitFailureWarning,
            "Refit unavailable; cell recorded as missing.",
            group=group,
            outcome=outcome,
            context={'nobs': len(sample), 'error': str(exc)},
        )
        return RefitCell.unavailable(group, group_name, outcome, str(exc))
    return RefitCell.from_fit(group, group_name, fit)


def _fit_baseline(
    base_sample: pd.DataFrame,
    outcomes: Sequence[str],
    spec: ModelSpec,
    fit_fn: FitFn,
    registry: WarningRegistry,
    strict: bool = True,
) -> dict[str, FitResult | None]:
    """Full-sample fits; with ``strict``, raises if every outcome fails."""
    baseline: dict[str, FitResult | None] = {}
    errors: dict[str, str] = {}
    for outcome in outcomes:
        _note_small_clusters(base_sample, outcome, spec, '<baseline>', registry)
        try:
            baseline[outcome] = fit_fn(base_sample, outcome, spec)
        except FitError as exc:
            baseline[outcome] = None
            errors[outcome] = str(exc)
            registry.collect(
                FitFailureWarning,
                "Baseline fit failed; refits for this outcome have no reference.",
                group='<baseline>',
                outcome=outcome,
                context={'nobs': len(base_sample), 'error': str(exc)},
            )

    if strict and all(fit is None for fit in baseline.values()):
        raise ConfigurationError(
            f"Baseline fit failed for every outcome; check the model "
            f"specification (focal={spec.focal!r}, absorb={list(spec.absorb)}). "
            f"Errors: {errors}"
        )
    return baseline


def _group_display_names(
    base_sample: pd.DataFrame,
    group_key: str,
    group_label: str | None,
    groups: Sequence,
) -> dict:
    if group_label is None:
        return {g: str(g) for g in groups}
    labels = base_sample.groupby(group_key, sort=False)[group_label].first()
    return {
        g: str(labels[g]) if pd.notna(labels[g]) else str(g)
        for g in groups
    }


def _summarize_outcome(
    outcome: str,
    cells: Sequence[RefitCell],
    baseline: FitResult | None,
) -> OutcomeSummary:
    """Across-group statistics of one outcome's available cells."""
    available = [c for c in cells if c.available]
    coefs = np.array([c.coef for c in available], dtype=float)

    if baseline is not None:
        b_coef, b_se, b_p = baseline.coef, baseline.se, baseline.pvalue
    else:
        b_coef = b_se = b_p = np.nan

    if len(available) > 0:
        i_min, i_max = int(np.argmin(coefs)), int(np.argmax(coefs))
        min_value, min_group = float(coefs[i_min]), available[i_min].group
        max_value, max_group = float(coefs[i_max]), available[i_max].group
        mean = float(coefs.mean())
        std = float(coefs.std(ddof=1)) if len(coefs) > 1 else np.nan
    else:
        min_value = max_value = mean = std = np.nan
        min_group = max_group = None

    ratio = _compute_sensitivity_ratio(coefs.tolist(), b_coef)
    level = None if np.isnan(ratio) else _determine_robustness_level(ratio)
    same_sign = (
        bool(np.all(np.sign(coefs) == np.sign(b_coef)))
        if len(available) > 0 and np.isfinite(b_coef) else False
    )

    return OutcomeSummary(
        outcome=outcome,
        baseline_coef=b_coef,
        baseline_se=b_se,
        baseline_pvalue=b_p,
        mean=mean,
        std=std,
        min_value=min_value,
        min_group=min_group,
        max_value=max_value,
        max_group=max_group,
        n_available=len(available),
        n_unavailable=len(cells) - len(available),
        sensitivity_ratio=ratio,
        robustness_level=level,
        all_same_sign=same_sign,
    )


# =============================================================================
# Leave-one-group-out
# =============================================================================

def leave_one_group_out(
    base_sample: pd.DataFrame,
    config: LeaveOneOutConfig,
    spec: ModelSpec,
    fit_fn: FitFn | None = None,
    n_jobs: int = 1,
    verbose: str = 'default',
) -> LeaveOneOutResult:
    """
    Re-estimate the model once per group with that group excluded.

    Parameters
    ----------
    base_sample : pd.DataFrame
        Subject-level estimation sample, already restricted to rows with
        non-missing regressors. Read-only: every refit works on a fresh
        boolean-mask copy.
    config : LeaveOneOutConfig
        Group key, optional display-name column and ordered outcomes.
    spec : ModelSpec
        Model refitted in every cell.
    fit_fn : callable, optional
        ``fit_fn(sample, outcome, spec) -> FitResult``; raises
        :class:`FitError` when infeasible. Defaults to
        :func:`k12fert.estimation.fit_model`.
    n_jobs : int, default 1
        Number of worker threads for the exclusion loop. Each worker
        handles whole groups and writes only its own result slot.
    verbose : {'quiet', 'default', 'verbose'}
        Verbosity of the aggregated fit-failure warnings.

    Returns
    -------
    LeaveOneOutResult
        Per-(group, outcome) cells, per-outcome summaries and baseline fits.
        There is exactly one cell per group and outcome; failed cells are
        marked ``available=False``.

    Raises
    ------
    MissingRequiredColumnError
        If the group key or display-name column is absent.
    ValidationError
        If the group key has missing values.
    ConfigurationError
        If the group key has fewer than two distinct values, or the
        baseline fit fails for every outcome. No result is returned.

    Examples
    --------
    >>> spec = ModelSpec(focal='exposure_x_era', absorb=('province', 'cohort'),
    ...                  cluster='province', weight='weight')
    >>> cfg = LeaveOneOutConfig('province', ('teen_birth', 'teen_preg'),
    ...                         group_label='province_name')
    >>> res = leave_one_group_out(women, cfg, spec)  # doctest: +SKIP
    >>> res.report('teen_birth')  # doctest: +SKIP
    """
    fit_fn = fit_fn or fit_model
    if n_jobs < 1:
        raise ConfigurationError(f"n_jobs must be >= 1, got {n_jobs}")

    key = config.group_key
    label_cols = [config.group_label] if config.group_label else []
    validate_required_columns(base_sample, [key, *label_cols])
    validate_no_missing(base_sample, [key])

    groups = tuple(sorted(base_sample[key].unique()))
    if len(groups) < 2:
        raise ConfigurationError(
            f"Grouping key '{key}' has {len(groups)} distinct value(s); "
            f"at least 2 are required for leave-one-group-out"
        )
    names = _group_display_names(base_sample, key, config.group_label, groups)

    registry = WarningRegistry(verbose=verbose)
    group_values = base_sample[key]

    def _run_group(g) -> list[RefitCell]:
        subsample = base_sample.loc[group_values != g].copy()
        return [
            _try_fit(fit_fn, subsample, outcome, spec, g, names[g], registry)
            for outcome in config.outcomes
        ]

    # Few-cluster diagnostics go through the registry, once per run.
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', SmallSampleWarning)
        baseline = _fit_baseline(base_sample, config.outcomes, spec, fit_fn, registry)
        if n_jobs == 1:
            per_group = [_run_group(g) for g in groups]
        else:
            with ThreadPoolExecutor(max_workers=n_jobs) as pool:
                per_group = list(pool.map(_run_group, groups))

    cells = tuple(cell for group_cells in per_group for cell in group_cells)
    registry.sort(key=_cell_order(groups, config.outcomes))
    registry.flush(total_cells=len(cells))

    summaries = {
        outcome: _summarize_outcome(
            outcome,
            [c for c in cells if c.outcome == outcome],
            baseline[outcome],
        )
        for outcome in config.outcomes
    }

    return LeaveOneOutResult(
        config=config,
        spec=spec,
        cells=cells,
        baseline=baseline,
        summaries=summaries,
        groups=groups,
        diagnostics=registry.get_diagnostics(),
    )


# =============================================================================
# Restriction-based refits
# =============================================================================

def refit_under_restrictions(
    base_sample: pd.DataFrame,
    restrictions: Sequence[RestrictionSpec],
    outcomes: Sequence[str],
    spec: ModelSpec,
    fit_fn: FitFn | None = None,
    include_baseline: bool = True,
    verbose: str = 'default',
) -> RestrictionResult:
    """
    Re-estimate the model on each restricted subsample.

    Covers the cohort-window and exposure-percentile robustness checks as
    configurations of one operation (see
    :func:`k12fert.config.cohort_window` and
    :func:`k12fert.config.exposure_percentile`).

    Parameters
    ----------
    base_sample : pd.DataFrame
        Full estimation sample (not modified).
    restrictions : sequence of RestrictionSpec
        Named subsample selectors; names must be unique.
    outcomes : sequence of str
        Ordered outcomes.
    spec : ModelSpec
        Model refitted in every cell.
    fit_fn : callable, optional
        Defaults to :func:`k12fert.estimation.fit_model`.
    include_baseline : bool, default True
        Also fit the unrestricted sample for reference. A failing baseline
        is recorded as None, reported as a ``FitFailureWarning``, and does
        not abort the run.

    Returns
    -------
    RestrictionResult

    Raises
    ------
    ConfigurationError
        If no restriction or no outcome is given, or names repeat.
    """
    fit_fn = fit_fn or fit_model
    outcomes = tuple(outcomes)
    if not restrictions:
        raise ConfigurationError("At least one restriction is required")
    if not outcomes:
        raise ConfigurationError("At least one outcome is required")
    restriction_names = [r.name for r in restrictions]
    if len(set(restriction_names)) != len(restriction_names):
        raise ConfigurationError(f"Duplicate restriction names: {restriction_names}")

    registry = WarningRegistry(verbose=verbose)

    baseline: dict[str, FitResult | None] = {}
    cells = []
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', SmallSampleWarning)
        if include_baseline:
            baseline = _fit_baseline(base_sample, outcomes, spec, fit_fn,
                                     registry, strict=False)
        for restriction in restrictions:
            subsample = restriction.apply(base_sample)
            label = restriction.description or str(restriction.name)
            for outcome in outcomes:
                cells.append(
                    _try_fit(fit_fn, subsample, outcome, spec,
                             restriction.name, label, registry)
                )

    registry.sort(key=_cell_order(restriction_names, outcomes))
    registry.flush(total_cells=len(cells))

    return RestrictionResult(
        spec=spec,
        outcomes=outcomes,
        cells=tuple(cells),
        baseline=baseline,
        diagnostics=registry.get_diagnostics(),
    )
