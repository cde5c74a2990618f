"""
Estimation module: weighted fixed-effects regressions.

Wraps the regression libraries behind a single call that returns the
focal-regressor summary needed by the hazard model and the refit loops:
coefficient, standard error, inference degrees of freedom, number of
observations and R-squared. Two backends are supported:

- ``statsmodels``: WLS with fixed effects entered as dummy columns and a
  cluster-robust (CRV1) covariance.
- ``pyfixest``: ``feols`` with the fixed effects absorbed, which scales to
  fixed effects with many levels.

Inference uses the t distribution with ``G - 1`` degrees of freedom when a
cluster field is given (``G`` clusters) and the residual degrees of
freedom otherwise.
"""

from __future__ import annotations

import warnings
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np
import pandas as pd
import scipy.stats
import statsmodels.api as sm

from .config import ModelSpec, VALID_ENGINES, _as_tuple
from .exceptions import ConfigurationError, FitError
from .validation import complete_cases, validate_required_columns
from .warnings_categories import SmallSampleWarning

# Below this number of clusters CRV1 standard errors are unreliable.
MIN_RELIABLE_CLUSTERS = 10


@dataclass
class FitResult:
    """
    Focal-regressor summary of one fitted model.

    Attributes
    ----------
    outcome : str
        Dependent variable.
    focal : str
        Reported regressor.
    coef : float
        Point estimate of the focal coefficient.
    se : float
        Standard error of ``coef``.
    df_resid : int
        Degrees of freedom of the t reference distribution.
    nobs : int
        Number of observations used.
    r2 : float
        (Weighted) R-squared of the full model.
    n_clusters : int or None
        Number of clusters when clustered.
    engine : str
        Backend that produced the fit.
    """
    outcome: str
    focal: str
    coef: float
    se: float
    df_resid: int
    nobs: int
    r2: float
    n_clusters: int | None = None
    engine: str = 'statsmodels'
    params: dict = field(default_factory=dict, repr=False)

    @property
    def t_stat(self) -> float:
        return self.coef / self.se

    @property
    def pvalue(self) -> float:
        """Two-sided p-value ``2 * P(T_df > |t|)``."""
        return two_sided_pvalue(self.coef, self.se, self.df_resid)

    def conf_int(self, alpha: float = 0.05) -> tuple[float, float]:
        """Two-sided ``1 - alpha`` confidence interval for the focal coefficient."""
        crit = scipy.stats.t.ppf(1 - alpha / 2, self.df_resid)
        return self.coef - crit * self.se, self.coef + crit * self.se

    def to_dict(self) -> dict:
        ci_lower, ci_upper = self.conf_int()
        return {
            'outcome': self.outcome,
            'focal': self.focal,
            'coef': self.coef,
            'se': self.se,
            't_stat': self.t_stat,
            'pvalue': self.pvalue,
            'ci_lower': ci_lower,
            'ci_upper': ci_upper,
            'df_resid': self.df_resid,
            'nobs': self.nobs,
            'r2': self.r2,
            'n_clusters': self.n_clusters,
        }


def two_sided_pvalue(coef: float, se: float, df: int) -> float:
    """Two-sided t-test p-value; NaN when the inputs are not usable."""
    if not (np.isfinite(coef) and np.isfinite(se)) or se <= 0 or df <= 0:
        return np.nan
    return float(2 * scipy.stats.t.sf(abs(coef / se), df))


def _model_columns(
    outcome: str,
    focal: str,
    controls: Sequence[str],
    absorb: Sequence[str],
    cluster: str | None,
    weight: str | None,
) -> list[str]:
    cols = []
    for col in (outcome, focal, *controls, *absorb, cluster, weight):
        if col is not None and col not in cols:
            cols.append(col)
    return cols


def _prepare_sample(
    sample: pd.DataFrame,
    outcome: str,
    focal: str,
    controls: Sequence[str],
    absorb: Sequence[str],
    cluster: str | None,
    weight: str | None,
) -> pd.DataFrame:
    cols = _model_columns(outcome, focal, controls, absorb, cluster, weight)
    validate_required_columns(sample, cols)
    data = complete_cases(sample[cols], cols, warn=False)
    if weight is not None:
        data = data.loc[data[weight] > 0]

    if len(data) == 0:
        raise FitError(
            f"No complete observations for outcome '{outcome}' "
            f"(columns {cols})"
        )
    if data[focal].nunique() < 2:
        raise FitError(
            f"Focal regressor '{focal}' has no variation in the estimation "
            f"sample (N={len(data)})"
        )
    return data


def _check_clusters(data: pd.DataFrame, cluster: str | None) -> int | None:
    if cluster is None:
        return None
    n_clusters = int(data[cluster].nunique())
    if n_clusters < 2:
        raise FitError(
            f"Cluster-robust inference needs at least 2 clusters; "
            f"'{cluster}' has {n_clusters}"
        )
    if n_clusters < MIN_RELIABLE_CLUSTERS:
        warnings.warn(
            f"Only {n_clusters} clusters in '{cluster}'; cluster-robust "
            f"standard errors may be unreliable.",
            SmallSampleWarning,
            stacklevel=4,
        )
    return n_clusters


def _check_se(se: float, focal: str, outcome: str) -> None:
    if not np.isfinite(se) or se <= 0:
        raise FitError(
            f"Non-finite or non-positive standard error ({se}) for "
            f"'{focal}' in model for '{outcome}'"
        )


def _fit_statsmodels(
    data: pd.DataFrame,
    outcome: str,
    focal: str,
    controls: Sequence[str],
    absorb: Sequence[str],
    cluster: str | None,
    weight: str | None,
    n_clusters: int | None,
) -> FitResult:
    regressors = [focal, *controls]
    X_parts = [data[regressors].astype(float)]
    for fe in absorb:
        X_parts.append(
            pd.get_dummies(
                data[fe].astype('category').cat.remove_unused_categories(),
                prefix=f'{fe}_fe',
                drop_first=True,
                dtype=float,
            )
        )
    X = sm.add_constant(pd.concat(X_parts, axis=1), has_constant='add')
    y = data[outcome].astype(float)

    n, k = X.shape
    if n <= k:
        raise FitError(
            f"Insufficient observations for '{outcome}': N={n}, "
            f"parameters={k}"
        )

    # Focal coefficient is identified iff dropping it lowers the rank.
    rank_full = np.linalg.matrix_rank(X.values)
    rank_without = np.linalg.matrix_rank(X.drop(columns=focal).values)
    if rank_full == rank_without:
        raise FitError(
            f"Focal regressor '{focal}' is collinear with the controls or "
            f"fixed effects in model for '{outcome}'"
        )

    w = data[weight].astype(float) if weight is not None else np.ones(n)
    model = sm.WLS(y, X, weights=w)
    if cluster is not None:
        groups = pd.factorize(data[cluster])[0]
        results = model.fit(cov_type='cluster', cov_kwds={'groups': groups})
        df_inference = n_clusters - 1
    else:
        results = model.fit(cov_type='HC1')
        df_inference = int(results.df_resid)

    if df_inference <= 0:
        raise FitError(
            f"No residual degrees of freedom for '{outcome}' (N={n}, "
            f"rank={rank_full})"
        )

    se = float(results.bse[focal])
    _check_se(se, focal, outcome)

    return FitResult(
        outcome=outcome,
        focal=focal,
        coef=float(results.params[focal]),
        se=se,
        df_resid=df_inference,
        nobs=int(results.nobs),
        r2=float(results.rsquared),
        n_clusters=n_clusters,
        engine='statsmodels',
        params={name: float(results.params[name]) for name in regressors},
    )


def _fit_pyfixest(
    data: pd.DataFrame,
    outcome: str,
    focal: str,
    controls: Sequence[str],
    absorb: Sequence[str],
    cluster: str | None,
    weight: str | None,
    n_clusters: int | None,
) -> FitResult:
    import pyfixest as pf

    formula = f"{outcome} ~ {' + '.join([focal, *controls])}"
    if absorb:
        formula += f" | {' + '.join(absorb)}"
    vcov = {'CRV1': cluster} if cluster is not None else 'hetero'

    with warnings.catch_warnings():
        # collinear regressors are reported through the missing coefficient
        warnings.simplefilter('ignore', UserWarning)
        model = pf.feols(formula, data=data, vcov=vcov, weights=weight)

    coefs = model.coef()
    if focal not in coefs.index:
        raise FitError(
            f"Focal regressor '{focal}' was dropped as collinear in model "
            f"for '{outcome}'"
        )
    se = float(model.se()[focal])
    _check_se(se, focal, outcome)

    # pyfixest keeps N, R2 and the t degrees of freedom on private
    # attributes; the supported version range is pinned in pyproject.toml.
    if n_clusters is not None:
        df_inference = n_clusters - 1
    else:
        df_inference = int(model._df_t)
    if df_inference <= 0:
        raise FitError(f"No residual degrees of freedom for '{outcome}'")

    return FitResult(
        outcome=outcome,
        focal=focal,
        coef=float(coefs[focal]),
        se=se,
        df_resid=df_inference,
        nobs=int(model._N),
        r2=float(model._r2),
        n_clusters=n_clusters,
        engine='pyfixest',
        params={name: float(coefs[name]) for name in coefs.index},
    )


_ENGINES: dict[str, Callable[..., FitResult]] = {
    'statsmodels': _fit_statsmodels,
    'pyfixest': _fit_pyfixest,
}


def fit_fixed_effects(
    sample: pd.DataFrame,
    outcome: str,
    focal: str,
    controls: Sequence[str] = (),
    absorb: Sequence[str] = (),
    cluster: str | None = None,
    weight: str | None = None,
    engine: str = 'statsmodels',
) -> FitResult:
    """
    Fit a weighted fixed-effects linear model and summarise the focal term.

    Parameters
    ----------
    sample : pd.DataFrame
        Estimation sample. Not modified.
    outcome : str
        Dependent variable.
    focal : str
        Regressor whose coefficient is reported.
    controls : sequence of str
        Further regressors.
    absorb : sequence of str
        Categorical fixed-effect fields.
    cluster : str, optional
        Cluster field (CRV1). When None, HC1 standard errors are used.
    weight : str, optional
        Sampling weights. Rows with non-positive weight are dropped.
    engine : {'statsmodels', 'pyfixest'}
        Regression backend.

    Returns
    -------
    FitResult

    Raises
    ------
    MissingRequiredColumnError
        If a model column is absent from ``sample``.
    ConfigurationError
        If ``engine`` is unknown.
    FitError
        If the model cannot be estimated on this sample.
    """
    if engine not in VALID_ENGINES:
        raise ConfigurationError(
            f"Unknown regression engine {engine!r}. "
            f"Must be one of {list(VALID_ENGINES)}"
        )
    controls = _as_tuple(controls)
    absorb = _as_tuple(absorb)

    data = _prepare_sample(sample, outcome, focal, controls, absorb, cluster, weight)
    n_clusters = _check_clusters(data, cluster)

    try:
        return _ENGINES[engine](
            data, outcome, focal, controls, absorb, cluster, weight, n_clusters
        )
    except (np.linalg.LinAlgError, ValueError, ZeroDivisionError) as exc:
        raise FitError(
            f"Regression for '{outcome}' failed ({engine}): {exc}"
        ) from exc


def fit_model(sample: pd.DataFrame, outcome: str, spec: ModelSpec) -> FitResult:
    """Fit ``outcome`` on ``sample`` under a :class:`ModelSpec`."""
    return fit_fixed_effects(
        sample,
        outcome=outcome,
        focal=spec.focal,
        controls=spec.controls,
        absorb=spec.absorb,
        cluster=spec.cluster,
        weight=spec.weight,
        engine=spec.engine,
    )
