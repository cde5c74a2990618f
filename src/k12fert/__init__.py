"""
k12fert: Schooling Reform and Adolescent Fertility
==================================================

Estimation core for the study of the Philippine K-12 schooling reform and
adolescent first births, using DHS woman-level survey data merged with a
province-level exposure measure.

Key Features
------------
- Person-year risk-set panel for discrete-time hazard analysis, with
  entry at a configurable minimum age and right-censoring at first birth
- Weighted empirical hazard by age using the Kish effective sample size
- Weighted fixed-effects regressions with cluster-robust standard errors
  (statsmodels with dummy fixed effects, or pyfixest with absorption)
- Leave-one-province-out sensitivity analysis with per-cell failure
  tolerance, summary statistics and ranked reports
- Restricted-sample refits (cohort windows, exposure percentiles)
- Export of result tables to CSV and LaTeX, hazard and coefficient plots

Main Components
---------------
build_person_period_panel, empirical_hazard, estimate_hazard_model
    Hazard panel construction and estimation.
leave_one_group_out, refit_under_restrictions
    Refit engines.
fit_fixed_effects, FitResult
    Regression engine.
significance_stars
    p-value to star marker.

Quick Start
-----------
>>> from k12fert import (PanelWindow, ModelSpec, LeaveOneOutConfig,
...                      build_person_period_panel, empirical_hazard,
...                      leave_one_group_out)
>>> window = PanelWindow(min_age=13, max_age=19)
>>> panel = build_person_period_panel(women, window)  # doctest: +SKIP
>>> empirical_hazard(panel)  # doctest: +SKIP
>>> spec = ModelSpec(focal='exposure_x_era', absorb=('province', 'cohort'),
...                  cluster='province', weight='weight')
>>> cfg = LeaveOneOutConfig('province', ('teen_birth',))
>>> res = leave_one_group_out(women, cfg, spec)  # doctest: +SKIP
>>> print(res.summary())  # doctest: +SKIP
"""

from .config import (
    DEFAULT_MAX_AGE,
    DEFAULT_MIN_AGE,
    LeaveOneOutConfig,
    ModelSpec,
    PanelWindow,
    RestrictionSpec,
    cohort_window,
    exposure_percentile,
)

from .estimation import FitResult, fit_fixed_effects, fit_model

from .hazard import build_person_period_panel, empirical_hazard, estimate_hazard_model

from .results import (
    HazardResult,
    LeaveOneOutResult,
    OutcomeSummary,
    RefitCell,
    RestrictionResult,
    RobustnessLevel,
)

from .sensitivity import leave_one_group_out, refit_under_restrictions

from .significance import format_coefficient, format_se, significance_stars

from .validation import (
    add_exposure_interaction,
    derive_cohort,
    drop_early_events,
)

from .tabular import read_table, write_table

# Export exception classes
from .exceptions import (
    ConfigurationError,
    FitError,
    K12FertError,
    MissingRequiredColumnError,
    ValidationError,
    VisualizationError,
)

from .warnings_categories import (
    DataWarning,
    FitFailureWarning,
    K12FertWarning,
    SmallSampleWarning,
)

__version__ = '0.1.0'

__all__ = [
    # Configuration
    'PanelWindow',
    'ModelSpec',
    'LeaveOneOutConfig',
    'RestrictionSpec',
    'cohort_window',
    'exposure_percentile',
    'DEFAULT_MIN_AGE',
    'DEFAULT_MAX_AGE',
    # Hazard panel
    'build_person_period_panel',
    'empirical_hazard',
    'estimate_hazard_model',
    # Regression engine
    'fit_fixed_effects',
    'fit_model',
    'FitResult',
    # Refit engines
    'leave_one_group_out',
    'refit_under_restrictions',
    # Results
    'HazardResult',
    'LeaveOneOutResult',
    'RestrictionResult',
    'RefitCell',
    'OutcomeSummary',
    'RobustnessLevel',
    # Annotation
    'significance_stars',
    'format_coefficient',
    'format_se',
    # Normalisation and I/O
    'derive_cohort',
    'drop_early_events',
    'add_exposure_interaction',
    'read_table',
    'write_table',
    # Exception classes
    'K12FertError',
    'ValidationError',
    'MissingRequiredColumnError',
    'FitError',
    'ConfigurationError',
    'VisualizationError',
    # Warning classes
    'K12FertWarning',
    'DataWarning',
    'FitFailureWarning',
    'SmallSampleWarning',
]
