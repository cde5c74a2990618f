"""
Pytest configuration file providing shared fixtures and helper functions.
"""
import numpy as np
import pandas as pd
import pytest

import matplotlib
matplotlib.use('Agg')

from k12fert import ModelSpec


PROVINCE_NAMES = [
    'Abra', 'Bataan', 'Cavite', 'Davao', 'Eastern Samar', 'Figueroa',
    'Guimaras', 'Hilongos', 'Iloilo', 'Jolo', 'Kalinga', 'Laguna',
    'Masbate', 'Negros', 'Oriental', 'Palawan',
]


def generate_women(
    n_provinces: int = 12,
    n_per_province: int = 150,
    effect: float = -0.08,
    seed: int = 42,
) -> pd.DataFrame:
    """
    Simulated woman-level DHS extract.

    Exposure is province-level, the treatment era is cohort-level
    (cohorts born 2000 or later), and the teen-birth probability falls with
    exposure in the treated era.
    """
    rng = np.random.default_rng(seed)
    n = n_provinces * n_per_province

    province = np.repeat(np.arange(1, n_provinces + 1), n_per_province)
    exposure_by_prov = rng.uniform(0.0, 1.0, n_provinces)
    prov_effect = rng.normal(0.0, 0.03, n_provinces)

    survey_year = rng.choice([2017, 2022], size=n)
    age = rng.integers(15, 26, size=n)
    cohort = survey_year - age
    era = (cohort >= 2000).astype(int)
    exposure = exposure_by_prov[province - 1]

    p_birth = np.clip(
        0.25 + prov_effect[province - 1] + effect * exposure * era, 0.02, 0.9
    )
    teen_birth = rng.binomial(1, p_birth)
    teen_preg = np.maximum(teen_birth, rng.binomial(1, 0.05, size=n))

    upper = np.minimum(age, 19)
    first_birth = rng.integers(13, upper + 1)
    age_first_birth = np.where(teen_birth == 1, first_birth, np.nan).astype(float)

    return pd.DataFrame({
        'caseid': np.arange(1, n + 1),
        'province': province,
        'province_name': [PROVINCE_NAMES[p - 1] for p in province],
        'survey_year': survey_year,
        'age': age,
        'cohort': cohort,
        'era': era,
        'exposure': exposure,
        'exposure_x_era': exposure * era,
        'weight': rng.uniform(0.5, 2.0, size=n),
        'urban': rng.binomial(1, 0.4, size=n),
        'teen_birth': teen_birth,
        'teen_preg': teen_preg,
        'age_first_birth': age_first_birth,
    })


@pytest.fixture
def women():
    """Simulated woman-level sample (12 provinces)."""
    return generate_women()


@pytest.fixture
def did_spec():
    """Province and cohort fixed effects, clustered by province, weighted."""
    return ModelSpec(
        focal='exposure_x_era',
        controls=('urban',),
        absorb=('province', 'cohort'),
        cluster='province',
        weight='weight',
    )


@pytest.fixture
def small_subjects():
    """Hand-built subjects covering the panel expansion edge cases."""
    return pd.DataFrame({
        'caseid': [1, 2, 3, 4, 5],
        'age': [17, 25, 12, 18, 16],
        'age_first_birth': [np.nan, 16, np.nan, 19, 16],
        'province': [10, 10, 20, 20, 30],
        'cohort': [2005, 1997, 2010, 2004, 2006],
        'exposure': [0.2, 0.2, 0.7, 0.7, 0.4],
        'weight': [1.0, 2.0, 1.5, 0.5, 1.0],
    })
