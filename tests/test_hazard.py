"""
Tests for person-year panel construction and hazard estimation.
"""

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from k12fert import (
    FitError,
    HazardResult,
    MissingRequiredColumnError,
    ModelSpec,
    PanelWindow,
    ValidationError,
    build_person_period_panel,
    drop_early_events,
    empirical_hazard,
    estimate_hazard_model,
)
from k12fert.hazard import EVENT_FIELD, PERIOD_FIELD


WINDOW = PanelWindow(min_age=13, max_age=19)


def _rows(panel, caseid):
    return panel.loc[panel['caseid'] == caseid]


# =============================================================================
# Panel expansion
# =============================================================================

class TestPanelRowCounts:
    """Risk-set entry and exit rules."""

    def test_no_event_rows_equal_age_minus_min_plus_one(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        rows = _rows(panel, 1)
        assert len(rows) == 17 - 13 + 1
        assert rows[PERIOD_FIELD].tolist() == [13, 14, 15, 16, 17]
        assert rows[EVENT_FIELD].sum() == 0

    def test_window_caps_at_max_age(self):
        subjects = pd.DataFrame({
            'caseid': [1], 'age': [40], 'age_first_birth': [np.nan],
            'province': [1], 'cohort': [1980], 'exposure': [0.1], 'weight': [1.0],
        })
        panel = build_person_period_panel(subjects, WINDOW)
        assert panel[PERIOD_FIELD].tolist() == list(range(13, 20))

    def test_below_window_contributes_nothing(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        assert len(_rows(panel, 3)) == 0

    def test_total_rows(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        # 5 + 4 + 0 + 6 + 4
        assert len(panel) == 19
        assert isinstance(panel.index, pd.RangeIndex)

    def test_age_equal_to_min_age_gives_one_row(self):
        subjects = pd.DataFrame({
            'caseid': [1], 'age': [13], 'age_first_birth': [np.nan],
            'province': [1], 'cohort': [2009], 'exposure': [0.1], 'weight': [1.0],
        })
        panel = build_person_period_panel(subjects, WINDOW)
        assert panel[PERIOD_FIELD].tolist() == [13]


class TestEventCensoring:
    """At most one event row per subject and no rows after it."""

    def test_event_row_and_truncation(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        rows = _rows(panel, 2)
        assert rows[PERIOD_FIELD].tolist() == [13, 14, 15, 16]
        assert rows[EVENT_FIELD].tolist() == [0, 0, 0, 1]

    def test_event_at_observation_age(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        rows = _rows(panel, 5)
        assert rows[PERIOD_FIELD].max() == 16
        assert rows[EVENT_FIELD].tolist() == [0, 0, 0, 1]

    def test_event_after_observation_age_is_not_counted(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        rows = _rows(panel, 4)
        assert rows[PERIOD_FIELD].tolist() == list(range(13, 19))
        assert rows[EVENT_FIELD].sum() == 0

    def test_event_at_min_age(self):
        subjects = pd.DataFrame({
            'caseid': [7], 'age': [22], 'age_first_birth': [13.0],
            'province': [1], 'cohort': [1995], 'exposure': [0.1], 'weight': [1.0],
        })
        panel = build_person_period_panel(subjects, WINDOW)
        assert panel[PERIOD_FIELD].tolist() == [13]
        assert panel[EVENT_FIELD].tolist() == [1]

    def test_event_beyond_max_age_is_censored_at_window(self):
        subjects = pd.DataFrame({
            'caseid': [8], 'age': [30], 'age_first_birth': [24.0],
            'province': [1], 'cohort': [1987], 'exposure': [0.1], 'weight': [1.0],
        })
        panel = build_person_period_panel(subjects, WINDOW)
        assert panel[PERIOD_FIELD].tolist() == list(range(13, 20))
        assert panel[EVENT_FIELD].sum() == 0

    def test_simulated_sample_invariants(self, women):
        panel = build_person_period_panel(women, WINDOW)
        events = panel.groupby('caseid')[EVENT_FIELD].sum()
        assert events.max() <= 1

        # No person-year after the event year.
        last_age = panel.groupby('caseid')[PERIOD_FIELD].max()
        event_rows = panel.loc[panel[EVENT_FIELD] == 1].set_index('caseid')
        assert (event_rows[PERIOD_FIELD] == last_age.loc[event_rows.index]).all()

        # Rows of a subject are contiguous and increasing.
        diffs = panel.groupby('caseid')[PERIOD_FIELD].diff().dropna()
        assert (diffs == 1).all()
        assert panel['caseid'].is_monotonic_increasing

        # Row count matches the closed form.
        expected = np.where(
            women['age_first_birth'].notna(),
            women['age_first_birth'] - 13 + 1,
            np.minimum(women['age'], 19) - 13 + 1,
        ).clip(min=0).sum()
        assert len(panel) == int(expected)


class TestPanelColumns:

    def test_keeps_all_columns_by_default(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW)
        for col in small_subjects.columns:
            assert col in panel.columns
        row = _rows(panel, 2).iloc[0]
        assert row['weight'] == 2.0
        assert row['province'] == 10

    def test_keep_subset_always_includes_id(self, small_subjects):
        panel = build_person_period_panel(small_subjects, WINDOW, keep=['weight'])
        assert list(panel.columns) == ['caseid', 'weight', PERIOD_FIELD, EVENT_FIELD]

    def test_input_not_mutated(self, small_subjects):
        before = small_subjects.copy()
        build_person_period_panel(small_subjects, WINDOW)
        pd.testing.assert_frame_equal(small_subjects, before)


class TestPanelValidation:

    def test_window_min_not_below_max(self):
        with pytest.raises(ValidationError):
            PanelWindow(min_age=19, max_age=19)
        with pytest.raises(ValidationError):
            PanelWindow(min_age=20, max_age=13)

    def test_window_ages(self):
        assert list(WINDOW.ages) == list(range(13, 20))

    def test_window_accepts_numpy_integers(self, small_subjects):
        window = PanelWindow(min_age=np.int64(13), max_age=np.int64(19))
        assert type(window.min_age) is int and type(window.max_age) is int
        panel = build_person_period_panel(small_subjects, window)
        assert len(panel) == 19
        assert panel[PERIOD_FIELD].min() == 13

    def test_window_rejects_booleans(self):
        with pytest.raises(ValidationError):
            PanelWindow(min_age=True, max_age=19)

    def test_window_requires_integers(self):
        with pytest.raises(ValidationError):
            PanelWindow(min_age=13.5, max_age=19)

    def test_missing_required_value(self, small_subjects):
        small_subjects.loc[1, 'weight'] = np.nan
        with pytest.raises(ValidationError, match='weight'):
            build_person_period_panel(small_subjects, WINDOW)

    def test_missing_required_column(self, small_subjects):
        with pytest.raises(MissingRequiredColumnError):
            build_person_period_panel(small_subjects.drop(columns='cohort'), WINDOW)

    def test_missing_event_age_values_allowed(self, small_subjects):
        small_subjects['age_first_birth'] = np.nan
        panel = build_person_period_panel(small_subjects, WINDOW)
        assert panel[EVENT_FIELD].sum() == 0

    def test_reserved_column(self, small_subjects):
        small_subjects['event'] = 0
        with pytest.raises(ValidationError, match='reserved'):
            build_person_period_panel(small_subjects, WINDOW)

    def test_window_type_checked(self, small_subjects):
        with pytest.raises(ValidationError):
            build_person_period_panel(small_subjects, (13, 19))

    def test_custom_required_fields(self, small_subjects):
        window = PanelWindow(min_age=13, max_age=19, required=('weight',))
        panel = build_person_period_panel(
            small_subjects.drop(columns=['cohort', 'exposure']), window
        )
        assert len(panel) == 19

    def test_early_events_removed_by_caller(self):
        subjects = pd.DataFrame({
            'caseid': [1, 2], 'age': [20, 20], 'age_first_birth': [12.0, 15.0],
            'province': [1, 1], 'cohort': [2000, 2000], 'exposure': [0.1, 0.1],
            'weight': [1.0, 1.0],
        })
        with pytest.warns(UserWarning, match='Dropped 1 subject'):
            cleaned = drop_early_events(subjects, 'age_first_birth', 13)
        panel = build_person_period_panel(cleaned, WINDOW)
        assert panel['caseid'].unique().tolist() == [2]


# =============================================================================
# Empirical hazard
# =============================================================================

class TestEmpiricalHazard:

    def test_weighted_proportion_with_effective_n(self):
        panel = pd.DataFrame({
            'age_at': [15, 15, 15, 15],
            'event': [1, 0, 0, 0],
            'weight': [2.0, 2.0, 2.0, 2.0],
        })
        out = empirical_hazard(panel)
        row = out.iloc[0]
        assert row['hazard'] == pytest.approx(0.25)
        assert row['n_eff'] == pytest.approx(4.0)
        assert row['se_h'] == pytest.approx(0.2165, abs=5e-5)
        assert row['W'] == 8.0 and row['WE'] == 2.0 and row['W2'] == 16.0

    def test_effective_n_below_raw_count_with_unequal_weights(self):
        panel = pd.DataFrame({
            'age_at': [15] * 4,
            'event': [1, 0, 0, 0],
            'weight': [4.0, 1.0, 1.0, 1.0],
        })
        row = empirical_hazard(panel).iloc[0]
        assert row['hazard'] == pytest.approx(4 / 7)
        assert row['n_eff'] == pytest.approx(49 / 19)
        expected_se = np.sqrt((4 / 7) * (3 / 7) / (49 / 19))
        assert row['se_h'] == pytest.approx(expected_se)
        assert row['n_obs'] == 4

    def test_bounds_clipped_to_unit_interval(self):
        panel = pd.DataFrame({
            'age_at': [13, 13, 14, 14],
            'event': [0, 0, 1, 1],
            'weight': [1.0, 1.0, 1.0, 1.0],
        })
        out = empirical_hazard(panel).set_index('age_at')
        assert out.loc[13, 'ci_low'] == 0.0
        assert out.loc[13, 'ci_high'] == 0.0
        assert out.loc[14, 'ci_high'] == 1.0
        assert out.loc[13, 'ci_degenerate']
        assert (out['ci_low'] >= 0).all() and (out['ci_high'] <= 1).all()

    def test_lower_bound_clipped(self):
        panel = pd.DataFrame({
            'age_at': [13] * 5,
            'event': [1, 0, 0, 0, 0],
            'weight': [1.0] * 5,
        })
        row = empirical_hazard(panel).iloc[0]
        assert row['hazard'] - 1.96 * row['se_h'] < 0
        assert row['ci_low'] == 0.0
        assert row['ci_high'] == pytest.approx(row['hazard'] + 1.96 * row['se_h'])
        assert not row['ci_degenerate']

    def test_unweighted(self):
        panel = pd.DataFrame({'age_at': [16] * 10, 'event': [1] * 3 + [0] * 7})
        row = empirical_hazard(panel, weight_field=None).iloc[0]
        assert row['hazard'] == pytest.approx(0.3)
        assert row['n_eff'] == pytest.approx(10.0)

    def test_sorted_by_age_and_columns(self, women):
        panel = build_person_period_panel(women, WINDOW)
        out = empirical_hazard(panel)
        assert out['age_at'].tolist() == list(range(13, 20))
        for col in ('age_at', 'hazard', 'se_h', 'ci_low', 'ci_high'):
            assert col in out.columns
        # Weighted event share per age matches a direct computation.
        sub = panel.loc[panel['age_at'] == 16]
        expected = (sub['weight'] * sub['event']).sum() / sub['weight'].sum()
        assert_allclose(out.set_index('age_at').loc[16, 'hazard'], expected)


# =============================================================================
# Hazard regression
# =============================================================================

class TestHazardModel:

    def test_lpm_hazard_fit(self, women):
        panel = build_person_period_panel(women, WINDOW)
        spec = ModelSpec(
            focal='exposure_x_era',
            absorb=('age_at', 'province', 'cohort'),
            cluster='province',
            weight='weight',
        )
        res = estimate_hazard_model(panel, spec)
        assert isinstance(res, HazardResult)
        assert res.n_person_periods == len(panel)
        assert res.n_subjects == women.loc[women['age'] >= 13, 'caseid'].nunique()
        assert res.n_events == int(women['teen_birth'].sum())
        assert res.fit.outcome == 'event'
        assert res.fit.nobs == len(panel)
        assert res.fit.n_clusters == 12
        assert res.fit.df_resid == 11
        assert np.isfinite(res.fit.coef) and res.fit.se > 0
        assert 'DISCRETE-TIME HAZARD' in res.summary()

    def test_hazard_fit_fails_without_focal_variation(self, women):
        panel = build_person_period_panel(women, WINDOW)
        panel['exposure_x_era'] = 0.0
        spec = ModelSpec(focal='exposure_x_era', absorb=('age_at',))
        with pytest.raises(FitError):
            estimate_hazard_model(panel, spec)
