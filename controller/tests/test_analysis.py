"""Tests for the Mann-Whitney U harm analysis."""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from scipy import stats

from gated_deployments import analysis
from gated_deployments.analysis import AnalysisResult, Verdict, evaluate


@pytest.fixture
def stub_test(monkeypatch):
    """Pin the U statistic and z-score so only the decision logic is exercised."""

    def _stub(u, z_score):
        monkeypatch.setattr(analysis, "mann_whitney_u", lambda control, treatment: u)
        monkeypatch.setattr(analysis, "critical_value", lambda u_, control, treatment: z_score)

    return _stub


SAMPLES_50 = [1.0] * 50


class TestMinSamples:
    def test_not_enough_control_samples(self):
        result = evaluate([1.0] * 49, [1000.0] * 50, min_samples=50)
        assert result == AnalysisResult(u=(0, 0), verdict=Verdict.NOT_SIGNIFICANT)

    def test_not_enough_treatment_samples(self):
        result = evaluate([1.0] * 50, [1000.0] * 49, min_samples=50)
        assert result == AnalysisResult(u=(0, 0), verdict=Verdict.NOT_SIGNIFICANT)

    @settings(max_examples=50)
    @given(
        control=st.lists(st.floats(min_value=0, max_value=1e4), max_size=9),
        treatment=st.lists(st.floats(min_value=0, max_value=1e4), min_size=10, max_size=20),
    )
    def test_short_group_is_never_significant(self, control, treatment):
        assert evaluate(control, treatment, min_samples=10).verdict is Verdict.NOT_SIGNIFICANT
        assert evaluate(treatment, control, min_samples=10).verdict is Verdict.NOT_SIGNIFICANT


class TestDecision:
    def test_z_score_at_default_threshold_is_no_harm(self, stub_test):
        stub_test((1250, 1250), 1.96)
        result = evaluate(SAMPLES_50, SAMPLES_50, min_samples=50)
        assert result.verdict is Verdict.NO_HARM
        assert result.u == (1250, 1250)

    def test_z_score_below_custom_threshold_is_no_harm(self, stub_test):
        stub_test((1000, 3000), 2.24)
        result = evaluate(SAMPLES_50, SAMPLES_50, min_samples=50, z_score_threshold=2.5)
        assert result.verdict is Verdict.NO_HARM

    def test_treatment_u_within_default_harm_threshold_is_no_harm(self, stub_test):
        stub_test((2000, 1000), 2.24)
        result = evaluate(SAMPLES_50, SAMPLES_50, min_samples=50)
        assert result == AnalysisResult(u=(2000, 1000), verdict=Verdict.NO_HARM, z_score=2.24)

    def test_treatment_u_over_default_harm_threshold_is_harm(self, stub_test):
        stub_test((1000, 2000), 2.24)
        result = evaluate(SAMPLES_50, SAMPLES_50, min_samples=50)
        assert result == AnalysisResult(u=(1000, 2000), verdict=Verdict.HARM, z_score=2.24)

    def test_custom_harm_threshold(self, stub_test):
        stub_test((1000, 2000), 2.24)
        assert evaluate(SAMPLES_50, SAMPLES_50, min_samples=50, harm_threshold=2.5).verdict is Verdict.NO_HARM
        stub_test((1000, 3000), 2.7)
        assert evaluate(SAMPLES_50, SAMPLES_50, min_samples=50, harm_threshold=2.5).verdict is Verdict.HARM

    def test_zero_control_u_is_harm_when_treatment_u_positive(self, stub_test):
        stub_test((0, 2500), 8.0)
        assert evaluate(SAMPLES_50, SAMPLES_50, min_samples=50).verdict is Verdict.HARM

    def test_zero_control_and_treatment_u_is_no_harm(self, stub_test):
        stub_test((0, 0), 3.0)
        assert evaluate(SAMPLES_50, SAMPLES_50, min_samples=50).verdict is Verdict.NO_HARM


class TestStatistic:
    def test_slower_treatment_is_harm(self):
        control = [float(v) for v in range(0, 100)]
        treatment = [float(v) for v in range(30, 130)]
        result = evaluate(control, treatment, min_samples=50)
        assert result.u == (2450.0, 7550.0)
        assert result.z_score == pytest.approx(6.23, abs=0.01)
        assert result.verdict is Verdict.HARM

    def test_faster_treatment_is_no_harm(self):
        control = [float(v) for v in range(30, 130)]
        treatment = [float(v) for v in range(0, 100)]
        result = evaluate(control, treatment, min_samples=50)
        assert result.u == (7550.0, 2450.0)
        assert result.verdict is Verdict.NO_HARM

    def test_disjoint_groups_use_zero_control_policy(self):
        control = [float(v) for v in range(1, 61)]
        treatment = [float(v) for v in range(101, 161)]
        result = evaluate(control, treatment, min_samples=50)
        assert result.u == (0.0, 3600.0)
        assert result.verdict is Verdict.HARM

    def test_identical_groups_are_no_harm(self):
        samples = [float(v) for v in range(100)]
        result = evaluate(samples, list(samples), min_samples=50)
        assert result.u == (5000.0, 5000.0)
        assert result.z_score == 0.0
        assert result.verdict is Verdict.NO_HARM

    def test_all_tied_samples_have_zero_z_score(self):
        assert analysis.critical_value((50.0, 50.0), [3.0] * 10, [3.0] * 10) == 0.0

    @settings(max_examples=100)
    @given(
        control=st.lists(st.integers(min_value=0, max_value=50), min_size=1, max_size=40),
        treatment=st.lists(st.integers(min_value=0, max_value=50), min_size=1, max_size=40),
    )
    def test_u_statistics_sum_to_pair_count(self, control, treatment):
        u_control, u_treatment = analysis.mann_whitney_u(control, treatment)
        assert u_control + u_treatment == pytest.approx(len(control) * len(treatment))
        assert analysis.critical_value((u_control, u_treatment), control, treatment) >= 0.0

    def test_z_score_matches_asymptotic_p_value(self):
        control = [float(v % 37) for v in range(80)]
        treatment = [float(v % 41) + 3.0 for v in range(70)]
        u = analysis.mann_whitney_u(control, treatment)
        z_score = analysis.critical_value(u, control, treatment)
        expected = stats.mannwhitneyu(
            control, treatment, alternative="two-sided", use_continuity=False, method="asymptotic"
        )
        assert 2 * stats.norm.sf(z_score) == pytest.approx(expected.pvalue, rel=1e-6)

    def test_empty_group_has_no_statistic(self):
        assert analysis.mann_whitney_u([], [1.0, 2.0]) == (0.0, 0.0)
        assert analysis.critical_value((0.0, 0.0), [], [1.0, 2.0]) == 0.0
