"""Tests for the deterministic ROI scorer."""
from __future__ import annotations

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from forge.config import DEFAULT_SCORING_CONFIG, FEATURE_TYPES, ScoringConfig, ScoringWeights
from forge.errors import InvalidFeatureStateError
from forge.evidence import aggregate_evidence
from forge.schemas import BaselineMetrics
from forge.scorer import compute_effort_penalty, compute_score

FULL_BASELINE = {
    "arpa": 120.0, "monthly_active_accounts": 800, "trial_to_paid": 12.0,
    "churn_monthly": 3.5, "support_tickets_monthly": 400,
}


def _feature(type: str = "monetization", effort_days: int = 15, constraints: str = ""):
    return SimpleNamespace(type=type, effort_days=effort_days, constraints=constraints)


def _evidence(n: int, source_type: str = "analytics"):
    return aggregate_evidence([
        SimpleNamespace(source_type=source_type, content=f"Observed signal number {i} in product analytics")
        for i in range(n)
    ])


class TestDeterminism:
    def test_same_inputs_same_result(self):
        args = (_feature(), BaselineMetrics(**FULL_BASELINE), _evidence(3))
        assert compute_score(*args) == compute_score(*args)

    def test_dict_and_model_baselines_agree(self):
        ev = _evidence(2)
        assert compute_score(_feature(), FULL_BASELINE, ev) == compute_score(_feature(), BaselineMetrics(**FULL_BASELINE), ev)

    def test_records_config_version(self):
        config = DEFAULT_SCORING_CONFIG.with_overrides(version="test-7")
        assert compute_score(_feature(), None, _evidence(0), config).config_version == "test-7"


class TestBounds:
    @pytest.mark.parametrize("feature_type", FEATURE_TYPES)
    @pytest.mark.parametrize("effort", [1, 30, 10_000])
    @pytest.mark.parametrize("n_evidence", [0, 3, 200])
    def test_score_in_range_one_decimal(self, feature_type, effort, n_evidence):
        result = compute_score(_feature(feature_type, effort), FULL_BASELINE, _evidence(n_evidence))
        assert 0.0 <= result.roi_score <= 100.0
        assert round(result.roi_score, 1) == result.roi_score
        for value in result.breakdown.as_dict().values():
            assert 0.0 <= value <= 100.0

    def test_huge_baseline_stays_bounded(self):
        baseline = {"arpa": 1e9, "monthly_active_accounts": 10**9, "support_tickets_monthly": 10**9}
        assert compute_score(_feature(), baseline, _evidence(1000)).roi_score <= 100.0


class TestMonotonicity:
    def test_effort_penalty_strictly_increasing(self):
        penalties = [compute_effort_penalty(d) for d in (1, 5, 20, 60, 200, 1000)]
        assert penalties == sorted(penalties)
        assert len(set(penalties)) == len(penalties)

    def test_less_effort_scores_higher(self):
        ev = _evidence(3)
        small = compute_score(_feature(effort_days=5), FULL_BASELINE, ev)
        large = compute_score(_feature(effort_days=60), FULL_BASELINE, ev)
        assert small.roi_score > large.roi_score
        assert small.breakdown.effort_penalty < large.breakdown.effort_penalty

    def test_more_evidence_never_lowers_score(self):
        scores = [compute_score(_feature(), FULL_BASELINE, _evidence(n)).roi_score for n in range(0, 12)]
        assert scores == sorted(scores)

    def test_described_constraints_reduce_risk(self):
        ev = _evidence(1)
        bare = compute_score(_feature(), FULL_BASELINE, ev)
        described = compute_score(_feature(constraints="GDPR: EU data residency"), FULL_BASELINE, ev)
        assert described.breakdown.risk_penalty < bare.breakdown.risk_penalty


class TestConfidence:
    def test_no_evidence_is_low_with_zero_evidence_score(self):
        result = compute_score(_feature(), FULL_BASELINE, _evidence(0))
        assert result.confidence == "low"
        assert result.breakdown.evidence_strength == 0.0
        assert any("No evidence" in gap for gap in result.data_gaps)

    def test_five_analytics_and_partial_baseline_is_medium(self):
        baseline = {"arpa": 120.0, "monthly_active_accounts": 800}
        result = compute_score(_feature("monetization"), baseline, _evidence(5))
        assert result.confidence == "medium"

    def test_full_baseline_and_evidence_is_high(self):
        assert compute_score(_feature(), FULL_BASELINE, _evidence(5)).confidence == "high"

    def test_value_fallback_demotes_one_level(self):
        baseline = {k: v for k, v in FULL_BASELINE.items() if k != "churn_monthly"}
        result = compute_score(_feature("retention"), baseline, _evidence(5))
        assert result.confidence == "medium"
        assert any("neutral default" in gap for gap in result.data_gaps)

    def test_missing_baseline_uses_neutral_value(self):
        result = compute_score(_feature("activation"), None, _evidence(2))
        assert result.breakdown.value_potential == DEFAULT_SCORING_CONFIG.neutral_value_potential["activation"]
        assert result.confidence == "low"


class TestImpactDirection:
    def test_support_cost_is_lower_is_better(self):
        assert compute_score(_feature("support_cost"), FULL_BASELINE, _evidence(1)).impact_direction == "lower_is_better"

    @pytest.mark.parametrize("feature_type", ["acquisition", "activation", "retention", "monetization"])
    def test_growth_types_are_higher_is_better(self, feature_type):
        assert compute_score(_feature(feature_type), FULL_BASELINE, _evidence(1)).impact_direction == "higher_is_better"


class TestInvalidFeature:
    def test_unknown_type(self):
        with pytest.raises(InvalidFeatureStateError):
            compute_score(_feature("growth_hacking"), FULL_BASELINE, _evidence(1))

    @pytest.mark.parametrize("effort", [0, -3, None, 2.5, True])
    def test_bad_effort(self, effort):
        with pytest.raises(InvalidFeatureStateError):
            compute_score(_feature(effort_days=effort), FULL_BASELINE, _evidence(1))


class TestScoringConfig:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ValidationError):
            ScoringWeights(value_potential=0.5, reach=0.5, evidence_strength=0.5,
                           effort_penalty=0.0, risk_penalty=0.0)

    def test_source_weights_must_be_ordered(self):
        with pytest.raises(ValidationError):
            ScoringConfig(source_weights={"analytics": 0.1, "sales_call": 0.8, "ticket": 0.6,
                                          "email": 0.4, "other": 0.25})

    def test_tables_cover_every_type(self):
        with pytest.raises(ValidationError):
            ScoringConfig(base_risk_penalty={"acquisition": 10.0})

    def test_source_weight_ties_rejected(self):
        with pytest.raises(ValidationError):
            ScoringConfig(source_weights={s: 0.5 for s in ("analytics", "sales_call", "ticket", "email", "other")})

    @pytest.mark.parametrize("field", ["evidence_saturation", "value_saturation", "effort_scale_days",
                                       "reach_saturation_accounts"])
    def test_scales_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            ScoringConfig(**{field: 0})

    @pytest.mark.parametrize("field, value", [
        ("near_empty_discount", 1.5), ("constraints_relief", -0.1), ("evidence_relief", 2.0),
        ("max_effort_penalty", 100.0), ("max_effort_penalty", -1.0),
    ])
    def test_factors_bounded(self, field, value):
        with pytest.raises(ValidationError):
            ScoringConfig(**{field: value})

    def test_overrides_are_validated(self):
        with pytest.raises(ValidationError):
            DEFAULT_SCORING_CONFIG.with_overrides(source_weights={
                "analytics": 0.1, "sales_call": 0.8, "ticket": 0.6, "email": 0.4, "other": 0.25,
            })
        with pytest.raises(ValidationError):
            DEFAULT_SCORING_CONFIG.with_overrides(evidence_saturation=0.0)

    def test_overrides_keep_other_values(self):
        config = DEFAULT_SCORING_CONFIG.with_overrides(version="2025.2", effort_scale_days=30.0)
        assert config.version == "2025.2"
        assert config.effort_scale_days == 30.0
        assert config.source_weights == DEFAULT_SCORING_CONFIG.source_weights
        assert DEFAULT_SCORING_CONFIG.effort_scale_days == 60.0


class TestScenarios:
    BASELINE = {"arpa": 50, "monthly_active_accounts": 1000}

    def test_baseline_without_evidence(self):
        result = compute_score(_feature("monetization"), self.BASELINE, _evidence(0))
        assert result.confidence == "low"
        assert result.breakdown.evidence_strength == 0

    def test_five_analytics_items_upgrade_confidence(self):
        before = compute_score(_feature("monetization"), self.BASELINE, _evidence(0))
        after = compute_score(_feature("monetization"), self.BASELINE, _evidence(5))
        assert after.breakdown.evidence_strength > before.breakdown.evidence_strength
        assert after.confidence == "medium"

    def test_one_day_beats_half_a_year(self):
        ev = _evidence(3)
        quick = compute_score(_feature(effort_days=1), FULL_BASELINE, ev)
        slow = compute_score(_feature(effort_days=180), FULL_BASELINE, ev)
        assert quick.breakdown.effort_penalty < slow.breakdown.effort_penalty
        assert quick.roi_score > slow.roi_score
