"""Tests for forecast prompt construction."""
from __future__ import annotations

import json
from types import SimpleNamespace

from forge.evidence import aggregate_evidence
from forge.prompts import FORECAST_SYSTEM_PROMPT, build_dossier, build_request, correction_instruction
from forge.scorer import compute_score


def _feature(type: str = "monetization", **kw):
    base = dict(
        id=7, title="Annual billing", type=type, effort_days=15,
        problem="Renewal churn", target_users="Finance admins", constraints="",
        pricing_plans_json=json.dumps(["Starter", "Growth"]),
    )
    base.update(kw)
    return SimpleNamespace(**base)


def _items():
    return [
        SimpleNamespace(source_type="ticket", content="Please add yearly invoices", link=""),
        SimpleNamespace(source_type="analytics", content="Churn spikes after renewal", link="https://bi.example.com/q/1"),
        SimpleNamespace(source_type="email", content="Would pay upfront for a discount", link=""),
    ]


def _request(feature=None, items=None, baseline=None, tag="fixed-tag"):
    feature = feature or _feature()
    items = _items() if items is None else items
    baseline = baseline if baseline is not None else {"arpa": 120.0, "monthly_active_accounts": 800}
    score = compute_score(feature, baseline, aggregate_evidence(items))
    return build_request(feature, items, baseline, score, generation_tag=tag)


class TestBuildRequest:
    def test_identical_inputs_give_identical_prompts(self):
        a, b = _request(), _request()
        assert a.system == b.system
        assert a.user == b.user
        assert a == b

    def test_evidence_order_does_not_matter(self):
        assert _request(items=_items()).user == _request(items=list(reversed(_items()))).user

    def test_generation_tag_stays_out_of_prompt(self):
        a, b = _request(tag=None), _request(tag=None)
        assert a.generation_tag != b.generation_tag
        assert a.user == b.user
        assert a.generation_tag not in a.user

    def test_system_prompt_describes_camel_case_shape(self):
        req = _request()
        assert req.system == FORECAST_SYSTEM_PROMPT
        for key in ("impactLow", "whyCheaper", "validationPlan", "successThreshold", "decisionMemo"):
            assert key in req.system

    def test_direction_follows_feature_type(self):
        assert _request().direction == "higher_is_better"
        req = _request(feature=_feature("support_cost"), baseline={"support_tickets_monthly": 300})
        assert req.direction == "lower_is_better"
        assert "LOWER values" in req.user


class TestBuildDossier:
    def test_contains_score_evidence_and_plans(self):
        feature = _feature()
        items = _items()
        score = compute_score(feature, {"arpa": 120.0}, aggregate_evidence(items))
        text = build_dossier(feature, items, {"arpa": 120.0}, score)
        assert "FEATURE: Annual billing" in text
        assert "PRICING PLANS: Starter, Growth" in text
        assert "ROI SCORE: " in text
        assert f"CONFIDENCE: {score.confidence}" in text
        assert "EVIDENCE (3 items)" in text
        assert "(https://bi.example.com/q/1)" in text
        assert "DATA GAP:" in text

    def test_no_evidence_and_no_baseline(self):
        feature = _feature()
        score = compute_score(feature, None, aggregate_evidence([]))
        text = build_dossier(feature, [], None, score)
        assert "No evidence attached." in text
        assert "None provided." in text


class TestCorrectionInstruction:
    def test_lists_errors(self):
        text = correction_instruction(2, ["assumptions.0.probability: too large"], "higher_is_better")
        assert "attempt 2" in text
        assert "assumptions.0.probability" in text
        assert "Checklist" not in text

    def test_gets_more_explicit(self):
        second = correction_instruction(2, ["x"], "lower_is_better")
        third = correction_instruction(3, ["x"], "lower_is_better")
        assert len(third) > len(second)
        assert "Checklist" in third
        assert "LOWER values" in third
