"""Deterministic ROI scoring.

Architecture
------------
A feature is scored on five bounded sub-scores, each on a 0-100 scale:

- **value_potential**: estimated monthly value of the feature from the
  baseline metrics its type needs (e.g. monetization uses
  ARPA x active accounts x an assumed uplift).  Saturates towards 100.
  When a required metric is missing the type's neutral default is used
  and confidence drops one level.
- **reach**: log-scaled share of ``reach_saturation_accounts`` covered by
  the monthly active accounts (or ``default_population``).
- **evidence_strength**: the evidence signal scaled to 0-100.
- **effort_penalty**: ``max_effort_penalty * (1 - exp(-days / scale))``;
  grows with effort but is capped, so effort alone never zeroes a score.
- **risk_penalty**: a per-type base risk, relieved by described
  constraints and by evidence strength.

The ROI score is the weighted sum of the three favourable sub-scores and
the complements (``100 - penalty``) of the two penalties, clamped to
[0, 100] and rounded to ``score_precision`` decimals.  Everything here is
a pure function of its arguments and the :class:`ScoringConfig`.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any

from forge.config import (
    BASELINE_FIELDS,
    DEFAULT_SCORING_CONFIG,
    FEATURE_TYPES,
    REQUIRED_METRICS,
    ScoringConfig,
)
from forge.errors import InvalidFeatureStateError
from forge.evidence import EvidenceSignal


@dataclass(frozen=True)
class ScoreBreakdown:
    value_potential: float
    reach: float
    evidence_strength: float
    effort_penalty: float
    risk_penalty: float

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class ScoreResult:
    roi_score: float
    breakdown: ScoreBreakdown
    confidence: str
    config_version: str
    impact_direction: str
    data_gaps: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------


def _saturate(x: float, scale: float) -> float:
    return 100.0 * (1.0 - math.exp(-max(0.0, x) / scale))


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def baseline_values(baseline: Any) -> dict[str, float]:
    """Normalize BaselineMetrics / dict / None to ``{field: value}`` of present metrics."""
    if baseline is None:
        return {}
    if hasattr(baseline, "model_dump"):
        baseline = baseline.model_dump()
    return {k: float(baseline[k]) for k in BASELINE_FIELDS if baseline.get(k) is not None}


def monthly_value(feature_type: str, metrics: dict[str, float], config: ScoringConfig) -> float:
    """Estimated monthly value (currency) of the feature; requires REQUIRED_METRICS."""
    if feature_type == "support_cost":
        return metrics["support_tickets_monthly"] * config.ticket_deflection * config.cost_per_ticket
    arpa = metrics["arpa"]
    accounts = metrics["monthly_active_accounts"]
    if feature_type == "monetization":
        return arpa * accounts * config.monetization_uplift
    if feature_type == "acquisition":
        return accounts * config.acquisition_growth * arpa
    if feature_type == "activation":
        return accounts * (metrics["trial_to_paid"] / 100.0) * config.activation_uplift * arpa
    if feature_type == "retention":
        return accounts * (metrics["churn_monthly"] / 100.0) * config.churn_reduction * arpa
    raise InvalidFeatureStateError(f"Unknown feature type: {feature_type!r}")


def compute_value_potential(
    feature_type: str, metrics: dict[str, float], config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> tuple[float, bool]:
    """Return ``(value_potential, used_neutral_default)``."""
    if any(m not in metrics for m in REQUIRED_METRICS[feature_type]):
        return config.neutral_value_potential[feature_type], True
    return _clamp(_saturate(monthly_value(feature_type, metrics, config), config.value_saturation)), False


def compute_reach(metrics: dict[str, float], config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> float:
    accounts = metrics.get("monthly_active_accounts", float(config.default_population))
    return _clamp(100.0 * math.log1p(accounts) / math.log1p(config.reach_saturation_accounts))


def compute_effort_penalty(effort_days: int, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> float:
    return config.max_effort_penalty * (1.0 - math.exp(-effort_days / config.effort_scale_days))


def compute_risk_penalty(
    feature_type: str, constraints: str, evidence_strength: float,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> float:
    penalty = config.base_risk_penalty[feature_type]
    if constraints and constraints.strip():
        penalty *= 1.0 - config.constraints_relief
    penalty *= 1.0 - config.evidence_relief * evidence_strength
    return _clamp(penalty)


def compute_confidence(
    evidence_count: int, completeness: float, value_fallback: bool,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> str:
    """Map evidence volume and baseline completeness to low / medium / high."""
    if evidence_count >= config.high_min_evidence and completeness >= config.high_min_completeness:
        level = 2
    elif evidence_count >= config.medium_min_evidence and completeness >= config.medium_min_completeness:
        level = 1
    else:
        level = 0
    if value_fallback:
        level = max(0, level - 1)
    return ("low", "medium", "high")[level]


def compute_data_gaps(
    feature_type: str, metrics: dict[str, float], evidence: EvidenceSignal, value_fallback: bool,
) -> list[str]:
    """Identify missing inputs that would make the score more precise."""
    gaps: list[str] = []
    if evidence.count == 0:
        gaps.append("No evidence attached, evidence strength is zero")
    missing_required = [m for m in REQUIRED_METRICS[feature_type] if m not in metrics]
    if value_fallback:
        gaps.append(
            f"Missing {', '.join(missing_required)}; value potential uses the "
            f"neutral default for {feature_type}"
        )
    if "monthly_active_accounts" not in metrics:
        gaps.append("No monthly active accounts, reach uses the default population")
    other = [m for m in BASELINE_FIELDS if m not in metrics and m not in missing_required
             and m != "monthly_active_accounts"]
    if other:
        gaps.append(f"Optional baseline metrics not provided: {', '.join(other)}")
    return gaps


# ---------------------------------------------------------------------------
# ROI score
# ---------------------------------------------------------------------------


def _validate_feature(feature: Any) -> tuple[str, int, str]:
    feature_type = getattr(feature, "type", None)
    if feature_type not in FEATURE_TYPES:
        raise InvalidFeatureStateError(f"Unknown feature type: {feature_type!r}")
    effort_days = getattr(feature, "effort_days", None)
    if isinstance(effort_days, bool) or not isinstance(effort_days, int) or effort_days <= 0:
        raise InvalidFeatureStateError(f"effort_days must be a positive integer, got {effort_days!r}")
    return feature_type, effort_days, getattr(feature, "constraints", "") or ""


def compute_score(
    feature: Any,
    baseline: Any,
    evidence: EvidenceSignal,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> ScoreResult:
    """Compute the ROI score, its breakdown and confidence.

    Args:
        feature: Object with ``type``, ``effort_days`` and ``constraints``
            attributes (ORM Feature or any stand-in).
        baseline: BaselineMetrics, a plain dict, or None.
        evidence: Output of :func:`forge.evidence.aggregate_evidence`.
        config: Scoring configuration; its ``version`` is recorded on the result.

    Raises:
        InvalidFeatureStateError: unknown type or non-positive effort.
    """
    feature_type, effort_days, constraints = _validate_feature(feature)
    metrics = baseline_values(baseline)

    value, value_fallback = compute_value_potential(feature_type, metrics, config)
    reach = compute_reach(metrics, config)
    evidence_score = _clamp(100.0 * evidence.strength)
    effort = compute_effort_penalty(effort_days, config)
    risk = compute_risk_penalty(feature_type, constraints, evidence.strength, config)

    w = config.weights
    raw = math.fsum([
        w.value_potential * value,
        w.reach * reach,
        w.evidence_strength * evidence_score,
        w.effort_penalty * (100.0 - effort),
        w.risk_penalty * (100.0 - risk),
    ])
    roi_score = round(_clamp(raw), config.score_precision)

    completeness = len(metrics) / len(BASELINE_FIELDS)
    return ScoreResult(
        roi_score=roi_score,
        breakdown=ScoreBreakdown(
            value_potential=round(value, 2),
            reach=round(reach, 2),
            evidence_strength=round(evidence_score, 2),
            effort_penalty=round(effort, 2),
            risk_penalty=round(risk, 2),
        ),
        confidence=compute_confidence(evidence.count, completeness, value_fallback, config),
        config_version=config.version,
        impact_direction=config.impact_direction[feature_type],
        data_gaps=tuple(compute_data_gaps(feature_type, metrics, evidence, value_fallback)),
    )
