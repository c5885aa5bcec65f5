"""Scoring configuration and runtime settings.

All tunable numbers behind the ROI score live in :class:`ScoringConfig`.
A forecast records the ``version`` of the config that produced its score,
so the deterministic half of a forecast can be reproduced from
``(inputs, config version)``.  The shipped values are product defaults,
not calibrated production numbers; override them with
``DEFAULT_SCORING_CONFIG.with_overrides(...)``, which re-runs validation,
and bump ``version``.
"""
from __future__ import annotations

import math
import os
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

FeatureType = Literal["acquisition", "activation", "retention", "monetization", "support_cost"]
SourceType = Literal["ticket", "sales_call", "email", "analytics", "other"]
Confidence = Literal["low", "medium", "high"]
Level = Literal["low", "medium", "high"]
ImpactDirection = Literal["higher_is_better", "lower_is_better"]

FEATURE_TYPES: tuple[str, ...] = ("acquisition", "activation", "retention", "monetization", "support_cost")
SOURCE_TYPES: tuple[str, ...] = ("ticket", "sales_call", "email", "analytics", "other")

BASELINE_FIELDS: tuple[str, ...] = (
    "arpa", "monthly_active_accounts", "trial_to_paid", "churn_monthly", "support_tickets_monthly",
)

# Which baseline metrics each feature type needs to estimate value potential.
REQUIRED_METRICS: dict[str, tuple[str, ...]] = {
    "acquisition": ("arpa", "monthly_active_accounts"),
    "activation": ("arpa", "monthly_active_accounts", "trial_to_paid"),
    "retention": ("arpa", "monthly_active_accounts", "churn_monthly"),
    "monetization": ("arpa", "monthly_active_accounts"),
    "support_cost": ("support_tickets_monthly",),
}


class ScoringWeights(BaseModel):
    value_potential: float = 0.35
    reach: float = 0.20
    evidence_strength: float = 0.20
    effort_penalty: float = 0.15
    risk_penalty: float = 0.10

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> ScoringWeights:
        values = [self.value_potential, self.reach, self.evidence_strength,
                  self.effort_penalty, self.risk_penalty]
        if any(v < 0 for v in values):
            raise ValueError("scoring weights must be non-negative")
        if not math.isclose(math.fsum(values), 1.0, abs_tol=1e-9):
            raise ValueError(f"scoring weights must sum to 1.0, got {math.fsum(values)}")
        return self


def _default_source_weights() -> dict[str, float]:
    return {"analytics": 1.0, "sales_call": 0.8, "ticket": 0.6, "email": 0.4, "other": 0.25}


class ScoringConfig(BaseModel):
    version: str = "2024.1"
    weights: ScoringWeights = Field(default_factory=ScoringWeights)

    # Evidence aggregation
    source_weights: dict[str, float] = Field(default_factory=_default_source_weights)
    evidence_saturation: float = Field(3.0, gt=0)  # weighted items at which the signal reaches ~63%
    min_content_chars: int = Field(20, ge=0)  # shorter content counts as near-empty
    near_empty_discount: float = Field(0.25, ge=0, le=1)  # weight multiplier for near-empty content

    # Value potential: assumed monthly uplift per feature type
    monetization_uplift: float = Field(0.05, ge=0)  # share of MRR
    acquisition_growth: float = Field(0.02, ge=0)  # new accounts per active account per month
    activation_uplift: float = Field(0.10, ge=0)  # relative lift of trial-to-paid
    churn_reduction: float = Field(0.20, ge=0, le=1)  # relative reduction of monthly churn
    ticket_deflection: float = Field(0.15, ge=0, le=1)  # share of tickets avoided
    cost_per_ticket: float = Field(15.0, ge=0)
    value_saturation: float = Field(10_000.0, gt=0)  # monthly value at which value potential reaches ~63%
    neutral_value_potential: dict[str, float] = Field(default_factory=lambda: {
        "acquisition": 40.0, "activation": 40.0, "retention": 45.0,
        "monetization": 45.0, "support_cost": 35.0,
    })

    # Reach
    reach_saturation_accounts: int = Field(100_000, gt=0)
    default_population: int = Field(500, ge=0)

    # Effort: penalty = max_effort_penalty * (1 - exp(-days / effort_scale_days))
    effort_scale_days: float = Field(60.0, gt=0)
    max_effort_penalty: float = Field(90.0, ge=0, lt=100)

    # Risk
    base_risk_penalty: dict[str, float] = Field(default_factory=lambda: {
        "acquisition": 50.0, "activation": 40.0, "retention": 40.0,
        "monetization": 55.0, "support_cost": 30.0,
    })
    constraints_relief: float = Field(0.25, ge=0, le=1)  # share of risk removed when constraints are described
    evidence_relief: float = Field(0.40, ge=0, le=1)  # share of risk removed at full evidence strength

    # Confidence
    medium_min_evidence: int = Field(2, ge=0)
    medium_min_completeness: float = Field(0.4, ge=0, le=1)
    high_min_evidence: int = Field(5, ge=0)
    high_min_completeness: float = Field(0.8, ge=0, le=1)

    impact_direction: dict[str, ImpactDirection] = Field(default_factory=lambda: {
        "acquisition": "higher_is_better", "activation": "higher_is_better",
        "retention": "higher_is_better", "monetization": "higher_is_better",
        "support_cost": "lower_is_better",
    })

    score_precision: int = Field(1, ge=0)

    @field_validator("source_weights")
    @classmethod
    def _source_weights_ordered(cls, v: dict[str, float]) -> dict[str, float]:
        if set(v) != set(SOURCE_TYPES):
            raise ValueError(f"source_weights must cover exactly {SOURCE_TYPES}")
        ordered = [v[s] for s in ("analytics", "sales_call", "ticket", "email", "other")]
        if ordered[-1] <= 0 or any(a <= b for a, b in zip(ordered, ordered[1:])):
            raise ValueError("source weights must be positive and ordered "
                             "analytics > sales_call > ticket > email > other")
        return v

    @field_validator("neutral_value_potential", "base_risk_penalty", "impact_direction")
    @classmethod
    def _covers_feature_types(cls, v: dict) -> dict:
        if set(v) != set(FEATURE_TYPES):
            raise ValueError(f"table must cover exactly {FEATURE_TYPES}")
        return v

    @field_validator("neutral_value_potential", "base_risk_penalty")
    @classmethod
    def _sub_scores_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        if any(not 0.0 <= x <= 100.0 for x in v.values()):
            raise ValueError("per-type sub-scores must lie in [0, 100]")
        return v

    @model_validator(mode="after")
    def _thresholds_ordered(self) -> ScoringConfig:
        if (self.high_min_evidence < self.medium_min_evidence
                or self.high_min_completeness < self.medium_min_completeness):
            raise ValueError("high confidence thresholds must not be below the medium ones")
        return self

    def with_overrides(self, **updates: Any) -> ScoringConfig:
        """Return a validated copy with ``updates`` applied.

        Unlike ``model_copy(update=...)`` this re-runs every validator.
        """
        return ScoringConfig.model_validate({**self.model_dump(), **updates})


DEFAULT_SCORING_CONFIG = ScoringConfig()


# ---------------------------------------------------------------------------
# Runtime settings (environment)
# ---------------------------------------------------------------------------


class GeneratorSettings(BaseModel):
    max_schema_attempts: int = Field(3, ge=1)
    max_transport_attempts: int = Field(3, ge=1)
    backoff_seconds: float = Field(1.0, ge=0)
    backoff_max_seconds: float = Field(8.0, ge=0)
    call_timeout_seconds: float = Field(60.0, gt=0)
    deadline_seconds: float = Field(300.0, gt=0)

    @classmethod
    def from_env(cls) -> GeneratorSettings:
        env = {
            "max_schema_attempts": "FORGE_SCHEMA_ATTEMPTS",
            "max_transport_attempts": "FORGE_TRANSPORT_ATTEMPTS",
            "backoff_seconds": "FORGE_BACKOFF_SECONDS",
            "backoff_max_seconds": "FORGE_BACKOFF_MAX_SECONDS",
            "call_timeout_seconds": "FORGE_CALL_TIMEOUT_SECONDS",
            "deadline_seconds": "FORGE_GENERATION_DEADLINE_SECONDS",
        }
        values = {field: os.environ[var] for field, var in env.items() if os.environ.get(var)}
        return cls.model_validate(values)
