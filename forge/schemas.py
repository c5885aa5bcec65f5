"""Pydantic request/response schemas, including the strict AI forecast schema."""
from __future__ import annotations

from datetime import datetime
from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from forge.config import Confidence, FeatureType, ImpactDirection, Level, SourceType

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


# ---------------------------------------------------------------------------
# Features & evidence
# ---------------------------------------------------------------------------


class BaselineMetrics(BaseModel):
    """Optional business metrics. Any field may be absent."""
    arpa: float | None = Field(None, ge=0)
    monthly_active_accounts: int | None = Field(None, ge=0)
    trial_to_paid: float | None = Field(None, ge=0, le=100)       # percent
    churn_monthly: float | None = Field(None, ge=0, le=100)       # percent
    support_tickets_monthly: int | None = Field(None, ge=0)

    def present(self) -> dict[str, float]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class FeatureCreate(BaseModel):
    org_id: int
    title: NonEmptyStr
    type: FeatureType
    problem: NonEmptyStr
    target_users: NonEmptyStr
    effort_days: int = Field(..., gt=0)
    constraints: str = ""
    pricing_plans: list[str] = []
    baseline_metrics: BaselineMetrics | None = None


class EvidenceCreate(BaseModel):
    source_type: SourceType
    content: NonEmptyStr
    link: str = ""

    @field_validator("link")
    @classmethod
    def link_must_be_http(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith(("http://", "https://")):
            raise ValueError("link must be an http(s) URL")
        return v


class EvidenceOut(BaseModel):
    id: int
    feature_id: int
    source_type: str
    content: str
    link: str
    created_at: str | None = None


class FeatureOut(BaseModel):
    id: int
    org_id: int
    title: str
    type: str
    problem: str
    target_users: str
    effort_days: int
    constraints: str
    pricing_plans: list[str] = []
    baseline_metrics: BaselineMetrics | None = None
    created_at: str | None = None
    evidence_count: int = 0
    forecast_count: int = 0
    latest_roi_score: float | None = None
    latest_confidence: str | None = None


class FeatureDetail(FeatureOut):
    evidence: list[EvidenceOut] = []
    forecasts: list[ForecastSummary] = []


# ---------------------------------------------------------------------------
# AI-authored forecast content (strict schema)
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)


class ImpactEstimate(_CamelModel):
    value: float
    unit: NonEmptyStr
    explanation: NonEmptyStr


class Assumption(_CamelModel):
    assumption: NonEmptyStr
    probability: float = Field(..., ge=0.0, le=1.0)
    rationale: NonEmptyStr
    validation: NonEmptyStr


class Risk(_CamelModel):
    risk: NonEmptyStr
    severity: Level
    likelihood: Level
    mitigation: NonEmptyStr


class Alternative(_CamelModel):
    alternative: NonEmptyStr
    why_cheaper: NonEmptyStr
    tradeoff: NonEmptyStr


class ValidationStep(_CamelModel):
    experiment: NonEmptyStr
    steps: list[NonEmptyStr] = Field(..., min_length=1)
    time_cost: NonEmptyStr
    money_cost: NonEmptyStr
    success_threshold: NonEmptyStr


class AIForecastContent(_CamelModel):
    """The model-authored subset of a forecast.

    Validate with ``AIForecastContent.model_validate(raw, context={"direction": ...})``;
    without a context the impact range is checked as higher-is-better.
    """
    impact_low: ImpactEstimate
    impact_mid: ImpactEstimate
    impact_high: ImpactEstimate
    assumptions: list[Assumption] = Field(..., min_length=1)
    risks: list[Risk] = Field(..., min_length=1)
    alternatives: list[Alternative] = Field(..., min_length=1)
    validation_plan: list[ValidationStep] = Field(..., min_length=1)
    decision_memo: NonEmptyStr

    @model_validator(mode="after")
    def _impact_range_consistent(self, info: ValidationInfo) -> AIForecastContent:
        direction = (info.context or {}).get("direction", "higher_is_better")
        low, mid, high = self.impact_low, self.impact_mid, self.impact_high
        units = {e.unit.strip().lower() for e in (low, mid, high)}
        if len(units) != 1:
            raise ValueError("impactLow, impactMid and impactHigh must use the same unit")
        if direction == "lower_is_better":
            if not low.value >= mid.value >= high.value:
                raise ValueError(
                    "for a lower-is-better metric impact values must satisfy "
                    "impactLow.value >= impactMid.value >= impactHigh.value"
                )
        elif not low.value <= mid.value <= high.value:
            raise ValueError(
                "impact values must satisfy impactLow.value <= impactMid.value <= impactHigh.value"
            )
        return self


# ---------------------------------------------------------------------------
# Scores & forecasts (boundary shape is camelCase)
# ---------------------------------------------------------------------------


class ScoreBreakdownOut(_CamelModel):
    value_potential: float
    reach: float
    evidence_strength: float
    effort_penalty: float
    risk_penalty: float


class ScorePreviewOut(_CamelModel):
    feature_id: int
    roi_score: float
    confidence: Confidence
    breakdown: ScoreBreakdownOut
    evidence_signal: float
    evidence_count: int
    data_gaps: list[str] = []
    config_version: str


class ForecastSummary(_CamelModel):
    id: int
    feature_id: int
    version: int
    roi_score: float
    confidence: Confidence
    created_at: datetime


class ForecastOut(ForecastSummary):
    breakdown: ScoreBreakdownOut
    impact_low: ImpactEstimate
    impact_mid: ImpactEstimate
    impact_high: ImpactEstimate
    assumptions: list[Assumption]
    risks: list[Risk]
    alternatives: list[Alternative]
    validation_plan: list[ValidationStep]
    decision_memo: str
    impact_direction: ImpactDirection
    config_version: str = ""
    llm_model: str = ""
    attempts: int = 1
    prompt_version: str = ""


FeatureDetail.model_rebuild()
