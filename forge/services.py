"""Shared business logic for the Forge API and MCP server."""
from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from forge.assembler import assemble_forecast
from forge.config import DEFAULT_SCORING_CONFIG, GeneratorSettings, ScoringConfig
from forge.errors import FeatureNotFoundError, GenerationUnavailableError
from forge.evidence import EvidenceSignal, aggregate_evidence
from forge.generator import AIForecastGenerator
from forge.llm import LLMClient
from forge.models import Evidence, Feature, Forecast
from forge.prompts import build_request
from forge.schemas import BaselineMetrics, EvidenceCreate, FeatureCreate, ForecastOut, ScorePreviewOut
from forge.scorer import ScoreResult, compute_score
from forge.store import SqlForecastStore
from forge.utils import AsyncKeyedLocks, isoformat, json_parse

log = logging.getLogger(__name__)

# One generation per feature at a time; version assignment is additionally atomic in the store.
_in_flight = AsyncKeyedLocks()

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def feature_baseline(feature: Feature) -> BaselineMetrics | None:
    data = json_parse(feature.baseline_metrics_json, {})
    return BaselineMetrics.model_validate(data) if data else None


def evidence_out(e: Evidence) -> dict:
    return {
        "id": e.id, "feature_id": e.feature_id, "source_type": e.source_type,
        "content": e.content, "link": e.link or "", "created_at": isoformat(e.created_at),
    }


def forecast_summary(f: Forecast) -> dict:
    return {
        "id": f.id, "featureId": f.feature_id, "version": f.version,
        "roiScore": f.roi_score, "confidence": f.confidence,
        "createdAt": isoformat(f.created_at),
    }


def forecast_out(f: Forecast) -> dict:
    """Full forecast in the camelCase boundary shape."""
    record = ForecastOut.model_validate({
        "id": f.id, "feature_id": f.feature_id, "version": f.version,
        "roi_score": f.roi_score, "confidence": f.confidence, "created_at": f.created_at,
        "breakdown": json_parse(f.breakdown_json),
        "impact_low": json_parse(f.impact_low_json),
        "impact_mid": json_parse(f.impact_mid_json),
        "impact_high": json_parse(f.impact_high_json),
        "assumptions": json_parse(f.assumptions_json, []),
        "risks": json_parse(f.risks_json, []),
        "alternatives": json_parse(f.alternatives_json, []),
        "validation_plan": json_parse(f.validation_plan_json, []),
        "decision_memo": f.decision_memo,
        "impact_direction": f.impact_direction,
        "config_version": f.config_version,
        "llm_model": f.llm_model,
        "attempts": f.attempts,
        "prompt_version": f.prompt_version,
    })
    return record.model_dump(by_alias=True, mode="json")


def feature_summary(feature: Feature) -> dict:
    baseline = feature_baseline(feature)
    latest = max(feature.forecasts, key=lambda f: f.version, default=None)
    return {
        "id": feature.id, "org_id": feature.org_id, "title": feature.title,
        "type": feature.type, "problem": feature.problem,
        "target_users": feature.target_users, "effort_days": feature.effort_days,
        "constraints": feature.constraints or "",
        "pricing_plans": json_parse(feature.pricing_plans_json, []),
        "baseline_metrics": baseline.model_dump(exclude_none=True) if baseline else None,
        "created_at": isoformat(feature.created_at),
        "evidence_count": len(feature.evidence),
        "forecast_count": len(feature.forecasts),
        "latest_roi_score": latest.roi_score if latest else None,
        "latest_confidence": latest.confidence if latest else None,
    }


def feature_detail(feature: Feature) -> dict:
    base = feature_summary(feature)
    base["evidence"] = [evidence_out(e) for e in sorted(feature.evidence, key=lambda e: e.id)]
    base["forecasts"] = [
        forecast_summary(f) for f in sorted(feature.forecasts, key=lambda f: f.version, reverse=True)
    ]
    return base


# ---------------------------------------------------------------------------
# Features & evidence (caller must commit)
# ---------------------------------------------------------------------------


def get_feature(session: Session, feature_id: int) -> Feature:
    feature = session.get(Feature, feature_id)
    if feature is None:
        raise FeatureNotFoundError(feature_id)
    return feature


def create_feature(session: Session, body: FeatureCreate) -> Feature:
    baseline = body.baseline_metrics.present() if body.baseline_metrics else {}
    feature = Feature(
        org_id=body.org_id, title=body.title, type=body.type, problem=body.problem,
        target_users=body.target_users, effort_days=body.effort_days,
        constraints=body.constraints.strip(),
        pricing_plans_json=json.dumps([p.strip() for p in body.pricing_plans if p.strip()]),
        baseline_metrics_json=json.dumps(baseline),
    )
    session.add(feature)
    session.flush()
    return feature


def list_features(session: Session, org_id: int | None = None) -> list[Feature]:
    query = select(Feature).order_by(Feature.created_at.desc(), Feature.id.desc())
    if org_id is not None:
        query = query.where(Feature.org_id == org_id)
    return list(session.execute(query).scalars().all())


def add_evidence(session: Session, feature_id: int, body: EvidenceCreate) -> Evidence:
    get_feature(session, feature_id)
    item = Evidence(feature_id=feature_id, source_type=body.source_type, content=body.content, link=body.link)
    session.add(item)
    session.flush()
    return item


def delete_evidence(session: Session, evidence_id: int) -> bool:
    item = session.get(Evidence, evidence_id)
    if item is None:
        return False
    session.delete(item)
    return True


def list_forecasts(session: Session, feature_id: int) -> list[Forecast]:
    get_feature(session, feature_id)
    return SqlForecastStore(session).list_forecasts(feature_id)


def get_forecast(session: Session, forecast_id: int) -> Forecast | None:
    return SqlForecastStore(session).get_forecast(forecast_id)


# ---------------------------------------------------------------------------
# Scoring & generation
# ---------------------------------------------------------------------------


def score_feature(
    store: SqlForecastStore, feature: Feature, config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> tuple[list[Evidence], EvidenceSignal, ScoreResult]:
    evidence = store.list_evidence(feature.id)
    signal = aggregate_evidence(evidence, config)
    return evidence, signal, compute_score(feature, feature_baseline(feature), signal, config)


def preview_score(
    session: Session, feature_id: int, config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> dict:
    """Deterministic score for a feature without calling the model."""
    store = SqlForecastStore(session)
    feature = get_feature(session, feature_id)
    _, signal, score = score_feature(store, feature, config)
    return ScorePreviewOut(
        feature_id=feature_id,
        roi_score=score.roi_score,
        confidence=score.confidence,
        breakdown=score.breakdown.as_dict(),
        evidence_signal=round(signal.strength, 4),
        evidence_count=signal.count,
        data_gaps=list(score.data_gaps),
        config_version=score.config_version,
    ).model_dump(by_alias=True)


def _default_client() -> LLMClient:
    """Build the env-configured model client, reporting setup failures as unavailability."""
    try:
        return LLMClient()
    except Exception as exc:
        raise GenerationUnavailableError(f"Model client unavailable: {exc}") from exc


async def generate_forecast(
    session: Session,
    feature_id: int,
    client: Any | None = None,
    settings: GeneratorSettings | None = None,
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
    generation_tag: str | None = None,
) -> Forecast:
    """Generate, validate and store the next forecast version for a feature.

    Raises:
        FeatureNotFoundError: no such feature.
        InvalidFeatureStateError: the feature cannot be scored.
        GenerationSchemaError / GenerationUnavailableError: generation failed;
            nothing is stored.
    """
    store = SqlForecastStore(session)
    feature = get_feature(session, feature_id)
    if client is None:
        client = _default_client()
    async with _in_flight.hold(feature_id):
        evidence, signal, score = score_feature(store, feature, config)
        request = build_request(feature, evidence, feature_baseline(feature), score, generation_tag)
        log.info(
            "Generating forecast for feature %s (score=%.1f, confidence=%s, evidence=%d, prompt=%s, tag=%s)",
            feature_id, score.roi_score, score.confidence, signal.count,
            request.prompt_version, request.generation_tag,
        )
        generator = AIForecastGenerator(client, settings)
        generation = await generator.generate(request)
        return assemble_forecast(
            store, feature_id, score, generation, request.generation_tag, request.prompt_version,
        )
