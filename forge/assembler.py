"""Merge the deterministic score and generated content into a stored forecast version."""
from __future__ import annotations

import json
from datetime import UTC, datetime

from forge.generator import GenerationResult
from forge.models import Forecast
from forge.scorer import ScoreResult
from forge.store import ForecastDraft, ForecastStore


def _dump(model) -> str:
    return json.dumps(model.model_dump(by_alias=True, mode="json"))


def _dump_list(models) -> str:
    return json.dumps([m.model_dump(by_alias=True, mode="json") for m in models])


def build_draft(
    feature_id: int,
    score: ScoreResult,
    generation: GenerationResult,
    generation_tag: str = "",
    prompt_version: str = "",
    created_at: datetime | None = None,
) -> ForecastDraft:
    """Combine both halves of a forecast; the version is left to the store."""
    content = generation.content
    return ForecastDraft(
        feature_id=feature_id,
        fields={
            "roi_score": score.roi_score,
            "confidence": score.confidence,
            "breakdown_json": json.dumps(score.breakdown.as_dict()),
            "impact_low_json": _dump(content.impact_low),
            "impact_mid_json": _dump(content.impact_mid),
            "impact_high_json": _dump(content.impact_high),
            "assumptions_json": _dump_list(content.assumptions),
            "risks_json": _dump_list(content.risks),
            "alternatives_json": _dump_list(content.alternatives),
            "validation_plan_json": _dump_list(content.validation_plan),
            "decision_memo": content.decision_memo,
            "impact_direction": score.impact_direction,
            "config_version": score.config_version,
            "llm_model": generation.model,
            "generation_tag": generation_tag,
            "prompt_version": prompt_version,
            "attempts": generation.run.schema_attempts,
            "created_at": created_at or datetime.now(UTC),
        },
    )


def assemble_forecast(
    store: ForecastStore,
    feature_id: int,
    score: ScoreResult,
    generation: GenerationResult,
    generation_tag: str = "",
    prompt_version: str = "",
) -> Forecast:
    """Persist a new forecast version and return it with id, version and timestamp set."""
    return store.append_forecast(build_draft(feature_id, score, generation, generation_tag, prompt_version))
