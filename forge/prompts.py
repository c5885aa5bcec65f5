"""Forecast prompt construction.

``build_request`` turns a feature, its evidence, baseline metrics and score
into a :class:`GenerationRequest`.  The system and user texts are a pure
function of those inputs: evidence is sorted by content, numbers are
formatted canonically, and the only per-call value (``generation_tag``)
lives outside the prompt text.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from forge.scorer import ScoreResult, baseline_values
from forge.utils import json_parse

PROMPT_VERSION = "forecast-v1"

_DIRECTION_TEXT = {
    "higher_is_better": (
        "HIGHER values of this metric are better. impactLow is the pessimistic "
        "outcome, so impactLow.value <= impactMid.value <= impactHigh.value."
    ),
    "lower_is_better": (
        "LOWER values of this metric are better (a cost). impactLow is the pessimistic "
        "outcome, so impactLow.value >= impactMid.value >= impactHigh.value."
    ),
}

FORECAST_SYSTEM_PROMPT = """\
You are a product strategist producing an ROI forecast for a proposed SaaS \
product feature. You receive a dossier with the feature description, its \
baseline business metrics, attached customer evidence, and a deterministic ROI \
score that has ALREADY been computed. Do not recompute or contradict the score; \
explain the opportunity around it.

Be concrete and quantitative. Tie impact numbers to the baseline metrics when \
they are given and state the assumption when they are not. Prefer cheap \
experiments that could falsify the riskiest assumption.

Respond with ONLY valid JSON, no prose, matching exactly this shape:
{
  "impactLow":  {"value": <number>, "unit": "<unit>", "explanation": "<why>"},
  "impactMid":  {"value": <number>, "unit": "<same unit>", "explanation": "<why>"},
  "impactHigh": {"value": <number>, "unit": "<same unit>", "explanation": "<why>"},
  "assumptions": [
    {"assumption": "<statement>", "probability": <number 0.0-1.0>,
     "rationale": "<why>", "validation": "<how to check it>"}
  ],
  "risks": [
    {"risk": "<statement>", "severity": "<low|medium|high>",
     "likelihood": "<low|medium|high>", "mitigation": "<how>"}
  ],
  "alternatives": [
    {"alternative": "<cheaper option>", "whyCheaper": "<why>", "tradeoff": "<what is lost>"}
  ],
  "validationPlan": [
    {"experiment": "<name>", "steps": ["<step 1>", "<step 2>"],
     "timeCost": "<e.g. 1 week>", "moneyCost": "<e.g. $500>",
     "successThreshold": "<measurable criterion>"}
  ],
  "decisionMemo": "<markdown memo: recommendation, reasoning, next step>"
}

Rules:
- All three impact estimates use the same unit.
- Every list has at least one entry; every string is non-empty.
- probability is a decimal between 0 and 1 (0.7, not 70).
- severity and likelihood are exactly one of: low, medium, high.
"""


@dataclass(frozen=True)
class GenerationRequest:
    feature_id: int
    system: str
    user: str
    direction: str
    prompt_version: str = PROMPT_VERSION
    generation_tag: str = ""


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(round(value, 4))
    return str(value)


def _evidence_key(item: Any) -> tuple[str, str, str]:
    return (getattr(item, "source_type", ""), getattr(item, "content", ""), getattr(item, "link", "") or "")


_BASELINE_LABELS: list[tuple[str, str, str]] = [
    ("ARPA", "arpa", " per month"),
    ("MONTHLY ACTIVE ACCOUNTS", "monthly_active_accounts", ""),
    ("TRIAL TO PAID", "trial_to_paid", "%"),
    ("MONTHLY CHURN", "churn_monthly", "%"),
    ("MONTHLY SUPPORT TICKETS", "support_tickets_monthly", ""),
]

_FEATURE_FIELDS: list[tuple[str, str]] = [
    ("TYPE", "type"),
    ("EFFORT (DAYS)", "effort_days"),
    ("PROBLEM", "problem"),
    ("TARGET USERS", "target_users"),
    ("CONSTRAINTS", "constraints"),
]


def build_dossier(feature: Any, evidence: Iterable[Any], baseline: Any, score: ScoreResult) -> str:
    """Render the user message for the forecast model call."""
    sections: list[str] = [f"FEATURE: {feature.title}"]
    for label, attr in _FEATURE_FIELDS:
        val = getattr(feature, attr, None)
        if val:
            sections.append(f"{label}: {_fmt(val)}")
    plans = json_parse(getattr(feature, "pricing_plans_json", None), [])
    if plans:
        sections.append(f"PRICING PLANS: {', '.join(str(p) for p in plans)}")
    sections.append(f"IMPACT DIRECTION: {_DIRECTION_TEXT[score.impact_direction]}")

    metrics = baseline_values(baseline)
    sections.append("\n--- BASELINE METRICS ---")
    if metrics:
        for label, key, suffix in _BASELINE_LABELS:
            if key in metrics:
                sections.append(f"{label}: {_fmt(metrics[key])}{suffix}")
    else:
        sections.append("None provided.")

    b = score.breakdown
    sections.append(f"\n--- DETERMINISTIC SCORE (config {score.config_version}) ---")
    sections.append(f"ROI SCORE: {_fmt(score.roi_score)} / 100")
    sections.append(f"CONFIDENCE: {score.confidence}")
    sections.append(f"VALUE POTENTIAL: {_fmt(b.value_potential)} / 100")
    sections.append(f"REACH: {_fmt(b.reach)} / 100")
    sections.append(f"EVIDENCE STRENGTH: {_fmt(b.evidence_strength)} / 100")
    sections.append(f"EFFORT PENALTY: {_fmt(b.effort_penalty)} / 100")
    sections.append(f"RISK PENALTY: {_fmt(b.risk_penalty)} / 100")
    for gap in score.data_gaps:
        sections.append(f"DATA GAP: {gap}")

    items = sorted(evidence, key=_evidence_key)
    sections.append(f"\n--- EVIDENCE ({len(items)} items) ---")
    if not items:
        sections.append("No evidence attached.")
    for idx, item in enumerate(items, start=1):
        line = f"[{idx}] {item.source_type.upper()}: {item.content.strip()}"
        if getattr(item, "link", ""):
            line += f" ({item.link})"
        sections.append(line)

    return "\n".join(sections)


def build_request(
    feature: Any,
    evidence: Iterable[Any],
    baseline: Any,
    score: ScoreResult,
    generation_tag: str | None = None,
) -> GenerationRequest:
    return GenerationRequest(
        feature_id=feature.id,
        system=FORECAST_SYSTEM_PROMPT,
        user=build_dossier(feature, evidence, baseline, score),
        direction=score.impact_direction,
        generation_tag=generation_tag or uuid.uuid4().hex,
    )


def correction_instruction(attempt: int, errors: list[str], direction: str) -> str:
    """Extra instruction appended for retry ``attempt`` (2, 3, ...) after schema violations.

    Grows more explicit with each attempt; never includes the rejected output.
    """
    lines = [
        "",
        f"--- CORRECTION (attempt {attempt}) ---",
        "Your previous response was rejected because it did not match the required JSON schema:",
    ]
    lines.extend(f"- {e}" for e in errors[:10])
    lines.append("Respond again from scratch with ONLY the JSON object.")
    if attempt >= 3:
        lines.extend([
            "Checklist before answering:",
            "- Top-level keys exactly: impactLow, impactMid, impactHigh, assumptions, risks, "
            "alternatives, validationPlan, decisionMemo.",
            "- Every probability is a number between 0 and 1 inclusive.",
            "- severity and likelihood are exactly low, medium or high.",
            f"- {_DIRECTION_TEXT[direction]}",
            "- No markdown fences, comments or trailing text around the JSON.",
        ])
    return "\n".join(lines)
