from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP
from pydantic import ValidationError

from forge import services
from forge.config import DEFAULT_SCORING_CONFIG, FEATURE_TYPES, SOURCE_TYPES
from forge.db import init_db, session_scope
from forge.errors import ForgeError
from forge.schemas import EvidenceCreate, FeatureCreate

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def forge_lifespan(server: FastMCP) -> AsyncIterator[None]:
    init_db()
    yield


mcp = FastMCP(
    "Forge",
    instructions=(
        "Forge forecasts the ROI of product feature requests. "
        "Use these tools to record features and evidence, preview the deterministic score, "
        "and generate versioned forecasts. Start with list_features(), then "
        "get_feature(id), then score_feature(id) before generate_forecast_tool(id)."
    ),
    lifespan=forge_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error(exc: ForgeError) -> dict:
    return {"error": str(exc), "kind": exc.kind}


def _invalid(exc: ValidationError) -> dict:
    return {"error": "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors()),
            "kind": "invalid_input"}


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("forge://overview")
def forge_overview() -> str:
    """Overview of Forge: data model, workflow, and score semantics."""
    weights = DEFAULT_SCORING_CONFIG.weights
    return json.dumps({
        "system": "Forge: ROI forecasts for product feature requests",
        "data_model": {
            "feature": "A proposed feature with type, problem, target users, effort estimate and baseline metrics.",
            "evidence": "Customer evidence (ticket, sales call, email, analytics, other) attached to a feature.",
            "forecast": "An immutable, versioned forecast: ROI score, breakdown, impact range, "
                        "assumptions, risks, alternatives, validation plan and decision memo.",
        },
        "workflow": [
            "1. list_features() to browse, create_feature(...) to add one.",
            "2. add_evidence(feature_id, source_type, content) for each piece of evidence.",
            "3. score_feature(feature_id) to preview the deterministic score and data gaps.",
            "4. generate_forecast_tool(feature_id) to produce the next forecast version.",
            "5. list_forecasts(feature_id) / get_forecast(forecast_id) to review history.",
        ],
        "feature_types": list(FEATURE_TYPES),
        "source_types": list(SOURCE_TYPES),
        "score": {
            "range": "0-100, one decimal",
            "config_version": DEFAULT_SCORING_CONFIG.version,
            "weights": weights.model_dump(),
            "confidence": "low / medium / high, from evidence count and baseline completeness",
        },
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Features & evidence
# ---------------------------------------------------------------------------


@mcp.tool()
def list_features(org_id: int | None = None) -> list[dict]:
    """List feature requests, newest first, optionally for one organization."""
    with session_scope() as session:
        return [services.feature_summary(f) for f in services.list_features(session, org_id)]


@mcp.tool()
def get_feature(feature_id: int) -> dict:
    """Get a feature with its evidence and forecast history."""
    with session_scope() as session:
        try:
            return services.feature_detail(services.get_feature(session, feature_id))
        except ForgeError as exc:
            return _error(exc)


@mcp.tool()
def create_feature(
    org_id: int, title: str, type: str, problem: str, target_users: str, effort_days: int,
    constraints: str = "", pricing_plans: list[str] | None = None,
    baseline_metrics: dict | None = None,
) -> dict:
    """Create a feature request.

    Args:
        type: One of acquisition, activation, retention, monetization, support_cost.
        effort_days: Engineering effort estimate in days (> 0).
        baseline_metrics: Optional arpa, monthly_active_accounts, trial_to_paid (%),
                          churn_monthly (%), support_tickets_monthly.
    """
    try:
        body = FeatureCreate(
            org_id=org_id, title=title, type=type, problem=problem, target_users=target_users,
            effort_days=effort_days, constraints=constraints,
            pricing_plans=pricing_plans or [], baseline_metrics=baseline_metrics,
        )
    except ValidationError as exc:
        return _invalid(exc)
    with session_scope() as session:
        feature = services.create_feature(session, body)
        session.commit()
        return services.feature_summary(feature)


@mcp.tool()
def add_evidence(feature_id: int, source_type: str, content: str, link: str = "") -> dict:
    """Attach evidence to a feature. source_type: ticket, sales_call, email, analytics, other."""
    try:
        body = EvidenceCreate(source_type=source_type, content=content, link=link)
    except ValidationError as exc:
        return _invalid(exc)
    with session_scope() as session:
        try:
            item = services.add_evidence(session, feature_id, body)
        except ForgeError as exc:
            return _error(exc)
        session.commit()
        return services.evidence_out(item)


# ---------------------------------------------------------------------------
# Tools: Scoring & forecasts
# ---------------------------------------------------------------------------


@mcp.tool()
def score_feature(feature_id: int) -> dict:
    """Preview the deterministic ROI score, breakdown, confidence and data gaps (no model call)."""
    with session_scope() as session:
        try:
            return services.preview_score(session, feature_id)
        except ForgeError as exc:
            return _error(exc)


@mcp.tool()
async def generate_forecast_tool(feature_id: int) -> dict:
    """Generate and store the next forecast version for a feature. Requires an LLM API key."""
    with session_scope() as session:
        try:
            forecast = await services.generate_forecast(session, feature_id)
        except ForgeError as exc:
            log.warning("Forecast generation for feature %s failed: %s", feature_id, exc)
            return _error(exc)
        return services.forecast_out(forecast)


@mcp.tool()
def list_forecasts(feature_id: int) -> list[dict] | dict:
    """List forecast versions for a feature, newest first."""
    with session_scope() as session:
        try:
            return [services.forecast_summary(f) for f in services.list_forecasts(session, feature_id)]
        except ForgeError as exc:
            return _error(exc)


@mcp.tool()
def get_forecast(forecast_id: int) -> dict:
    """Get a stored forecast in full."""
    with session_scope() as session:
        forecast = services.get_forecast(session, forecast_id)
        if forecast is None:
            return {"error": f"Forecast {forecast_id} not found", "kind": "forecast_not_found"}
        return services.forecast_out(forecast)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Forge MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
