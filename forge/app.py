from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from forge import services
from forge.config import GeneratorSettings
from forge.db import get_session, init_db
from forge.errors import (
    FeatureNotFoundError,
    ForgeError,
    GenerationSchemaError,
    GenerationUnavailableError,
    InvalidFeatureStateError,
    VersionConflictError,
)
from forge.schemas import (
    EvidenceCreate,
    EvidenceOut,
    FeatureCreate,
    FeatureDetail,
    FeatureOut,
    ForecastOut,
    ForecastSummary,
    ScorePreviewOut,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    yield


app = FastAPI(
    title="Forge",
    version="0.1.0",
    description=(
        "ROI forecasting API for product features. "
        "Collect evidence, inspect the transparent score, and generate versioned forecasts. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Features", "description": "Create and browse feature requests."},
        {"name": "Evidence", "description": "Attach customer evidence to a feature."},
        {"name": "Scoring", "description": "Deterministic ROI score preview (no model call)."},
        {"name": "Forecasts", "description": "LLM-assisted forecasts. Requires an LLM API key."},
    ],
)


# ---------------------------------------------------------------------------
# Dependencies & Helpers
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def llm_client() -> Any | None:
    """Model client override hook; ``None`` lets services build one after the feature lookup."""
    return None


def generator_settings() -> GeneratorSettings:
    return GeneratorSettings.from_env()


_ERROR_STATUS: list[tuple[type[ForgeError], int]] = [
    (FeatureNotFoundError, 404),
    (InvalidFeatureStateError, 422),
    (VersionConflictError, 409),
    (GenerationSchemaError, 502),
    (GenerationUnavailableError, 503),
]


@app.exception_handler(ForgeError)
async def forge_error_handler(request: Request, exc: ForgeError) -> JSONResponse:
    status = next((code for cls, code in _ERROR_STATUS if isinstance(exc, cls)), 500)
    if status >= 500:
        log.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": str(exc), "error": exc.kind}, status_code=status)


# ---------------------------------------------------------------------------
# Routes: Features
# ---------------------------------------------------------------------------


@app.post("/api/features", response_model=FeatureOut, status_code=201,
          tags=["Features"], summary="Create a feature request")
async def create_feature(body: FeatureCreate, session: Session = Depends(db_session)):
    feature = services.create_feature(session, body)
    session.commit()
    return services.feature_summary(feature)


@app.get("/api/features", response_model=list[FeatureOut],
         tags=["Features"], summary="List features, newest first")
async def list_features(
    org_id: int | None = Query(None, description="Only features owned by this organization"),
    session: Session = Depends(db_session),
):
    return [services.feature_summary(f) for f in services.list_features(session, org_id)]


@app.get("/api/features/{feature_id}", response_model=FeatureDetail,
         tags=["Features"], summary="Get a feature with its evidence and forecast history")
async def get_feature(feature_id: int, session: Session = Depends(db_session)):
    return services.feature_detail(services.get_feature(session, feature_id))


# ---------------------------------------------------------------------------
# Routes: Evidence
# ---------------------------------------------------------------------------


@app.get("/api/features/{feature_id}/evidence", response_model=list[EvidenceOut],
         tags=["Evidence"], summary="List evidence attached to a feature")
async def list_evidence(feature_id: int, session: Session = Depends(db_session)):
    feature = services.get_feature(session, feature_id)
    return [services.evidence_out(e) for e in sorted(feature.evidence, key=lambda e: e.id)]


@app.post("/api/features/{feature_id}/evidence", response_model=EvidenceOut, status_code=201,
          tags=["Evidence"], summary="Attach a piece of evidence to a feature")
async def add_evidence(feature_id: int, body: EvidenceCreate, session: Session = Depends(db_session)):
    item = services.add_evidence(session, feature_id, body)
    session.commit()
    return services.evidence_out(item)


@app.delete("/api/evidence/{evidence_id}", tags=["Evidence"], summary="Delete a piece of evidence")
async def delete_evidence(evidence_id: int, session: Session = Depends(db_session)):
    if not services.delete_evidence(session, evidence_id):
        raise HTTPException(404, "Evidence not found")
    session.commit()
    return {"ok": True}


# ---------------------------------------------------------------------------
# Routes: Scoring & Forecasts
# ---------------------------------------------------------------------------


@app.get("/api/features/{feature_id}/score", response_model=ScorePreviewOut,
         tags=["Scoring"], summary="Preview the deterministic ROI score without calling the model")
async def preview_score(feature_id: int, session: Session = Depends(db_session)):
    return services.preview_score(session, feature_id)


@app.post("/api/features/{feature_id}/forecasts", response_model=ForecastOut, status_code=201,
          tags=["Forecasts"], summary="Generate and store the next forecast version")
async def generate_forecast(
    feature_id: int,
    session: Session = Depends(db_session),
    client: Any = Depends(llm_client),
    settings: GeneratorSettings = Depends(generator_settings),
):
    forecast = await services.generate_forecast(session, feature_id, client=client, settings=settings)
    return services.forecast_out(forecast)


@app.get("/api/features/{feature_id}/forecasts", response_model=list[ForecastSummary],
         tags=["Forecasts"], summary="List forecast versions for a feature, newest first")
async def list_forecasts(feature_id: int, session: Session = Depends(db_session)):
    return [services.forecast_summary(f) for f in services.list_forecasts(session, feature_id)]


@app.get("/api/forecasts/{forecast_id}", response_model=ForecastOut,
         tags=["Forecasts"], summary="Get a stored forecast")
async def get_forecast(forecast_id: int, session: Session = Depends(db_session)):
    forecast = services.get_forecast(session, forecast_id)
    if forecast is None:
        raise HTTPException(404, "Forecast not found")
    return services.forecast_out(forecast)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


def main():
    import uvicorn
    uvicorn.run("forge.app:app", host="127.0.0.1", port=8001, reload=True)


if __name__ == "__main__":
    main()
