"""Shared fixtures: in-memory database, sample features and scripted model clients."""
from __future__ import annotations

import copy
import json
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from forge.config import GeneratorSettings
from forge.models import Base, Evidence, Feature

# ---------------------------------------------------------------------------
# Fixtures: in-memory SQLite database
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def session(session_factory):
    sess = session_factory()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture()
def feature(session) -> Feature:
    feat = Feature(
        org_id=1,
        title="Annual billing discount",
        type="monetization",
        problem="Customers churn at renewal because monthly billing feels expensive.",
        target_users="Finance admins at mid-size accounts",
        effort_days=15,
        constraints="Must work with the existing Stripe integration",
        pricing_plans_json=json.dumps(["Starter", "Growth"]),
        baseline_metrics_json=json.dumps({"arpa": 120.0, "monthly_active_accounts": 800}),
    )
    session.add(feat)
    session.commit()
    return feat


@pytest.fixture()
def feature_with_evidence(session, feature) -> Feature:
    session.add_all([
        Evidence(feature_id=feature.id, source_type="analytics",
                 content="38% of churned accounts cancelled within a week of the renewal invoice"),
        Evidence(feature_id=feature.id, source_type="sales_call",
                 content="Prospect asked twice whether an annual plan with a discount exists"),
        Evidence(feature_id=feature.id, source_type="ticket",
                 content="Can we pay yearly? Our procurement only approves annual contracts.",
                 link="https://support.example.com/t/4411"),
    ])
    session.commit()
    return feature


# ---------------------------------------------------------------------------
# Scripted model clients
# ---------------------------------------------------------------------------


def _payload(direction: str = "higher_is_better", **overrides: Any) -> dict:
    values = (800.0, 1500.0, 2600.0)
    if direction == "lower_is_better":
        values = values[::-1]
    data = {
        "impactLow": {"value": values[0], "unit": "USD MRR", "explanation": "Few accounts switch to annual."},
        "impactMid": {"value": values[1], "unit": "USD MRR", "explanation": "A third of eligible accounts switch."},
        "impactHigh": {"value": values[2], "unit": "USD MRR", "explanation": "Sales pushes annual on renewals."},
        "assumptions": [{
            "assumption": "Annual plans reduce renewal churn",
            "probability": 0.6,
            "rationale": "Churned accounts cluster around the renewal invoice",
            "validation": "Compare churn of annual vs monthly cohorts",
        }],
        "risks": [{
            "risk": "Discount cannibalizes monthly revenue",
            "severity": "medium",
            "likelihood": "medium",
            "mitigation": "Cap the discount at two months",
        }],
        "alternatives": [{
            "alternative": "Offer annual invoicing manually through sales",
            "whyCheaper": "No billing changes needed",
            "tradeoff": "Does not scale past a few dozen accounts",
        }],
        "validationPlan": [{
            "experiment": "Fake-door annual toggle",
            "steps": ["Add toggle to billing page", "Count clicks for two weeks"],
            "timeCost": "2 weeks",
            "moneyCost": "$0",
            "successThreshold": "At least 10% of visitors click the toggle",
        }],
        "decisionMemo": "## Recommendation\nBuild it after the fake-door test confirms demand.",
    }
    data.update(overrides)
    return data


@pytest.fixture()
def make_payload():
    """Factory for a schema-valid forecast payload in the camelCase wire shape."""
    return _payload


class StubClient:
    """Replays scripted responses; the last one repeats.

    A response that is an exception instance is raised instead of returned.
    """

    model = "stub-model"

    def __init__(self, *responses: Any):
        self.responses = list(responses)
        self.calls: list[tuple[str, str]] = []

    async def call(self, system: str, user: str) -> dict:
        self.calls.append((system, user))
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, BaseException):
            raise item
        return copy.deepcopy(item)


@pytest.fixture()
def stub_client():
    return StubClient


@pytest.fixture()
def fast_settings() -> GeneratorSettings:
    return GeneratorSettings(
        max_schema_attempts=3,
        max_transport_attempts=3,
        backoff_seconds=0.0,
        backoff_max_seconds=0.0,
        call_timeout_seconds=5.0,
        deadline_seconds=10.0,
    )
