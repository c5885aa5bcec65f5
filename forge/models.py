from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Feature(Base):
    __tablename__ = "features"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    org_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)  # acquisition | activation | retention | monetization | support_cost
    problem: Mapped[str] = mapped_column(Text, nullable=False)
    target_users: Mapped[str] = mapped_column(Text, nullable=False)
    effort_days: Mapped[int] = mapped_column(Integer, nullable=False)
    constraints: Mapped[str] = mapped_column(Text, default="")
    pricing_plans_json: Mapped[str] = mapped_column(Text, default="[]")
    baseline_metrics_json: Mapped[str] = mapped_column(Text, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    evidence: Mapped[list[Evidence]] = relationship("Evidence", back_populates="feature", cascade="all, delete-orphan")
    forecasts: Mapped[list[Forecast]] = relationship("Forecast", back_populates="feature", cascade="all, delete-orphan")


class Evidence(Base):
    __tablename__ = "evidence"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature_id: Mapped[int] = mapped_column(Integer, ForeignKey("features.id"), nullable=False, index=True)
    source_type: Mapped[str] = mapped_column(String(30), nullable=False)  # ticket | sales_call | email | analytics | other
    content: Mapped[str] = mapped_column(Text, nullable=False)
    link: Mapped[str] = mapped_column(String(1000), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    feature: Mapped[Feature] = relationship("Feature", back_populates="evidence")


class Forecast(Base):
    """One immutable forecast version; new generations append rows, never update them."""
    __tablename__ = "forecasts"
    __table_args__ = (UniqueConstraint("feature_id", "version", name="uq_forecast_feature_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature_id: Mapped[int] = mapped_column(Integer, ForeignKey("features.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    roi_score: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[str] = mapped_column(String(10), nullable=False)  # low | medium | high
    breakdown_json: Mapped[str] = mapped_column(Text, default="{}")
    impact_low_json: Mapped[str] = mapped_column(Text, default="{}")
    impact_mid_json: Mapped[str] = mapped_column(Text, default="{}")
    impact_high_json: Mapped[str] = mapped_column(Text, default="{}")
    assumptions_json: Mapped[str] = mapped_column(Text, default="[]")
    risks_json: Mapped[str] = mapped_column(Text, default="[]")
    alternatives_json: Mapped[str] = mapped_column(Text, default="[]")
    validation_plan_json: Mapped[str] = mapped_column(Text, default="[]")
    decision_memo: Mapped[str] = mapped_column(Text, default="")
    impact_direction: Mapped[str] = mapped_column(String(30), default="higher_is_better")
    config_version: Mapped[str] = mapped_column(String(50), default="")
    llm_model: Mapped[str] = mapped_column(String(100), default="")
    generation_tag: Mapped[str] = mapped_column(String(64), default="")
    prompt_version: Mapped[str] = mapped_column(String(50), default="")
    attempts: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    feature: Mapped[Feature] = relationship("Feature", back_populates="forecasts")
