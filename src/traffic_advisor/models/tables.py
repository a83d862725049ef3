from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, JSON, ForeignKey, Float, Boolean, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship
from traffic_advisor.infrastructure.db import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Recommendation(Base):
    """One versioned recomputation pass.

    status: calculating|new|in_progress|done|aborted|skipped|expired|old
    count: number of selected routes across all applications (derived, see lifecycle).
    """
    __tablename__ = "recommendations"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    version: Mapped[int] = mapped_column(Integer, unique=True, index=True)
    count: Mapped[int] = mapped_column(Integer, default=0)
    status: Mapped[str] = mapped_column(String(16), default="calculating", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    routes: Mapped[list[RecommendationRoute]] = relationship("RecommendationRoute", back_populates="recommendation")


class RecommendationRoute(Base):
    __tablename__ = "recommendations_routes"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    recommendation_id: Mapped[str] = mapped_column(String(36), ForeignKey("recommendations.id"), index=True)
    application_id: Mapped[str] = mapped_column(String(64), index=True)
    telemetry_id: Mapped[str] = mapped_column(String(256), index=True)
    service_name: Mapped[str | None] = mapped_column(String(128), default=None)
    route: Mapped[str] = mapped_column(String(1024))
    domain: Mapped[str] = mapped_column(String(256))
    recommended: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    selected: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    applied: Mapped[bool] = mapped_column(Boolean, default=False)
    score: Mapped[float] = mapped_column(Float, default=0.0)
    scores: Mapped[dict] = mapped_column(JSON, default=dict)
    ttl: Mapped[int] = mapped_column(Integer, default=0)
    cache_tag: Mapped[str | None] = mapped_column(String(1024), default=None)
    vary_headers: Mapped[list] = mapped_column(JSON, default=list)
    hits: Mapped[int] = mapped_column(Integer, default=0)
    misses: Mapped[int] = mapped_column(Integer, default=0)
    memory: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    recommendation: Mapped[Recommendation] = relationship("Recommendation", back_populates="routes")

    __table_args__ = (
        Index("ix_rec_route_app_selected", "recommendation_id", "application_id", "recommended", "selected"),
    )


class RouteExample(Base):
    """Representative request/response pair; at most one per (application, telemetry id, route)."""
    __tablename__ = "route_examples"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    application_id: Mapped[str] = mapped_column(String(64), index=True)
    telemetry_id: Mapped[str] = mapped_column(String(256), index=True)
    route: Mapped[str] = mapped_column(String(1024))
    request: Mapped[dict] = mapped_column(JSON)
    response: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ux_route_example_key", "application_id", "telemetry_id", "route", unique=True),
    )


class InterceptorConfig(Base):
    """Compiled cache rule set, one row per (recommendation, application)."""
    __tablename__ = "interceptor_configs"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    recommendation_id: Mapped[str] = mapped_column(String(36), ForeignKey("recommendations.id"), index=True)
    application_id: Mapped[str] = mapped_column(String(64), index=True)
    applied: Mapped[bool] = mapped_column(Boolean, default=False)
    config: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ux_interceptor_config_rec_app", "recommendation_id", "application_id", unique=True),
    )
