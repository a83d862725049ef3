"""Recommendation lifecycle: status state machine and per-route review bookkeeping.

    calculating -> new -> in_progress -> done | aborted
                   new -> skipped
    any non-terminal -> old      (superseded by a newer generation)
    any non-terminal -> expired  (review window lapsed)

Status changes and count recomputation lock the recommendation row for the duration of the
transaction, so concurrent overrides of two routes can not lose an update.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from sqlalchemy import func
from sqlalchemy.orm import Session
from traffic_advisor.config import get_settings
from traffic_advisor.errors import (
    InvalidStatus,
    InvalidStatusFlow,
    RecommendationNotFound,
    RecommendationRouteNotFound,
)
from traffic_advisor.infrastructure.metrics import STATUS_TRANSITIONS
from traffic_advisor.models.tables import Recommendation, RecommendationRoute

logger = logging.getLogger(__name__)

STATUSES = ("calculating", "new", "in_progress", "done", "aborted", "skipped", "expired", "old")
TERMINAL_STATUSES = frozenset({"done", "aborted", "skipped", "expired", "old"})
ACTIVE_STATUSES = frozenset(STATUSES) - TERMINAL_STATUSES

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "calculating": frozenset({"new", "old", "expired"}),
    "new": frozenset({"in_progress", "skipped", "old", "expired"}),
    "in_progress": frozenset({"done", "aborted", "old", "expired"}),
}

ROUTE_PATCH_FIELDS = ("selected", "ttl", "cache_tag", "vary_headers")


def validate_transition(current: str, status: str):
    if status not in STATUSES or status == "calculating":
        # Recommendations only ever start in "calculating"
        raise InvalidStatus(status)
    if status == current:
        return
    if status not in ALLOWED_TRANSITIONS.get(current, frozenset()):
        raise InvalidStatusFlow(status, current)


def _locked(s: Session, recommendation_id: str) -> Recommendation:
    rec = (
        s.query(Recommendation)
        .filter(Recommendation.id == recommendation_id)
        .with_for_update()
        .first()
    )
    if rec is None:
        raise RecommendationNotFound(recommendation_id)
    return rec


def transition(rec: Recommendation, status: str):
    """Apply a validated transition to an already-locked row (caller commits)."""
    validate_transition(rec.status, status)
    if rec.status != status:
        logger.info("recommendation %s (v%s): %s -> %s", rec.id, rec.version, rec.status, status)
        rec.status = status
        STATUS_TRANSITIONS.labels(status=status).inc()


def update_status(s: Session, recommendation: Recommendation | str, status: str) -> Recommendation:
    """Move a recommendation to ``status``; illegal requests leave the stored row untouched."""
    recommendation_id = recommendation if isinstance(recommendation, str) else recommendation.id
    try:
        rec = _locked(s, recommendation_id)
        transition(rec, status)
        s.commit()
    except Exception:
        s.rollback()
        raise
    return rec


def count_selected_routes(s: Session, recommendation_id: str) -> int:
    return (
        s.query(func.count(RecommendationRoute.id))
        .filter(RecommendationRoute.recommendation_id == recommendation_id, RecommendationRoute.selected.is_(True))
        .scalar()
        or 0
    )


def update_route(s: Session, recommendation: Recommendation | str, route_id: str, patch: dict) -> RecommendationRoute:
    """Apply a reviewer override to one route and recompute ``recommendation.count``.

    ``patch`` may contain ``selected``, ``ttl``, ``cache_tag`` and ``vary_headers``; other keys
    are ignored. The count is always recomputed from the stored rows.
    """
    recommendation_id = recommendation if isinstance(recommendation, str) else recommendation.id
    try:
        rec = _locked(s, recommendation_id)
        route = s.get(RecommendationRoute, route_id)
        if route is None or route.recommendation_id != rec.id:
            raise RecommendationRouteNotFound(route_id)
        for field in ROUTE_PATCH_FIELDS:
            if field in patch and patch[field] is not None:
                setattr(route, field, list(patch[field]) if field == "vary_headers" else patch[field])
        s.flush()
        rec.count = count_selected_routes(s, rec.id)
        s.commit()
    except Exception:
        s.rollback()
        raise
    return route


# -- queries ---------------------------------------------------------------

def get_recommendation(s: Session, recommendation_id: str) -> Recommendation:
    rec = s.get(Recommendation, recommendation_id)
    if rec is None:
        raise RecommendationNotFound(recommendation_id)
    return rec


def get_recommendation_route(s: Session, route_id: str) -> RecommendationRoute:
    route = s.get(RecommendationRoute, route_id)
    if route is None:
        raise RecommendationRouteNotFound(route_id)
    return route


def list_recommendation_routes(s: Session, recommendation_id: str, application_id: str | None = None) -> list[RecommendationRoute]:
    q = s.query(RecommendationRoute).filter(RecommendationRoute.recommendation_id == recommendation_id)
    if application_id:
        q = q.filter(RecommendationRoute.application_id == application_id)
    return q.order_by(RecommendationRoute.application_id, RecommendationRoute.route).all()


def get_latest_recommendation(s: Session) -> Recommendation | None:
    return (
        s.query(Recommendation)
        .filter(Recommendation.status != "calculating")
        .order_by(Recommendation.version.desc())
        .first()
    )


def get_active_recommendation(s: Session) -> Recommendation | None:
    return (
        s.query(Recommendation)
        .filter(Recommendation.status.in_(ACTIVE_STATUSES))
        .order_by(Recommendation.version.desc())
        .first()
    )


def get_recommendation_app_ids(s: Session, recommendation_id: str) -> list[str]:
    rows = (
        s.query(RecommendationRoute.application_id)
        .filter(
            RecommendationRoute.recommendation_id == recommendation_id,
            RecommendationRoute.recommended.is_(True),
            RecommendationRoute.selected.is_(True),
        )
        .distinct()
        .all()
    )
    return sorted(r[0] for r in rows)


# -- workflow --------------------------------------------------------------

def apply_recommendation(s: Session, recommendation: Recommendation, application_id: str,
                         save_interceptor_config: bool = False, fleet=None) -> dict | None:
    """Mark the application's selected routes as applied; optionally compile and publish its config."""
    from traffic_advisor.interceptor import save_interceptor_config as _save_config

    try:
        (
            s.query(RecommendationRoute)
            .filter(
                RecommendationRoute.recommendation_id == recommendation.id,
                RecommendationRoute.application_id == application_id,
                RecommendationRoute.selected.is_(True),
            )
            .update({RecommendationRoute.applied: True}, synchronize_session="fetch")
        )
        s.commit()
    except Exception:
        s.rollback()
        raise
    if not save_interceptor_config:
        return None
    config = _save_config(s, recommendation, application_id)
    if fleet is not None:
        fleet.emit_application_config(application_id)
    return config


def expire_stale_recommendations(s: Session, now: datetime | None = None) -> int:
    """Expire ``new`` recommendations whose review window has lapsed."""
    settings = get_settings()
    cutoff = (now or datetime.utcnow()) - timedelta(hours=settings.recommendation_review_window_hours)
    stale = (
        s.query(Recommendation)
        .filter(Recommendation.status == "new", Recommendation.created_at < cutoff)
        .with_for_update()
        .all()
    )
    for rec in stale:
        transition(rec, "expired")
    s.commit()
    return len(stale)


def get_updates(s: Session) -> dict:
    settings = get_settings()
    updates = []
    rec = get_active_recommendation(s)
    if rec is not None and rec.status == "new":
        updates.append({"type": "new-recommendation", "count": rec.count})
    return {"serviceName": settings.service_name, "updates": updates}
