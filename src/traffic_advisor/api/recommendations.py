from __future__ import annotations
import logging
from fastapi import APIRouter, Body, Depends, Query, Response
from sqlalchemy.orm import Session
from traffic_advisor import lifecycle
from traffic_advisor.connectors.base import FleetDirectory
from traffic_advisor.errors import NoRecommendationToApply
from traffic_advisor.infrastructure.db import get_db
from traffic_advisor.ingestion import TrafficGateway
from traffic_advisor.interceptor import get_interceptor_config, save_interceptor_config
from traffic_advisor.models.tables import Recommendation, RecommendationRoute
from traffic_advisor.services import get_fleet, get_gateway
from traffic_advisor.tasks.recommendation import request_cancel, run_generation
from traffic_advisor.validation.requests import RecommendationRoutePatch, RecommendationStatusIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recommendations", tags=["recommendations"])


def recommendation_out(rec: Recommendation) -> dict:
    return {
        "id": rec.id,
        "version": rec.version,
        "count": rec.count,
        "status": rec.status,
        "createdAt": rec.created_at.isoformat() if rec.created_at else None,
        "updatedAt": rec.updated_at.isoformat() if rec.updated_at else None,
    }


def route_out(route: RecommendationRoute) -> dict:
    return {
        "id": route.id,
        "recommendationId": route.recommendation_id,
        "applicationId": route.application_id,
        "telemetryId": route.telemetry_id,
        "serviceName": route.service_name,
        "route": route.route,
        "domain": route.domain,
        "recommended": route.recommended,
        "selected": route.selected,
        "applied": route.applied,
        "score": route.score,
        "scores": route.scores,
        "ttl": route.ttl,
        "cacheTag": route.cache_tag,
        "varyHeaders": route.vary_headers or [],
        "hits": route.hits,
        "misses": route.misses,
        "memory": route.memory,
    }


@router.post("")
def generate(gateway: TrafficGateway = Depends(get_gateway)):
    rec = run_generation(gateway)
    return recommendation_out(rec)


@router.post("/cancel", status_code=202)
def cancel_generation():
    request_cancel()
    return {"status": "cancel_requested"}


@router.post("/apply", status_code=204)
def apply(
    application_id: str = Query(..., alias="applicationId"),
    save_config: bool = Query(False, alias="saveInterceptorConfig"),
    db: Session = Depends(get_db),
    fleet: FleetDirectory = Depends(get_fleet),
):
    rec = lifecycle.get_latest_recommendation(db)
    if rec is None:
        raise NoRecommendationToApply()
    lifecycle.apply_recommendation(db, rec, application_id, save_interceptor_config=save_config, fleet=fleet)
    return Response(status_code=204)


@router.get("/{recommendation_id}")
def get_recommendation(recommendation_id: str, db: Session = Depends(get_db)):
    return recommendation_out(lifecycle.get_recommendation(db, recommendation_id))


@router.get("/{recommendation_id}/routes")
def get_recommendation_routes(
    recommendation_id: str,
    application_id: str | None = Query(None, alias="applicationId"),
    db: Session = Depends(get_db),
):
    lifecycle.get_recommendation(db, recommendation_id)
    return [route_out(r) for r in lifecycle.list_recommendation_routes(db, recommendation_id, application_id)]


@router.get("/{recommendation_id}/applications")
def get_recommendation_applications(recommendation_id: str, db: Session = Depends(get_db)):
    lifecycle.get_recommendation(db, recommendation_id)
    return {"applicationIds": lifecycle.get_recommendation_app_ids(db, recommendation_id)}


@router.patch("/{recommendation_id}")
def update_status(recommendation_id: str, payload: RecommendationStatusIn = Body(...), db: Session = Depends(get_db)):
    rec = lifecycle.update_status(db, recommendation_id, payload.status)
    return recommendation_out(rec)


@router.patch("/{recommendation_id}/routes/{route_id}")
def update_route(
    recommendation_id: str,
    route_id: str,
    payload: RecommendationRoutePatch = Body(...),
    db: Session = Depends(get_db),
):
    route = lifecycle.update_route(db, recommendation_id, route_id, payload.model_dump(exclude_unset=True))
    return route_out(route)


@router.get("/{recommendation_id}/interceptor-configs/{application_id}")
def fetch_interceptor_config(recommendation_id: str, application_id: str, db: Session = Depends(get_db)):
    rec = lifecycle.get_recommendation(db, recommendation_id)
    return get_interceptor_config(db, rec, application_id)


@router.post("/{recommendation_id}/interceptor-configs/{application_id}")
def compile_interceptor_config(recommendation_id: str, application_id: str, db: Session = Depends(get_db)):
    rec = lifecycle.get_recommendation(db, recommendation_id)
    return save_interceptor_config(db, rec, application_id)
