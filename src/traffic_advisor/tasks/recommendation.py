"""Recommendation generation pass.

One pass = one version:

1. aggregate every fingerprint recorded under the current version (all-or-nothing)
2. per application, fold the traffic into route metrics and score each route; parent routes
   are scored first so their score feeds the child's overlap penalty
3. in one transaction: insert the Recommendation in ``calculating``, supersede the previously
   active recommendation, bulk insert its routes, derive ``count`` and advance to ``new``
4. bump the version counter so new fingerprints land in the next bucket

Only one pass runs fleet-wide at a time (redis lock); a running pass can be cancelled
cooperatively and then persists nothing.
"""
from __future__ import annotations
import logging
import time
from typing import Callable
from celery import shared_task
from redis.exceptions import LockError
from sqlalchemy import func
from traffic_advisor.config import get_settings
from traffic_advisor.errors import GenerationCancelled, GenerationInProgress
from traffic_advisor.infrastructure.db import get_session
from traffic_advisor.infrastructure.metrics import (
    APPLICATIONS_SKIPPED,
    GENERATION_LATENCY,
    GENERATION_RUNS,
    ROUTES_SCORED,
)
from traffic_advisor.infrastructure.redis_store import KeySpace, get_redis
from traffic_advisor.infrastructure.retry import retrying
from traffic_advisor.ingestion import RouteTraffic, TrafficGateway
from traffic_advisor.lifecycle import ACTIVE_STATUSES, count_selected_routes, expire_stale_recommendations, transition
from traffic_advisor.models.tables import Recommendation, RecommendationRoute
from traffic_advisor.scoring import RouteMetrics, RouteScore, ScoringOptions, calculate_score, summarize_route
from traffic_advisor.services import get_gateway
from traffic_advisor.utils.routes import generate_cache_tag, get_parent_route

logger = logging.getLogger(__name__)

# (applicationId, telemetryId, route) -> scores map of the last recommendation
PreviousScores = dict[tuple[str, str, str], dict]


def _check_cancel(should_cancel: Callable[[], bool] | None):
    if should_cancel is not None and should_cancel():
        raise GenerationCancelled()


def load_previous_scores(s, version: int) -> PreviousScores:
    prior = (
        s.query(Recommendation)
        .filter(Recommendation.version < version, Recommendation.status != "calculating")
        .order_by(Recommendation.version.desc())
        .first()
    )
    if prior is None:
        return {}
    rows = s.query(RecommendationRoute).filter(RecommendationRoute.recommendation_id == prior.id).all()
    return {(r.application_id, r.telemetry_id, r.route): r.scores or {} for r in rows}


def summarize_application(application_id: str, routes: dict[str, dict]) -> dict[tuple[str, str], RouteMetrics]:
    """Route metrics keyed by (telemetryId, route); one route path may be served by several services."""
    metrics: dict[tuple[str, str], RouteMetrics] = {}
    for route, urls in routes.items():
        by_service: dict[str, dict] = {}
        for url, url_metrics in urls.items():
            by_service.setdefault(url_metrics["telemetryId"], {})[url] = url_metrics
        for telemetry_id, service_urls in by_service.items():
            m = summarize_route(route, application_id, service_urls)
            if m is not None:
                metrics[(telemetry_id, route)] = m
    return metrics


def score_application(
    application_id: str,
    routes: dict[str, dict],
    opts: ScoringOptions,
    previous: PreviousScores,
) -> list[tuple[RouteMetrics, RouteScore]]:
    metrics = summarize_application(application_id, routes)
    results: dict[tuple[str, str], RouteScore] = {}

    def _score(key: tuple[str, str]) -> RouteScore:
        if key in results:
            return results[key]
        m = metrics[key]
        parent_score, parent_requests = 0.0, 0
        parent = get_parent_route(m.route)
        parent_key = (m.telemetry_id, parent)
        if parent is not None and parent_key in metrics:
            parent_score = _score(parent_key).score
            parent_requests = metrics[parent_key].requests_count
        results[key] = calculate_score(
            m,
            opts,
            previous=previous.get((application_id, m.telemetry_id, m.route)),
            parent_score=parent_score,
            parent_requests_count=parent_requests,
        )
        return results[key]

    for key in metrics:
        _score(key)
    return [(metrics[k], results[k]) for k in metrics]


def _route_row(m: RouteMetrics, result: RouteScore, now_ms: int) -> dict:
    scores = dict(result.scores)
    history = [dict(h) for h in scores.get("scoresHistory") or []]
    if history:
        history[-1]["timestamp"] = now_ms
    scores["scoresHistory"] = history
    return {
        "application_id": m.application_id,
        "telemetry_id": m.telemetry_id,
        "service_name": m.service_name,
        "route": m.route,
        "domain": m.domain,
        "recommended": result.recommended,
        "selected": result.recommended,
        "applied": False,
        "score": result.score,
        "scores": scores,
        "ttl": result.ttl,
        "cache_tag": generate_cache_tag(m.telemetry_id, m.route),
        "vary_headers": [],
        "hits": m.hits,
        "misses": m.misses,
        "memory": m.memory,
    }


def score_traffic(traffic: RouteTraffic, opts: ScoringOptions, previous: PreviousScores,
                  should_cancel: Callable[[], bool] | None = None) -> list[dict]:
    """Score every application; an application that fails is logged and left out of the pass."""
    now_ms = int(time.time() * 1000)
    rows: list[dict] = []
    for application_id, routes in traffic.items():
        _check_cancel(should_cancel)
        try:
            scored = score_application(application_id, routes, opts, previous)
        except Exception:
            APPLICATIONS_SKIPPED.inc()
            logger.exception("skipping application %s in recommendation pass", application_id)
            continue
        rows.extend(_route_row(m, result, now_ms) for m, result in scored)
        ROUTES_SCORED.inc(len(scored))
    return rows


def persist_recommendation(version: int, rows: list[dict]) -> Recommendation:
    """Write the pass in one transaction so readers never see two active recommendations."""
    with get_session() as s:
        try:
            superseded = (
                s.query(Recommendation)
                .filter(Recommendation.status.in_(ACTIVE_STATUSES))
                .with_for_update()
                .all()
            )
            rec = Recommendation(version=version, status="calculating", count=0)
            s.add(rec)
            s.flush()
            for other in superseded:
                transition(other, "old")
            s.add_all([RecommendationRoute(recommendation_id=rec.id, **row) for row in rows])
            s.flush()
            rec.count = count_selected_routes(s, rec.id)
            transition(rec, "new")
            s.commit()
        except Exception:
            s.rollback()
            raise
    return rec


def generate_recommendation(
    gateway: TrafficGateway | None = None,
    opts: ScoringOptions | None = None,
    should_cancel: Callable[[], bool] | None = None,
) -> Recommendation:
    gateway = gateway or get_gateway()
    opts = opts or ScoringOptions.from_settings(get_settings())
    start = time.time()

    traffic_version = gateway.get_current_version()
    traffic = retrying("collect_route_traffic")(gateway.collect_route_traffic, traffic_version)

    with get_session() as s:
        latest = s.query(func.max(Recommendation.version)).scalar()
        version = traffic_version if latest is None else max(traffic_version, latest + 1)
        previous = load_previous_scores(s, version)

    rows = score_traffic(traffic, opts, previous, should_cancel)
    _check_cancel(should_cancel)

    rec = persist_recommendation(version, rows)
    gateway.set_current_version(version + 1)
    GENERATION_LATENCY.observe(time.time() - start)
    logger.info("recommendation v%s generated: %d routes, %d selected", rec.version, len(rows), rec.count)
    return rec


def request_cancel(redis_client=None):
    """Ask the running pass (if any) to stop at its next checkpoint."""
    r = redis_client or get_redis()
    r.set(KeySpace().generation_cancel(), "1", ex=get_settings().generation_lock_ttl_sec)


def run_generation(gateway: TrafficGateway | None = None, redis_client=None) -> Recommendation:
    """Run one pass under the fleet-wide generation lock."""
    settings = get_settings()
    r = redis_client or get_redis()
    keys = KeySpace()
    lock = r.lock(keys.generation_lock(), timeout=settings.generation_lock_ttl_sec)
    if not lock.acquire(blocking=False):
        GENERATION_RUNS.labels(result="locked").inc()
        raise GenerationInProgress()
    try:
        r.delete(keys.generation_cancel())
        rec = generate_recommendation(gateway, should_cancel=lambda: bool(r.exists(keys.generation_cancel())))
    except GenerationCancelled:
        GENERATION_RUNS.labels(result="cancelled").inc()
        logger.warning("recommendation generation cancelled")
        raise
    except Exception:
        GENERATION_RUNS.labels(result="failed").inc()
        raise
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("generation lock expired before the pass finished")
    GENERATION_RUNS.labels(result="success").inc()
    return rec


@shared_task
def generate_recommendations():
    try:
        rec = run_generation()
    except GenerationInProgress:
        return {"status": "locked"}
    except GenerationCancelled:
        return {"status": "cancelled"}
    return {"status": "ok", "recommendation_id": rec.id, "version": rec.version, "count": rec.count}


@shared_task
def expire_recommendations():
    with get_session() as s:
        expired = expire_stale_recommendations(s)
    return {"status": "ok", "expired": expired}
