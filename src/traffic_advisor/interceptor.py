"""Interceptor config compiler.

Turns the recommended-and-selected routes of one application into cache rules, merged on top
of the application's previously compiled config:

    rule = {"routeToMatch": "http://" + domain + route,
            "headers": {"cache-control": "public, max-age=<ttl>", "vary": "<h1>,<h2>"},
            "cacheTags": {"fgh": <cache tag expression>}}

Rules are keyed by ``routeToMatch``: a new rule replaces a prior one with the same key, prior
rules not touched by the new recommendation survive. The result is upserted once per
(recommendation, application).
"""
from __future__ import annotations
import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from traffic_advisor.infrastructure.metrics import CONFIGS_COMPILED
from traffic_advisor.models.tables import InterceptorConfig, Recommendation, RecommendationRoute

logger = logging.getLogger(__name__)


def generate_interceptor_rule(route: RecommendationRoute) -> dict:
    headers = {"cache-control": f"public, max-age={route.ttl}"}
    if route.vary_headers:
        headers["vary"] = ",".join(route.vary_headers)
    rule: dict = {"routeToMatch": f"http://{route.domain}{route.route}", "headers": headers}
    if route.cache_tag:
        rule["cacheTags"] = {"fgh": route.cache_tag}
    return rule


def get_previous_interceptor_config(s: Session, recommendation: Recommendation, application_id: str) -> InterceptorConfig | None:
    """Most recently compiled config of ``application_id`` from any older recommendation."""
    return (
        s.query(InterceptorConfig)
        .join(Recommendation, InterceptorConfig.recommendation_id == Recommendation.id)
        .filter(
            InterceptorConfig.application_id == application_id,
            Recommendation.version < recommendation.version,
        )
        .order_by(Recommendation.version.desc(), InterceptorConfig.updated_at.desc())
        .first()
    )


def merge_rules(previous: list[dict], current: list[dict]) -> list[dict]:
    merged = {rule["routeToMatch"]: rule for rule in previous}
    for rule in current:
        merged[rule["routeToMatch"]] = rule
    return list(merged.values())


def generate_interceptor_config(s: Session, recommendation: Recommendation, application_id: str) -> dict:
    routes = (
        s.query(RecommendationRoute)
        .filter(
            RecommendationRoute.recommendation_id == recommendation.id,
            RecommendationRoute.application_id == application_id,
            RecommendationRoute.recommended.is_(True),
            RecommendationRoute.selected.is_(True),
        )
        .order_by(RecommendationRoute.domain, RecommendationRoute.route)
        .all()
    )
    rules = [generate_interceptor_rule(r) for r in routes]
    previous = get_previous_interceptor_config(s, recommendation, application_id)
    if previous is not None:
        rules = merge_rules((previous.config or {}).get("rules") or [], rules)
    return {"rules": rules}


def _upsert(s: Session, recommendation: Recommendation, application_id: str, config: dict, applied: bool) -> InterceptorConfig:
    row = (
        s.query(InterceptorConfig)
        .filter(
            InterceptorConfig.recommendation_id == recommendation.id,
            InterceptorConfig.application_id == application_id,
        )
        .first()
    )
    if row is None:
        row = InterceptorConfig(recommendation_id=recommendation.id, application_id=application_id)
        s.add(row)
    row.config = config
    row.applied = applied
    s.commit()
    return row


def save_interceptor_config(s: Session, recommendation: Recommendation, application_id: str, applied: bool = True) -> dict:
    """Compile and persist the config for one application; a failure writes nothing."""
    try:
        config = generate_interceptor_config(s, recommendation, application_id)
        try:
            _upsert(s, recommendation, application_id, config, applied)
        except IntegrityError:
            # A concurrent compile inserted the row first; update it in place
            s.rollback()
            _upsert(s, recommendation, application_id, config, applied)
    except Exception:
        s.rollback()
        raise
    CONFIGS_COMPILED.labels(persisted="true").inc()
    logger.info("interceptor config saved for application %s (recommendation v%s, %d rules)",
                application_id, recommendation.version, len(config["rules"]))
    return config


def get_interceptor_config(s: Session, recommendation: Recommendation, application_id: str) -> dict:
    """Stored config for the pair, or a preview compiled on the fly (not persisted)."""
    row = (
        s.query(InterceptorConfig)
        .filter(
            InterceptorConfig.recommendation_id == recommendation.id,
            InterceptorConfig.application_id == application_id,
        )
        .first()
    )
    if row is not None:
        return row.config
    CONFIGS_COMPILED.labels(persisted="false").inc()
    return generate_interceptor_config(s, recommendation, application_id)
