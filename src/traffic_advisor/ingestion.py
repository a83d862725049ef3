"""Traffic ingestion and deduplication gateway backed by the ephemeral redis store.

Three intake operations feed it:

* ``record_hash``    - short-lived body fingerprint per observed response (variability estimate)
* ``record_request`` - one raw request/response per (application, service, url), deduplicated
* ``record_route``   - the route template a concrete url belongs to

Once a url has both a pending raw capture and a known route template, the pair is promoted
into a durable ``RouteExample``. Dedup and promotion are single atomic redis operations
(``SET NX`` and a Lua script) so concurrent deliveries can never produce two examples.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Iterable
from urllib.parse import parse_qsl, urlsplit
import redis
from sqlalchemy import func
from traffic_advisor.config import get_settings
from traffic_advisor.domains import DomainDirectory
from traffic_advisor.errors import CollaboratorUnavailable
from traffic_advisor.infrastructure.db import get_session
from traffic_advisor.infrastructure.metrics import (
    EXAMPLES_CAPTURED,
    HASHES_RECORDED,
    REQUESTS_RECORDED,
    ROUTES_RECORDED,
    UNKNOWN_DOMAINS,
)
from traffic_advisor.infrastructure.redis_store import KeySpace, get_redis
from traffic_advisor.infrastructure.retry import RETRYABLE_ERRORS, retrying
from traffic_advisor.models.tables import Recommendation, RouteExample
from traffic_advisor.utils.routes import parse_path_params

logger = logging.getLogger(__name__)

# KEYS[1] = example guard, KEYS[2] = pending raw request; ARGV[1] = guard ttl.
# Takes the pending capture and sets the guard in one step, or returns nil.
PROMOTE_EXAMPLE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
  return false
end
local raw = redis.call('GET', KEYS[2])
if not raw then
  return false
end
redis.call('SET', KEYS[1], '1', 'EX', ARGV[1])
redis.call('DEL', KEYS[2])
return raw
"""

# applicationId -> route -> url -> {telemetryId, serviceName, domain, requests: [...]}
RouteTraffic = dict[str, dict[str, dict[str, dict[str, Any]]]]


class TrafficGateway:
    def __init__(
        self,
        directory: DomainDirectory,
        redis_client: redis.Redis | None = None,
        keys: KeySpace | None = None,
    ):
        self.settings = get_settings()
        self.directory = directory
        self.redis = redis_client or get_redis()
        self.keys = keys or KeySpace()
        self._promote = self.redis.register_script(PROMOTE_EXAMPLE_SCRIPT)

    # -- version counter -------------------------------------------------

    def get_current_version(self) -> int:
        """Version the next recommendation will carry; fingerprints are bucketed by it.

        Lazily initialised from the durable store (max version + 1, or 0).
        """
        cached = retrying("version_get")(self.redis.get, self.keys.versions())
        if cached is not None:
            return int(cached)
        with get_session() as s:
            latest = s.query(func.max(Recommendation.version)).scalar()
        version = 0 if latest is None else latest + 1
        # Another instance may have initialised it concurrently; keep whichever landed first
        retrying("version_set")(self.redis.set, self.keys.versions(), version, nx=True)
        return int(retrying("version_get")(self.redis.get, self.keys.versions()))

    def set_current_version(self, version: int):
        retrying("version_set")(self.redis.set, self.keys.versions(), version)

    # -- intake ------------------------------------------------------------

    def record_hash(self, application_id: str, timestamp: int | float, request: dict, response: dict):
        parts = urlsplit(request["url"])
        version = self.get_current_version()
        key = self.keys.request_hash(application_id, version)

        def _write():
            pipe = self.redis.pipeline(transaction=True)
            pipe.hset(key, mapping={
                "url": parts.path,
                "bodyHash": response["bodyHash"],
                "bodySize": response["bodySize"],
                "domain": parts.hostname or "",
                "timestamp": int(timestamp),
            })
            pipe.expire(key, self.settings.recommendation_time_window_sec)
            pipe.execute()

        retrying("record_hash")(_write)
        HASHES_RECORDED.inc()

    def record_request(self, application_id: str, request: dict, response: dict) -> bool:
        """Capture one raw request/response for its url; returns False when skipped or deduplicated."""
        parts = urlsplit(request["url"])
        domain = parts.hostname or ""
        identity = self.directory.resolve(domain, application_id)
        if identity is None:
            UNKNOWN_DOMAINS.inc()
            logger.warning("Internal service not found for domain %s (application %s)", domain, application_id)
            return False

        url_path = parts.path
        request = {**request, "querystring": dict(parse_qsl(parts.query))}
        key = self.keys.request(application_id, identity.telemetry_id, url_path)
        payload = json.dumps({"request": request, "response": response})
        # Not retried: after a lost reply the retry would see its own write as a duplicate
        try:
            stored = self.redis.set(key, payload, nx=True, ex=self.settings.request_cache_ttl_sec)
        except RETRYABLE_ERRORS as exc:
            # Fail closed: the capture counts as not recorded and the caller may retry
            raise CollaboratorUnavailable(f"failed to record request for {url_path}: {exc}") from exc
        if not stored:
            REQUESTS_RECORDED.labels(result="duplicate").inc()
            # A pending capture from an interrupted delivery may still be waiting for promotion
            self.maybe_capture_example(application_id, identity.telemetry_id, url_path)
            return False

        REQUESTS_RECORDED.labels(result="stored").inc()
        self.maybe_capture_example(application_id, identity.telemetry_id, url_path)
        return True

    def record_route(self, application_id: str, telemetry_id: str, url_path: str, route: str):
        key = self.keys.url_route(application_id, telemetry_id, url_path)
        retrying("record_route")(self.redis.set, key, route, ex=self.settings.route_cache_ttl_sec)
        ROUTES_RECORDED.inc()
        self.maybe_capture_example(application_id, telemetry_id, url_path)

    def record_routes(self, routes: Iterable[dict]):
        for r in routes:
            self.record_route(r["applicationId"], r["serviceId"], r["url"], r["route"])

    # -- promotion ---------------------------------------------------------

    def maybe_capture_example(self, application_id: str, telemetry_id: str, url_path: str) -> RouteExample | None:
        route = retrying("route_get")(self.redis.get, self.keys.url_route(application_id, telemetry_id, url_path))
        if not route:
            return None

        example_key = self.keys.example(application_id, telemetry_id, route)
        request_key = self.keys.request(application_id, telemetry_id, url_path)
        raw = self._promote(
            keys=[example_key, request_key],
            args=[self.settings.route_example_cache_ttl_sec],
        )
        if raw is None:
            return None

        try:
            captured = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.error("Failed to parse request example for %s: %s", url_path, exc)
            return None

        request = captured.get("request") or {}
        request["params"] = parse_path_params(url_path, route)
        try:
            example = retrying("upsert_route_example")(
                self.upsert_route_example, application_id, telemetry_id, route, request, captured.get("response") or {}
            )
        except Exception:
            # Give the slot back so a later observation can promote again
            self.redis.delete(example_key)
            self.redis.set(request_key, raw, nx=True, ex=self.settings.request_cache_ttl_sec)
            raise
        EXAMPLES_CAPTURED.inc()
        logger.info("route example captured for %s %s", telemetry_id, route)
        return example

    def upsert_route_example(self, application_id: str, telemetry_id: str, route: str, request: dict, response: dict) -> RouteExample:
        with get_session() as s:
            example = s.query(RouteExample).filter(
                RouteExample.application_id == application_id,
                RouteExample.telemetry_id == telemetry_id,
                RouteExample.route == route,
            ).first()
            if example is None:
                example = RouteExample(application_id=application_id, telemetry_id=telemetry_id, route=route)
                s.add(example)
            example.request = request
            example.response = response
            s.commit()
            return example

    # -- aggregation -------------------------------------------------------

    def collect_route_traffic(self, version: int) -> RouteTraffic:
        """Group every fingerprint recorded under ``version`` by application, route and url.

        Uses a cursor-based SCAN so concurrent ingestion is never blocked. Any error aborts
        the whole aggregation; nothing partial is returned.
        """
        domains = self.directory.get_domains()
        routes: RouteTraffic = {}
        for key in self.redis.scan_iter(match=self.keys.request_hashes_pattern(version), count=500):
            application_id, _ = self.keys.parse_request_hash(key)
            fingerprint = self.redis.hgetall(key)
            if not fingerprint:
                # expired between SCAN and HGETALL
                continue
            domain = fingerprint.get("domain", "")
            identity = self.directory.resolve(domain, application_id, domains)
            if identity is None:
                logger.warning("Internal service not found by domain %s", domain)
                continue

            url = fingerprint["url"]
            route = self.redis.get(self.keys.url_route(application_id, identity.telemetry_id, url))
            if not route:
                continue

            url_metrics = routes.setdefault(application_id, {}).setdefault(route, {}).setdefault(url, {
                "telemetryId": identity.telemetry_id,
                "serviceName": identity.service_name,
                "domain": domain,
                "requests": [],
            })
            url_metrics["requests"].append({
                "bodyHash": fingerprint.get("bodyHash"),
                "bodySize": int(float(fingerprint.get("bodySize") or 0)),
                "timestamp": int(float(fingerprint.get("timestamp") or 0)),
            })
        return routes
