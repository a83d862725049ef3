"""Domain directory cache: internal service domain -> service identity, per application.

The whole map is stored as one JSON document in the ephemeral store with a TTL. On a miss
(first use or expiry) it is rebuilt from the fleet directory; it is never patched in place.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Dict
import redis
from traffic_advisor.config import get_settings
from traffic_advisor.connectors.base import FleetDirectory
from traffic_advisor.infrastructure.metrics import DOMAIN_CACHE_REBUILDS
from traffic_advisor.infrastructure.redis_store import KeySpace, get_redis
from traffic_advisor.infrastructure.retry import RETRYABLE_ERRORS, retrying

logger = logging.getLogger(__name__)

DomainMap = Dict[str, Dict[str, dict]]


@dataclass(frozen=True)
class ServiceIdentity:
    application_id: str
    application_name: str | None
    service_id: str
    telemetry_id: str

    @property
    def service_name(self) -> str:
        return self.service_id


class DomainDirectory:
    def __init__(
        self,
        fleet: FleetDirectory,
        redis_client: redis.Redis | None = None,
        keys: KeySpace | None = None,
        ttl_sec: int | None = None,
        internal_suffix: str | None = None,
    ):
        settings = get_settings()
        self.fleet = fleet
        self.redis = redis_client or get_redis()
        self.keys = keys or KeySpace()
        self.ttl_sec = ttl_sec or settings.domains_cache_ttl_sec
        self.partial_ttl_sec = min(self.ttl_sec, settings.domains_partial_cache_ttl_sec)
        self.internal_suffix = internal_suffix or settings.internal_domain_suffix

    def get_domains(self) -> DomainMap:
        cached = retrying("domains_get")(self.redis.get, self.keys.domains())
        if cached:
            return json.loads(cached)
        domains, skipped = self._collect()
        ttl = self.partial_ttl_sec if skipped else self.ttl_sec
        retrying("domains_set")(self.redis.set, self.keys.domains(), json.dumps(domains), ex=ttl)
        return domains

    def build(self) -> DomainMap:
        """Rebuild the full map from the fleet directory.

        An application whose state can not be fetched after retries is left out of this
        build (and logged); the remaining applications are still registered.
        """
        return self._collect()[0]

    def _collect(self) -> tuple[DomainMap, list[str]]:
        DOMAIN_CACHE_REBUILDS.inc()
        applications = retrying("list_applications")(self.fleet.list_applications)
        domains: DomainMap = {}
        skipped: list[str] = []
        for application in applications:
            application_id = application.get("id")
            if not application_id:
                continue
            application_name = application.get("name")
            try:
                state = retrying("get_latest_application_state")(
                    self.fleet.get_latest_application_state, application_id
                )
            except RETRYABLE_ERRORS as exc:
                logger.warning("skipping application %s in domain directory: %s", application_id, exc)
                skipped.append(application_id)
                continue
            if not state:
                continue
            app_domains: dict[str, dict] = {}
            for service in state.get("services") or []:
                service_id = service.get("id")
                if not service_id:
                    continue
                app_domains[f"{service_id}.{self.internal_suffix}"] = {
                    "applicationName": application_name,
                    "serviceId": service_id,
                    "serviceName": service_id,
                    "telemetryId": service.get("telemetryId") or f"{application_name}-{service_id}",
                }
            domains[application_id] = app_domains
        logger.info("domain directory rebuilt for %d applications (%d skipped)", len(domains), len(skipped))
        return domains, skipped

    def resolve(self, domain: str, application_id: str, domains: DomainMap | None = None) -> ServiceIdentity | None:
        """Return the identity behind ``domain`` for ``application_id``; ``None`` when unknown."""
        if domains is None:
            domains = self.get_domains()
        metadata = (domains.get(application_id) or {}).get(domain)
        if not metadata:
            return None
        return ServiceIdentity(
            application_id=application_id,
            application_name=metadata.get("applicationName"),
            service_id=metadata.get("serviceId") or metadata.get("serviceName"),
            telemetry_id=metadata["telemetryId"],
        )
