from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List
import logging
import time
from prometheus_client import Counter, Histogram
from traffic_advisor.infrastructure.metrics import registry

FLEET_CALLS = Counter('fleet_directory_calls_total', 'Fleet directory calls', ['operation'], registry=registry)
FLEET_ERRORS = Counter('fleet_directory_errors_total', 'Errors returned by the fleet directory', ['operation'], registry=registry)
FLEET_LATENCY = Histogram('fleet_directory_latency_seconds', 'Latency of fleet directory calls', ['operation'], buckets=(0.01,0.05,0.1,0.5,1,2,5,10), registry=registry)

logger = logging.getLogger(__name__)

Application = Dict[str, Any]


class FleetDirectory(ABC):
    """Source of truth for applications and the services they deploy."""

    name: str = "fleet"

    @abstractmethod
    def list_applications(self) -> List[Application]:
        """Return ``[{"id": ..., "name": ...}, ...]`` for every application."""
        ...

    @abstractmethod
    def get_latest_application_state(self, application_id: str) -> Dict[str, Any] | None:
        """Return the latest deployed state: ``{"services": [{"id": ..., "type": ...}, ...]}``."""
        ...

    def emit_application_config(self, application_id: str) -> None:
        """Ask the fleet to push the newest configuration to the application's instances."""
        logger.info("application config update requested for %s", application_id)

    def instrumented(self, operation: str, func, *args, **kwargs):
        """Call ``func`` recording count, latency and errors under ``operation``."""
        FLEET_CALLS.labels(operation).inc()
        start = time.time()
        try:
            return func(*args, **kwargs)
        except Exception:
            FLEET_ERRORS.labels(operation).inc()
            raise
        finally:
            FLEET_LATENCY.labels(operation).observe(time.time() - start)
