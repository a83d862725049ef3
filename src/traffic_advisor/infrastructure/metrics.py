"""Process-wide Prometheus registry, scraped through ``GET /metrics``."""
from __future__ import annotations
from prometheus_client import CollectorRegistry, Counter, Histogram

registry = CollectorRegistry()

# HTTP layer
REQUESTS = Counter('api_requests_total', 'API Requests', ['endpoint'], registry=registry)
LATENCY = Histogram('api_request_latency_seconds', 'API request latency', ['endpoint'], registry=registry, buckets=(0.01,0.05,0.1,0.25,0.5,1,2,5))

# Ingestion
HASHES_RECORDED = Counter('ingest_request_hashes_total', 'Request fingerprints recorded', registry=registry)
REQUESTS_RECORDED = Counter('ingest_requests_total', 'Raw request captures', ['result'], registry=registry)
ROUTES_RECORDED = Counter('ingest_routes_total', 'Route template mappings recorded', registry=registry)
EXAMPLES_CAPTURED = Counter('ingest_route_examples_total', 'Route examples promoted to the durable store', registry=registry)
UNKNOWN_DOMAINS = Counter('ingest_unknown_domains_total', 'Observations skipped because the domain is not an internal service', registry=registry)

# Collaborators
COLLABORATOR_RETRIES = Counter('collaborator_retries_total', 'Retried collaborator calls', ['operation'], registry=registry)
DOMAIN_CACHE_REBUILDS = Counter('domain_cache_rebuilds_total', 'Domain directory cache rebuilds', registry=registry)

# Generation & compilation
GENERATION_RUNS = Counter('recommendation_generation_runs_total', 'Recommendation generation passes', ['result'], registry=registry)
GENERATION_LATENCY = Histogram('recommendation_generation_latency_seconds', 'Latency of a generation pass', buckets=(0.05,0.1,0.25,0.5,1,2,5,10,30,60), registry=registry)
ROUTES_SCORED = Counter('recommendation_routes_scored_total', 'Routes scored during generation', registry=registry)
APPLICATIONS_SKIPPED = Counter('recommendation_applications_skipped_total', 'Applications skipped after exhausted retries', registry=registry)
STATUS_TRANSITIONS = Counter('recommendation_status_transitions_total', 'Recommendation status transitions', ['status'], registry=registry)
CONFIGS_COMPILED = Counter('interceptor_configs_compiled_total', 'Interceptor configs compiled', ['persisted'], registry=registry)
