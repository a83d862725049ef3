"""Ephemeral TTL store (redis) and its key layout.

Every key lives under ``<prefix>:`` (``traffic-inspector`` by default):

    <prefix>:domains                                   domain directory cache (JSON)
    <prefix>:url-routes:{appId}:{telemetryId}:{url}    route template for a concrete url
    <prefix>:examples:{appId}:{telemetryId}:{route}    example promotion guard
    <prefix>:requests:{appId}:{telemetryId}:{url}      pending raw request/response (JSON)
    <prefix>:hashes:{appId}:{version}:{requestId}      body fingerprint (hash)
    <prefix>:versions                                  current recommendation version
"""
from __future__ import annotations
import uuid
from urllib.parse import quote
import redis
from traffic_advisor.config import get_settings

_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Lazily build the shared client from settings; socket timeouts bound every call."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_timeout=settings.redis_socket_timeout_sec,
            socket_connect_timeout=settings.redis_socket_timeout_sec,
        )
    return _client


def override_redis(client: redis.Redis | None):  # test helper
    global _client
    _client = client


def _encode(value: str) -> str:
    # Same alphabet as JavaScript's encodeURIComponent so existing keys stay readable
    return quote(value, safe="-_.!~*'()")


class KeySpace:
    def __init__(self, prefix: str | None = None):
        self.prefix = prefix or get_settings().redis_key_prefix

    def domains(self) -> str:
        return f"{self.prefix}:domains"

    def versions(self) -> str:
        return f"{self.prefix}:versions"

    def url_route(self, application_id: str, telemetry_id: str, url: str) -> str:
        return f"{self.prefix}:url-routes:{application_id}:{telemetry_id}:{_encode(url)}"

    def example(self, application_id: str, telemetry_id: str, route: str) -> str:
        return f"{self.prefix}:examples:{application_id}:{telemetry_id}:{_encode(route)}"

    def request(self, application_id: str, telemetry_id: str, url: str) -> str:
        return f"{self.prefix}:requests:{application_id}:{telemetry_id}:{_encode(url)}"

    def request_hash(self, application_id: str, version: int) -> str:
        return f"{self.prefix}:hashes:{application_id}:{version}:{uuid.uuid4()}"

    def request_hashes_pattern(self, version: int) -> str:
        return f"{self.prefix}:hashes:*:{version}:*"

    def generation_lock(self) -> str:
        return f"{self.prefix}:locks:generation"

    def generation_cancel(self) -> str:
        return f"{self.prefix}:generation:cancel"

    @staticmethod
    def parse_request_hash(key: str) -> tuple[str, int]:
        application_id, version, _ = key.split(":")[-3:]
        return application_id, int(version)
