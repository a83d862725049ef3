"""Shared fixtures: in-memory SQLite durable store, fakeredis ephemeral store, fake fleet."""
import os

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RETRY_MAX_ATTEMPTS", "2")
os.environ.setdefault("RETRY_MAX_DELAY_SEC", "0")

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from fakes import APP_ID, APP_NAME, DOMAIN, SERVICE_ID, TELEMETRY_ID, FakeFleet
from traffic_advisor.config import reset_settings
from traffic_advisor.domains import DomainDirectory
from traffic_advisor.infrastructure.db import Base, get_session, override_engine
from traffic_advisor.infrastructure.redis_store import override_redis
from traffic_advisor.ingestion import TrafficGateway
from traffic_advisor.models import tables  # noqa: F401
from traffic_advisor.models.tables import Recommendation, RecommendationRoute
from traffic_advisor.services import override_fleet


@pytest.fixture(autouse=True)
def settings_env():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(autouse=True)
def db_engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(engine)
    override_engine(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(db_engine):
    s = get_session()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    override_redis(client)
    yield client
    client.flushall()
    override_redis(None)


@pytest.fixture
def fleet():
    return FakeFleet({APP_ID: {"name": APP_NAME, "services": [{"id": SERVICE_ID, "type": "service"}]}})


@pytest.fixture
def directory(fleet, redis_client):
    return DomainDirectory(fleet, redis_client=redis_client)


@pytest.fixture
def gateway(directory, redis_client):
    return TrafficGateway(directory, redis_client=redis_client)


@pytest.fixture
def client(fleet, gateway):
    from traffic_advisor.api.main import app
    from traffic_advisor.services import get_fleet, get_gateway

    override_fleet(fleet)
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_fleet] = lambda: fleet
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    override_fleet(None)


@pytest.fixture
def make_recommendation(session):
    """Insert a recommendation with the given routes (dicts of RecommendationRoute fields)."""

    def _make(version: int = 0, status: str = "new", routes: list[dict] | None = None) -> Recommendation:
        rec = Recommendation(version=version, status=status, count=0)
        session.add(rec)
        session.flush()
        for r in routes or []:
            values = {
                "application_id": APP_ID,
                "telemetry_id": TELEMETRY_ID,
                "service_name": SERVICE_ID,
                "domain": DOMAIN,
                "recommended": True,
                "selected": True,
                "score": 0.9,
                "scores": {},
                "ttl": 60,
                "vary_headers": [],
                **r,
            }
            session.add(RecommendationRoute(recommendation_id=rec.id, **values))
        session.flush()
        rec.count = sum(1 for r in rec.routes if r.selected)
        session.commit()
        return rec

    return _make
