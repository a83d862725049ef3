import json
from concurrent.futures import ThreadPoolExecutor

import pytest
import redis

from fakes import APP_ID, DOMAIN, SERVICE_ID, TELEMETRY_ID
from traffic_advisor.errors import CollaboratorUnavailable
from traffic_advisor.infrastructure.redis_store import KeySpace
from traffic_advisor.models.tables import Recommendation, RouteExample

URL = f"http://{DOMAIN}/products/42"


def _request(url=URL):
    return {"url": url, "method": "GET", "headers": {"host": DOMAIN}}


def _response(body=None):
    return {"statusCode": 200, "headers": {"content-type": "application/json"}, "body": body or {"id": 42}}


def _route(url="/products/42", route="/products/:id"):
    return {"applicationId": APP_ID, "serviceId": TELEMETRY_ID, "url": url, "route": route}


def test_record_hash_stores_short_lived_fingerprint(gateway, redis_client):
    gateway.record_hash(APP_ID, 1700000000000, {"url": URL + "?page=2"}, {"bodyHash": "abc", "bodySize": 512})
    keys = list(redis_client.scan_iter("traffic-inspector:hashes:*"))
    assert len(keys) == 1
    assert KeySpace.parse_request_hash(keys[0]) == (APP_ID, 0)
    assert redis_client.hgetall(keys[0]) == {
        "url": "/products/42",
        "bodyHash": "abc",
        "bodySize": "512",
        "domain": DOMAIN,
        "timestamp": "1700000000000",
    }
    assert 0 < redis_client.ttl(keys[0]) <= 3600


def test_current_version_initialised_from_durable_store(gateway, session, redis_client):
    session.add(Recommendation(version=4, status="done", count=0))
    session.commit()
    assert gateway.get_current_version() == 5
    gateway.set_current_version(9)
    assert gateway.get_current_version() == 9


def test_unknown_domain_is_skipped(gateway, redis_client, session):
    assert gateway.record_request(APP_ID, _request("http://unknown.plt.local/x"), _response()) is False
    assert list(redis_client.scan_iter("traffic-inspector:requests:*")) == []
    assert session.query(RouteExample).count() == 0


def test_duplicate_requests_produce_one_example(gateway, redis_client, session):
    assert gateway.record_request(APP_ID, _request(), _response({"v": 1})) is True
    assert gateway.record_request(APP_ID, _request(), _response({"v": 2})) is False
    gateway.record_routes([_route()])
    gateway.record_request(APP_ID, _request(), _response({"v": 3}))

    examples = session.query(RouteExample).all()
    assert len(examples) == 1
    assert examples[0].response["body"] == {"v": 1}


def test_route_then_request_captures_example_with_params(gateway, redis_client, session):
    gateway.record_routes([_route()])
    assert session.query(RouteExample).count() == 0

    gateway.record_request(APP_ID, _request(URL + "?expand=true"), _response())
    example = session.query(RouteExample).one()
    assert example.application_id == APP_ID
    assert example.telemetry_id == TELEMETRY_ID
    assert example.route == "/products/:id"
    assert example.request["params"] == {"id": "42"}
    assert example.request["querystring"] == {"expand": "true"}

    keys = KeySpace()
    assert redis_client.exists(keys.example(APP_ID, TELEMETRY_ID, "/products/:id"))
    assert not redis_client.exists(keys.request(APP_ID, TELEMETRY_ID, "/products/42"))


def test_request_then_route_captures_example(gateway, session):
    gateway.record_request(APP_ID, _request(), _response())
    gateway.record_routes([_route()])
    assert session.query(RouteExample).one().request["params"] == {"id": "42"}


def test_dedup_write_fails_closed(gateway, directory, redis_client, monkeypatch):
    directory.get_domains()

    def _down(*args, **kwargs):
        raise redis.exceptions.ConnectionError("connection refused")

    monkeypatch.setattr(redis_client, "set", _down)
    with pytest.raises(CollaboratorUnavailable):
        gateway.record_request(APP_ID, _request(), _response())
    monkeypatch.undo()
    assert list(redis_client.scan_iter("traffic-inspector:requests:*")) == []


def test_lost_dedup_reply_fails_closed_and_redelivery_promotes(gateway, directory, redis_client, session, monkeypatch):
    directory.get_domains()
    gateway.record_routes([_route()])
    real_set = redis_client.set
    calls = []

    def _lands_then_times_out(*args, **kwargs):
        calls.append(args[0])
        real_set(*args, **kwargs)
        raise redis.exceptions.TimeoutError("reply timed out")

    monkeypatch.setattr(redis_client, "set", _lands_then_times_out)
    with pytest.raises(CollaboratorUnavailable):
        gateway.record_request(APP_ID, _request(), _response())
    monkeypatch.undo()

    assert len(calls) == 1
    assert session.query(RouteExample).count() == 0

    assert gateway.record_request(APP_ID, _request(), _response()) is False
    assert session.query(RouteExample).count() == 1


def test_concurrent_deliveries_produce_one_example(gateway, directory, session):
    directory.get_domains()
    gateway.record_routes([_route(f"/products/{i}") for i in range(8)])

    def _deliver(i):
        return gateway.record_request(APP_ID, _request(f"http://{DOMAIN}/products/{i % 8}"), _response({"n": i}))

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(_deliver, range(64)))

    assert any(results)
    assert session.query(RouteExample).count() == 1


def test_failed_promotion_releases_the_slot(gateway, redis_client, session, monkeypatch):
    def _fail(*args, **kwargs):
        raise RuntimeError("durable store rejected the example")

    gateway.record_request(APP_ID, _request(), _response())
    monkeypatch.setattr(gateway, "upsert_route_example", _fail)
    with pytest.raises(RuntimeError):
        gateway.record_routes([_route()])

    keys = KeySpace()
    assert not redis_client.exists(keys.example(APP_ID, TELEMETRY_ID, "/products/:id"))
    assert json.loads(redis_client.get(keys.request(APP_ID, TELEMETRY_ID, "/products/42")))["request"]["url"] == URL

    monkeypatch.undo()
    gateway.record_routes([_route()])
    assert session.query(RouteExample).count() == 1


def test_collect_route_traffic_groups_by_application_route_and_url(gateway):
    gateway.record_routes([_route("/products/42"), _route("/products/43")])
    for ts, url in [(0, "/products/42"), (100, "/products/42"), (50, "/products/43")]:
        gateway.record_hash(APP_ID, ts, {"url": f"http://{DOMAIN}{url}"}, {"bodyHash": "h", "bodySize": 10})
    # no route template known for this url
    gateway.record_hash(APP_ID, 10, {"url": f"http://{DOMAIN}/orders"}, {"bodyHash": "h", "bodySize": 10})
    # not an internal service
    gateway.record_hash(APP_ID, 10, {"url": "http://example.com/products/42"}, {"bodyHash": "h", "bodySize": 10})

    traffic = gateway.collect_route_traffic(0)
    assert list(traffic) == [APP_ID]
    assert list(traffic[APP_ID]) == ["/products/:id"]
    urls = traffic[APP_ID]["/products/:id"]
    assert set(urls) == {"/products/42", "/products/43"}
    assert urls["/products/42"]["telemetryId"] == TELEMETRY_ID
    assert urls["/products/42"]["serviceName"] == SERVICE_ID
    assert urls["/products/42"]["domain"] == DOMAIN
    assert sorted(r["timestamp"] for r in urls["/products/42"]["requests"]) == [0, 100]
    assert urls["/products/43"]["requests"] == [{"bodyHash": "h", "bodySize": 10, "timestamp": 50}]
    assert gateway.collect_route_traffic(1) == {}
