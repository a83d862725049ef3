from fakes import APP_ID
from traffic_advisor.interceptor import (
    generate_interceptor_config,
    generate_interceptor_rule,
    get_interceptor_config,
    save_interceptor_config,
)
from traffic_advisor.models.tables import InterceptorConfig, RecommendationRoute


def _rules_by_route(config):
    return {r["routeToMatch"]: r for r in config["rules"]}


def test_rule_shape():
    route = RecommendationRoute(
        domain="service-1.plt.local", route="/products/:id", ttl=120,
        cache_tag="'svc-products-' + .params[\"id\"]", vary_headers=["accept", "x-tenant"],
    )
    assert generate_interceptor_rule(route) == {
        "routeToMatch": "http://service-1.plt.local/products/:id",
        "headers": {"cache-control": "public, max-age=120", "vary": "accept,x-tenant"},
        "cacheTags": {"fgh": "'svc-products-' + .params[\"id\"]"},
    }


def test_rule_without_optional_fields():
    route = RecommendationRoute(domain="d.plt.local", route="/a", ttl=5, cache_tag=None, vary_headers=[])
    assert generate_interceptor_rule(route) == {
        "routeToMatch": "http://d.plt.local/a",
        "headers": {"cache-control": "public, max-age=5"},
    }


def test_only_recommended_and_selected_routes_compile(session, make_recommendation):
    rec = make_recommendation(routes=[
        {"route": "/a"},
        {"route": "/b", "selected": False},
        {"route": "/c", "recommended": False},
        {"route": "/d", "application_id": "app-2"},
    ])
    config = generate_interceptor_config(session, rec, APP_ID)
    assert list(_rules_by_route(config)) == ["http://service-1.plt.local/a"]


def test_new_rules_merge_with_previous_config(session, make_recommendation):
    first = make_recommendation(version=0, status="old", routes=[{"route": "/r1", "ttl": 60}])
    save_interceptor_config(session, first, APP_ID)

    second = make_recommendation(version=1, status="old", routes=[{"route": "/r2", "ttl": 30}])
    rules = _rules_by_route(save_interceptor_config(session, second, APP_ID))
    assert set(rules) == {"http://service-1.plt.local/r1", "http://service-1.plt.local/r2"}

    third = make_recommendation(version=2, routes=[{"route": "/r1", "ttl": 600}])
    config = save_interceptor_config(session, third, APP_ID)
    rules = _rules_by_route(config)
    assert len(config["rules"]) == 2
    assert rules["http://service-1.plt.local/r1"]["headers"]["cache-control"] == "public, max-age=600"
    assert rules["http://service-1.plt.local/r2"]["headers"]["cache-control"] == "public, max-age=30"


def test_previous_config_of_other_applications_is_ignored(session, make_recommendation):
    first = make_recommendation(version=0, status="old", routes=[{"route": "/other", "application_id": "app-2"}])
    save_interceptor_config(session, first, "app-2")
    second = make_recommendation(version=1, routes=[{"route": "/mine"}])
    assert list(_rules_by_route(save_interceptor_config(session, second, APP_ID))) == ["http://service-1.plt.local/mine"]


def test_compile_is_idempotent_per_recommendation_and_application(session, make_recommendation):
    rec = make_recommendation(routes=[{"route": "/a"}])
    first = save_interceptor_config(session, rec, APP_ID)
    second = save_interceptor_config(session, rec, APP_ID)
    assert first == second
    rows = session.query(InterceptorConfig).filter(InterceptorConfig.recommendation_id == rec.id).all()
    assert len(rows) == 1
    assert rows[0].applied is True


def test_get_returns_stored_config_or_preview(session, make_recommendation):
    rec = make_recommendation(routes=[{"route": "/a"}])
    preview = get_interceptor_config(session, rec, APP_ID)
    assert list(_rules_by_route(preview)) == ["http://service-1.plt.local/a"]
    assert session.query(InterceptorConfig).count() == 0

    save_interceptor_config(session, rec, APP_ID)
    assert get_interceptor_config(session, rec, APP_ID) == preview
