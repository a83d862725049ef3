from datetime import datetime, timedelta

import pytest

from fakes import APP_ID
from traffic_advisor import lifecycle
from traffic_advisor.errors import (
    InvalidStatus,
    InvalidStatusFlow,
    RecommendationNotFound,
    RecommendationRouteNotFound,
)
from traffic_advisor.models.tables import Recommendation, RecommendationRoute


@pytest.mark.parametrize(
    "current,status",
    [
        ("new", "in_progress"),
        ("new", "skipped"),
        ("in_progress", "done"),
        ("in_progress", "aborted"),
        ("calculating", "new"),
        ("new", "old"),
        ("in_progress", "expired"),
    ],
)
def test_allowed_transitions(session, make_recommendation, current, status):
    rec = make_recommendation(status=current)
    assert lifecycle.update_status(session, rec.id, status).status == status


@pytest.mark.parametrize(
    "current,status",
    [("done", "new"), ("new", "done"), ("old", "new"), ("skipped", "in_progress"), ("expired", "old")],
)
def test_illegal_transition_leaves_status_untouched(session, make_recommendation, current, status):
    rec = make_recommendation(status=current)
    with pytest.raises(InvalidStatusFlow) as exc:
        lifecycle.update_status(session, rec.id, status)
    assert exc.value.current_status == current
    session.expire_all()
    assert session.get(Recommendation, rec.id).status == current


@pytest.mark.parametrize("status", ["calculating", "archived", ""])
def test_unknown_or_initial_status_is_invalid(session, make_recommendation, status):
    rec = make_recommendation(status="new")
    with pytest.raises(InvalidStatus):
        lifecycle.update_status(session, rec.id, status)


def test_same_status_is_a_no_op(session, make_recommendation):
    rec = make_recommendation(status="done")
    assert lifecycle.update_status(session, rec.id, "done").status == "done"


def test_missing_recommendation(session):
    with pytest.raises(RecommendationNotFound):
        lifecycle.update_status(session, "nope", "done")


def test_toggling_selected_keeps_count_consistent(session, make_recommendation):
    rec = make_recommendation(routes=[{"route": "/a"}, {"route": "/b"}, {"route": "/c", "application_id": "app-2"}])
    assert rec.count == 3
    route_id = rec.routes[0].id

    lifecycle.update_route(session, rec.id, route_id, {"selected": False})
    assert session.get(Recommendation, rec.id).count == 2

    lifecycle.update_route(session, rec.id, route_id, {"selected": True})
    assert session.get(Recommendation, rec.id).count == 3


def test_route_override_fields(session, make_recommendation):
    rec = make_recommendation(routes=[{"route": "/a"}])
    route = lifecycle.update_route(
        session, rec.id, rec.routes[0].id,
        {"ttl": 300, "cache_tag": "'tag'", "vary_headers": ["accept", "x-tenant"], "route": "/ignored"},
    )
    assert route.ttl == 300
    assert route.cache_tag == "'tag'"
    assert route.vary_headers == ["accept", "x-tenant"]
    assert route.route == "/a"
    assert session.get(Recommendation, rec.id).count == 1


def test_route_must_belong_to_recommendation(session, make_recommendation):
    first = make_recommendation(version=0, status="old", routes=[{"route": "/a"}])
    second = make_recommendation(version=1, routes=[{"route": "/b"}])
    with pytest.raises(RecommendationRouteNotFound):
        lifecycle.update_route(session, second.id, first.routes[0].id, {"selected": False})
    with pytest.raises(RecommendationRouteNotFound):
        lifecycle.update_route(session, second.id, "missing", {"selected": False})


def test_recommendation_app_ids(session, make_recommendation):
    rec = make_recommendation(routes=[
        {"route": "/a"},
        {"route": "/b", "application_id": "app-2", "selected": False},
        {"route": "/c", "application_id": "app-3", "recommended": False},
    ])
    assert lifecycle.get_recommendation_app_ids(session, rec.id) == [APP_ID]


def test_apply_marks_selected_routes_and_saves_config(session, make_recommendation, fleet):
    rec = make_recommendation(routes=[{"route": "/a"}, {"route": "/b", "selected": False}])
    config = lifecycle.apply_recommendation(session, rec, APP_ID, save_interceptor_config=True, fleet=fleet)
    applied = {r.route: r.applied for r in session.query(RecommendationRoute).all()}
    assert applied == {"/a": True, "/b": False}
    assert [r["routeToMatch"] for r in config["rules"]] == ["http://service-1.plt.local/a"]
    assert fleet.emitted == [APP_ID]


def test_apply_without_saving_config(session, make_recommendation, fleet):
    rec = make_recommendation(routes=[{"route": "/a"}])
    assert lifecycle.apply_recommendation(session, rec, APP_ID, fleet=fleet) is None
    assert fleet.emitted == []


def test_expire_stale_recommendations(session, make_recommendation):
    stale = make_recommendation(version=0, status="new")
    stale.created_at = datetime.utcnow() - timedelta(hours=100)
    session.commit()
    assert lifecycle.expire_stale_recommendations(session) == 1
    assert session.get(Recommendation, stale.id).status == "expired"
    assert lifecycle.expire_stale_recommendations(session) == 0


def test_updates_report_new_recommendation(session, make_recommendation):
    assert lifecycle.get_updates(session) == {"serviceName": "traffic-inspector", "updates": []}
    make_recommendation(routes=[{"route": "/a"}, {"route": "/b"}])
    assert lifecycle.get_updates(session) == {
        "serviceName": "traffic-inspector",
        "updates": [{"type": "new-recommendation", "count": 2}],
    }


def test_latest_recommendation_ignores_one_still_calculating(session, make_recommendation):
    done = make_recommendation(version=0, status="done")
    make_recommendation(version=1, status="calculating")
    assert lifecycle.get_latest_recommendation(session).id == done.id
