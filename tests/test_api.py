"""HTTP surface: tenant header, admin CRUD and the tracking flow"""
import uuid

import pytest


@pytest.fixture
def headers(org):
    return {"X-Org-Id": str(org.id)}


def test_health_endpoint(client):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_admin_routes_require_org_header(client):
    assert client.get("/funnels").status_code == 400
    assert client.get("/funnels", headers={"X-Org-Id": "not-a-uuid"}).status_code == 400
    assert client.get("/funnels", headers={"X-Org-Id": str(uuid.uuid4())}).status_code == 404


def test_funnel_crud(client, headers):
    response = client.post("/funnels", json={"name": "Webinar", "slug": "webinar", "status": "active"}, headers=headers)
    assert response.status_code == 201
    funnel_id = response.json()["id"]

    assert client.post("/funnels", json={"name": "Copy", "slug": "webinar"}, headers=headers).status_code == 400

    for position, name in enumerate(["Landing", "Thanks"], start=1):
        page = client.post(f"/funnels/{funnel_id}/pages", json={"position": position, "name": name}, headers=headers)
        assert page.status_code == 201

    detail = client.get(f"/funnels/{funnel_id}", headers=headers).json()
    assert [p["name"] for p in detail["pages"]] == ["Landing", "Thanks"]

    response = client.patch(f"/funnels/{funnel_id}", json={"name": "Webinar v2"}, headers=headers)
    assert response.json()["name"] == "Webinar v2"

    listed = client.get("/funnels", params={"status": "active"}, headers=headers).json()
    assert [f["id"] for f in listed] == [funnel_id]

    assert client.delete(f"/funnels/{funnel_id}", headers=headers).status_code == 204
    assert client.get(f"/funnels/{funnel_id}", headers=headers).status_code == 404


def test_funnels_are_isolated_between_tenants(client, funnel, other_org):
    response = client.get(f"/funnels/{funnel.id}", headers={"X-Org-Id": str(other_org.id)})
    assert response.status_code == 404


def test_variant_routes(client, funnel, headers):
    base = f"/funnels/{funnel.id}/variants"
    control = client.post(base, json={"name": "Original", "variant_key": "A", "is_control": True, "traffic_percentage": 50}, headers=headers)
    challenger = client.post(base, json={"name": "Short form", "variant_key": "B", "traffic_percentage": 50}, headers=headers)
    assert control.status_code == challenger.status_code == 201

    duplicate = client.post(base, json={"name": "Again", "variant_key": "A"}, headers=headers)
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "VALIDATION_ERROR"

    response = client.delete(f"{base}/{control.json()['id']}", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "INVALID_OPERATION"

    comparison = client.get(f"{base}/comparison", headers=headers).json()
    assert [v["variant_key"] for v in comparison["variants"]] == ["A", "B"]
    assert comparison["summary"]["statistical_significance"] is False

    result = client.post(f"{base}/declare-winner", json={"variant_id": challenger.json()["id"]}, headers=headers).json()
    assert result["winner"]["status"] == "winner"
    assert [v["status"] for v in result["others"]] == ["paused"]


def test_condition_validation(client, funnel, pages, headers):
    base = f"/funnels/{funnel.id}/conditions"
    bad_regex = {
        "name": "Bad",
        "rules": [{"field": "email", "operator": "regex_match", "value": "[oops"}],
    }
    assert client.post(base, json=bad_regex, headers=headers).status_code == 422

    unknown_operator = {"name": "Bad", "rules": [{"field": "email", "operator": "sounds_like", "value": "x"}]}
    assert client.post(base, json=unknown_operator, headers=headers).status_code == 422

    foreign_page = {"name": "Elsewhere", "page_id": str(uuid.uuid4())}
    assert client.post(base, json=foreign_page, headers=headers).status_code == 400

    good = {
        "name": "Upsell for paid traffic",
        "page_id": str(pages[1].id),
        "rules": [{"field": "traffic_source", "operator": "equals", "value": "paid"}],
        "actions": [{"type": "navigate_to_page", "page_id": str(pages[2].id)}],
    }
    response = client.post(base, json=good, headers=headers)
    assert response.status_code == 201
    assert response.json()["actions"][0]["page_id"] == str(pages[2].id)


def test_goal_config_validation(client, funnel, headers):
    base = f"/funnels/{funnel.id}/goals"
    wordy = {"name": "Stay a while", "type": "time_on_site", "config": {"minimum_seconds": "five minutes"}}
    assert client.post(base, json=wordy, headers=headers).status_code == 422

    missing_target = {"name": "Thanks", "type": "page_visit", "config": {}}
    assert client.post(base, json=missing_target, headers=headers).status_code == 422

    response = client.post(base, json={"name": "Stay a while", "type": "time_on_site", "config": {"minimum_seconds": 90}}, headers=headers)
    assert response.status_code == 201
    goal = response.json()
    assert goal["config"] == {"minimum_seconds": 90.0}

    bad_patch = client.patch(f"{base}/{goal['id']}", json={"config": {"minimum_seconds": "later"}}, headers=headers)
    assert bad_patch.status_code == 422

    good_patch = client.patch(f"{base}/{goal['id']}", json={"config": {"minimum_seconds": 30}}, headers=headers)
    assert good_patch.status_code == 200
    assert good_patch.json()["config"] == {"minimum_seconds": 30.0}


def test_tracking_flow(client, db, funnel, pages, headers):
    funnel_id = str(funnel.id)
    client.post(f"/funnels/{funnel_id}/variants", json={"name": "Only", "variant_key": "A", "is_control": True, "traffic_percentage": 100}, headers=headers)
    client.post(f"/funnels/{funnel_id}/conditions", json={
        "name": "Notify sales",
        "page_id": str(pages[1].id),
        "rules": [{"field": "device", "operator": "equals", "value": "desktop"}],
        "actions": [{"type": "trigger_webhook", "url": "https://hooks.example.com/sales"}],
    }, headers=headers)

    started = client.post("/track/sessions", json={
        "funnel_id": funnel_id,
        "page_id": str(pages[0].id),
        "session_key": "browser-1",
        "utm_source": "google",
        "utm_medium": "cpc",
    }, headers={"user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"})
    assert started.status_code == 200
    session = started.json()
    assert session["traffic_source"] == "paid"
    assert session["device"] == "desktop"

    first = client.post(f"/track/funnels/{funnel_id}/allocate", json={"session_id": session["id"]}).json()
    again = client.post(f"/track/funnels/{funnel_id}/allocate", json={"session_id": session["id"]}).json()
    assert first["variant_key"] == again["variant_key"] == "A"

    viewed = client.post("/track/sessions", json={
        "funnel_id": funnel_id, "page_id": str(pages[1].id), "session_id": session["id"],
    }).json()
    assert viewed["total_page_views"] == 2

    evaluated = client.post(f"/track/funnels/{funnel_id}/conditions/evaluate", json={
        "page_id": str(pages[1].id), "session_id": session["id"],
    }).json()
    assert [r["passed"] for r in evaluated["results"]] == [True]
    assert evaluated["queued_tasks"] == 1

    event = client.post("/track/events", json={
        "session_id": session["id"],
        "event_type": "purchase",
        "page_id": str(pages[2].id),
        "is_conversion": True,
        "conversion_value": 49,
    })
    assert event.status_code == 201
    assert event.json()["sequence"] == 1

    late_view = client.post("/track/sessions", json={
        "funnel_id": funnel_id, "page_id": str(pages[2].id), "session_id": session["id"],
    })
    assert late_view.status_code == 409
    assert late_view.json()["error"] == "INVALID_STATE"

    variants = client.get(f"/funnels/{funnel_id}/variants", headers=headers).json()
    assert variants[0]["visitors"] == 1
    assert variants[0]["conversions"] == 1

    bucket = client.post(f"/funnels/{funnel_id}/analytics/rollup", json={
        "period": "daily", "period_date": session["created_at"],
    }, headers=headers).json()
    assert bucket["visitors"] == 1
    assert bucket["conversions"] == 1

    insights = client.get(f"/funnels/{funnel_id}/insights", params={"days": 7}, headers=headers).json()
    assert insights["period"] == "Last 7 days"
    assert insights["total_conversions"] == 1


def test_tracking_unknown_funnel(client):
    response = client.post(f"/track/funnels/{uuid.uuid4()}/allocate", json={})
    assert response.status_code == 404
    assert response.json()["error"] == "NOT_FOUND"
