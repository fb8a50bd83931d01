"""
test_api.py — Tests for the REST surface consumed by the sync client.

Covers:
    • Alerts: expiry filter, severity ordering, since cursor, PATCH
    • Reports: create (201, pending status), Idempotency-Key replay/conflict,
      filters, ordering, allowed PATCH fields, DELETE
    • Resources: PUT/PATCH merge, lastUpdated cursor
    • Error envelope for validation / not-found errors
    • Health endpoints

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import T0, alert_record, report_payload, resource_record


@pytest.fixture
def client(server_app):
    return TestClient(server_app)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestAlerts:

    def test_sorted_by_severity_then_newest(self, client, repositories):
        repo = repositories["alerts"]
        repo.put(alert_record("a", T0 - timedelta(hours=3), severity="info"))
        repo.put(alert_record("b", T0 - timedelta(hours=2), severity="critical"))
        repo.put(alert_record("c", T0 - timedelta(hours=1), severity="critical"))
        repo.put(alert_record("d", T0 - timedelta(hours=4), severity="emergency"))
        ids = [a["id"] for a in client.get("/api/alerts").json()]
        assert ids == ["d", "c", "b", "a"]

    def test_expired_alerts_excluded(self, client, repositories):
        repo = repositories["alerts"]
        repo.put(alert_record("live", T0 - timedelta(hours=1)))
        repo.put(alert_record(
            "gone", T0 - timedelta(days=2), expiresAt=(T0 - timedelta(minutes=1)).isoformat(),
        ))
        ids = [a["id"] for a in client.get("/api/alerts").json()]
        assert ids == ["live"]

    def test_since_is_strictly_after(self, client, repositories):
        repo = repositories["alerts"]
        repo.put(alert_record("old", T0 - timedelta(hours=1)))
        repo.put(alert_record("edge", T0))
        repo.put(alert_record("new", T0 + timedelta(minutes=5)))
        response = client.get("/api/alerts", params={"since": T0.isoformat()})
        assert [a["id"] for a in response.json()] == ["new"]

    def test_severity_and_area_filters(self, client, repositories):
        repo = repositories["alerts"]
        repo.put(alert_record("a", T0, severity="warning", area="Mancheswar Industrial Area"))
        repo.put(alert_record("b", T0, severity="critical", area="Mancheswar Industrial Area"))
        repo.put(alert_record("c", T0, severity="critical", area="Old Town"))
        response = client.get("/api/alerts", params={"severity": "critical", "area": "mancheswar"})
        assert [a["id"] for a in response.json()] == ["b"]

    def test_cache_control_follows_soonest_expiry(self, client, repositories):
        repositories["alerts"].put(alert_record(
            "a", T0, expiresAt=(T0 + timedelta(minutes=10)).isoformat(),
        ))
        response = client.get("/api/alerts")
        assert response.headers["Cache-Control"] == "public, max-age=600"

    def test_create_alert(self, client, clock):
        response = client.post("/api/alerts", json={
            "title": "Cyclone warning",
            "description": "Cyclone expected to make landfall within 36 hours.",
            "severity": "emergency",
            "area": "Puri coast",
            "source": "IMD",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["timestamp"] == clock().isoformat()
        assert body["status"] == "active"

    def test_patch_marks_seen_and_bumps_timestamp(self, client, repositories, clock):
        repositories["alerts"].put(alert_record("a", T0 - timedelta(hours=1)))
        clock.advance(minutes=5)
        body = client.patch("/api/alerts/a", json={"seen": True}).json()
        assert body["seen"] is True
        assert body["timestamp"] == clock().isoformat()

    def test_invalid_severity_rejected(self, client):
        response = client.get("/api/alerts", params={"severity": "apocalyptic"})
        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Reports
# ═══════════════════════════════════════════════════════════════════════════

class TestReports:

    def test_create_returns_201_pending(self, client, clock):
        response = client.post("/api/reports", json=report_payload())
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["createdAt"] == body["updatedAt"] == clock().isoformat()
        assert body["id"]

    def test_anonymous_report_attribution(self, client):
        body = client.post("/api/reports", json=report_payload(isAnonymous=True)).json()
        assert body["userName"] == "Anonymous"

    def test_idempotency_key_replays_original(self, client, repositories):
        headers = {"Idempotency-Key": "key-1"}
        first = client.post("/api/reports", json=report_payload(), headers=headers)
        second = client.post("/api/reports", json=report_payload(), headers=headers)
        assert first.json()["id"] == second.json()["id"]
        assert len(repositories["reports"]) == 1

    def test_idempotency_key_with_different_payload_conflicts(self, client):
        headers = {"Idempotency-Key": "key-2"}
        client.post("/api/reports", json=report_payload(), headers=headers)
        response = client.post(
            "/api/reports", json=report_payload(title="Another title"), headers=headers,
        )
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_validation_envelope(self, client):
        response = client.post("/api/reports", json=report_payload(title="abc", type="party"))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert body["code"] == "VALIDATION_ERROR"
        assert set(body["details"]) >= {"title", "type"}

    def test_location_bounds_validated(self, client):
        response = client.post(
            "/api/reports", json=report_payload(location={"lat": 95.0, "lng": 85.8}),
        )
        assert response.status_code == 400
        assert "location.lat" in response.json()["details"]

    def test_sorted_by_severity_then_newest(self, client, clock):
        client.post("/api/reports", json=report_payload(severity=2))
        clock.advance(minutes=1)
        newer_low = client.post("/api/reports", json=report_payload(severity=2)).json()
        clock.advance(minutes=1)
        high = client.post("/api/reports", json=report_payload(severity=5)).json()
        ids = [r["id"] for r in client.get("/api/reports").json()]
        assert ids[:2] == [high["id"], newer_low["id"]]

    def test_filters(self, client):
        client.post("/api/reports", json=report_payload(type="damage", severity=3))
        client.post("/api/reports", json=report_payload(type="incident", severity=3))
        response = client.get("/api/reports", params={"type": "damage", "severity": 3})
        assert [r["type"] for r in response.json()] == ["damage"]

    def test_since_uses_updated_at(self, client, clock):
        created = client.post("/api/reports", json=report_payload()).json()
        cursor = clock().isoformat()
        clock.advance(minutes=10)
        client.patch(f"/api/reports/{created['id']}", json={"status": "verified"})
        changed = client.get("/api/reports", params={"since": cursor}).json()
        assert [r["id"] for r in changed] == [created["id"]]
        assert changed[0]["status"] == "verified"

    def test_patch_rejects_other_fields(self, client):
        created = client.post("/api/reports", json=report_payload()).json()
        response = client.patch(f"/api/reports/{created['id']}", json={"title": "Renamed report"})
        assert response.status_code == 400

    def test_empty_patch_rejected(self, client):
        created = client.post("/api/reports", json=report_payload()).json()
        response = client.patch(f"/api/reports/{created['id']}", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "No fields to update"

    def test_delete_then_not_found(self, client):
        created = client.post("/api/reports", json=report_payload()).json()
        assert client.delete(f"/api/reports/{created['id']}").status_code == 200
        response = client.get(f"/api/reports/{created['id']}")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Resources
# ═══════════════════════════════════════════════════════════════════════════

class TestResources:

    def test_put_merges_and_stamps(self, client, repositories, clock):
        repositories["resources"].put(resource_record("r1", T0 - timedelta(hours=1)))
        clock.advance(minutes=3)
        body = client.put("/api/resources/r1", json={
            "operationalStatus": "limited",
            "capacity": {"total": 500, "available": 10},
        }).json()
        assert body["operationalStatus"] == "limited"
        assert body["capacity"]["available"] == 10
        assert body["name"] == "Kalinga Stadium Relief Camp"
        assert body["lastUpdated"] == clock().isoformat()

    def test_patch_alias(self, client, repositories):
        repositories["resources"].put(resource_record("r1", T0))
        assert client.patch("/api/resources/r1", json={"status": "full"}).json()["status"] == "full"

    def test_capacity_cannot_exceed_total(self, client, repositories):
        repositories["resources"].put(resource_record("r1", T0))
        response = client.put("/api/resources/r1", json={"capacity": {"total": 5, "available": 9}})
        assert response.status_code == 400

    def test_update_unknown_resource(self, client):
        response = client.put("/api/resources/missing", json={"status": "full"})
        assert response.status_code == 404
        assert response.json()["error"] == "Resource not found"

    def test_since_uses_last_updated(self, client, repositories):
        repositories["resources"].put(resource_record("old", T0 - timedelta(hours=1)))
        repositories["resources"].put(resource_record("new", T0 + timedelta(hours=1)))
        response = client.get("/api/resources", params={"since": T0.isoformat()})
        assert [r["id"] for r in response.json()] == ["new"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Health & root
# ═══════════════════════════════════════════════════════════════════════════

class TestHealth:

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_deep_health_reports_components(self, server_app):
        with TestClient(server_app) as client:
            body = client.get("/health").json()
        names = {c["name"] for c in body["components"]}
        assert names == {"rate_limiter", "repositories"}
        assert body["status"] == "healthy"

    def test_degraded_without_sweeper(self, client):
        # No lifespan → sweeper never started
        assert client.get("/health").json()["status"] == "degraded"

    def test_readiness(self, client):
        assert client.get("/health/ready").status_code == 200

    def test_unknown_route_envelope(self, client):
        response = client.get("/api/unknown")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
