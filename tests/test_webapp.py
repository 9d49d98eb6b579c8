from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from driver_hours.webapp import create_app, to_local_naive

from conftest import T0, hours


@pytest.fixture
def client(monitor):
    return TestClient(create_app(monitor=monitor))


def at(offset_hours: float) -> str:
    return (T0 + hours(offset_hours)).isoformat()


class TestProgram:
    def test_full_program(self, client):
        response = client.post("/api/program/start", json={"at": at(0)})
        assert response.status_code == 200
        session_id = response.json()["session_id"]

        response = client.post("/api/activity", json={"category": "Condus", "at": at(0)})
        assert response.status_code == 200
        assert response.json()["type"] == "driving"

        status = client.get("/api/status").json()
        assert status["state"] == "session_open"
        assert status["session_id"] == session_id
        assert status["current_activity"] == "driving"
        assert status["armed_timers"]["mandatory_break"]["fire_at"] == at(4)

        response = client.post("/api/program/end", json={"at": at(2)})
        assert response.status_code == 200
        payload = response.json()
        assert payload["id"] == session_id
        assert payload["stats"]["driving_ms"] == 2 * 3600 * 1000

        reports = client.get("/api/reports").json()["reports"]
        assert [report["id"] for report in reports] == [session_id]

    def test_start_twice_conflicts(self, client):
        client.post("/api/program/start", json={"at": at(0)})
        assert client.post("/api/program/start", json={}).status_code == 409

    def test_end_without_session_conflicts(self, client):
        assert client.post("/api/program/end", json={}).status_code == 409

    def test_unknown_category(self, client):
        response = client.post("/api/activity", json={"category": "napping"})
        assert response.status_code == 400

    def test_extra_fields_are_rejected(self, client):
        response = client.post("/api/activity", json={"category": "work", "driver": "x"})
        assert response.status_code == 422

    def test_end_activity_without_activity(self, client):
        client.post("/api/program/start", json={"at": at(0)})
        assert client.post("/api/activity/end", json={}).status_code == 409


class TestAlerts:
    def test_list_and_dismiss(self, client, monitor):
        client.post("/api/program/start", json={"at": at(0)})
        client.post("/api/activity", json={"category": "driving", "at": at(0)})
        client.post("/api/activity", json={"category": "work", "at": at(5)})

        alerts = client.get("/api/alerts").json()
        keys = [alert["key"] for alert in alerts["alerts"]]
        assert len(keys) == 1
        assert keys[0].startswith("violation:MANDATORY_BREAK_REQUIRED:")
        assert alerts["statistics"]["active_alerts"] == 1

        assert client.delete(f"/api/alerts/{keys[0]}").status_code == 200
        assert client.delete(f"/api/alerts/{keys[0]}").status_code == 404
        assert monitor.alerts.active() == []

    def test_clear_alerts(self, client, monitor):
        client.post("/api/program/start", json={"at": at(0)})
        client.post("/api/activity", json={"category": "driving", "at": at(0)})
        client.post("/api/activity", json={"category": "work", "at": at(5)})

        assert client.delete("/api/alerts").status_code == 200
        assert monitor.alerts.active() == []
        assert monitor.scheduler.armed() == {}

    def test_compliance(self, client, clock):
        client.post("/api/program/start", json={"at": at(0)})
        client.post("/api/activity", json={"category": "driving", "at": at(0)})
        clock.set(T0 + hours(8.5))

        report = client.get("/api/compliance").json()
        assert report["is_compliant"] is False
        assert {item["type"] for item in report["warnings"]} == {"APPROACHING_MAX_DRIVING"}


class TestSignals:
    def test_update_signals(self, client, monitor):
        response = client.post("/api/signals", json={"fuel_percent": 12.5})
        assert response.status_code == 200
        assert response.json()["fuel_percent"] == 12.5
        assert monitor.signals().fuel_percent == 12.5


class TestTimestamps:
    def test_offset_aware_instants_are_accepted(self, client, monitor):
        client.post("/api/program/start", json={"at": at(0)})
        response = client.post(
            "/api/activity", json={"category": "driving", "at": "2026-03-02T07:00:00Z"}
        )

        assert response.status_code == 200
        activity = monitor.manager.current_activity()
        assert activity.start_time.tzinfo is None

        response = client.post("/api/program/end", json={"at": "2026-03-02T12:00:00+00:00"})
        assert response.status_code == 200
        assert monitor.manager.session is None

    def test_to_local_naive(self):
        aware = datetime(2026, 3, 2, 7, 0, tzinfo=timezone.utc)
        converted = to_local_naive(aware)

        assert converted.tzinfo is None
        assert converted == aware.astimezone().replace(tzinfo=None)
        assert to_local_naive(T0) is T0
        assert to_local_naive(None) is None
