"""Tests for the HTTP API."""
import base64
import time

import pytest
from fastapi.testclient import TestClient

from siteguard.engine import build_engine
from siteguard.main import create_app
from siteguard.repositories import memory_repositories
from siteguard.services.websocket_manager import websocket_manager

from conftest import FakeProber, RecordingNotifier, down, make_png


@pytest.fixture
def api_engine():
    prober = FakeProber({"https://httpstat.us/500": down(500)})
    return build_engine(
        memory_repositories(),
        notifier=RecordingNotifier(),
        prober=prober,
        listener=websocket_manager.broadcast_check_result,
    )


@pytest.fixture
def client(api_engine):
    app = create_app(engine=api_engine, run_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


def create_target(client, **overrides):
    payload = {"name": "Example", "url": "https://example.com"}
    payload.update(overrides)
    response = client.post("/api/targets", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def run_checks(client, engine):
    """Run one tick on the app's event loop and wait for the checks it started."""
    async def tick():
        await engine.scheduler.run_tick()
        await engine.scheduler.wait_idle()

    client.portal.call(tick)


class TestTargetEndpoints:
    """CRUD over /api/targets."""

    def test_create_and_list(self, client):
        created = create_target(client)

        assert created["status"] == "checking"
        assert created["uptime"] == 100.0
        assert created["check_interval"] == 60

        listed = client.get("/api/targets").json()
        assert [t["id"] for t in listed] == [created["id"]]

    def test_interval_below_minimum_rejected(self, client):
        response = client.post(
            "/api/targets",
            json={"name": "Example", "url": "https://example.com", "check_interval": 10},
        )
        assert response.status_code == 422

    def test_blank_name_rejected(self, client):
        response = client.post("/api/targets", json={"name": "   ", "url": "https://example.com"})
        assert response.status_code == 422
        assert response.json()["detail"] == "Target name is required"

    def test_reference_snapshot_upload(self, client):
        encoded = base64.b64encode(make_png()).decode()
        created = create_target(
            client,
            image_monitoring=True,
            reference_snapshots=[
                {"label": "home", "data": f"data:image/png;base64,{encoded}"},
                {"data": encoded},
            ],
        )
        assert [s["label"] for s in created["reference_snapshots"]] == ["home", "Reference 2"]
        assert created["reference_snapshots"][0]["size_bytes"] == len(make_png())

    def test_invalid_snapshot_rejected(self, client):
        response = client.post(
            "/api/targets",
            json={"name": "Example", "url": "https://example.com", "reference_snapshots": [{"data": "not base64!"}]},
        )
        assert response.status_code == 422
        assert response.json()["detail"].startswith("Reference snapshot 1")

    def test_get_update_delete(self, client):
        created = create_target(client)
        target_url = f"/api/targets/{created['id']}"

        assert client.get(target_url).json()["name"] == "Example"

        updated = client.put(target_url, json={"name": "Renamed", "check_interval": 300})
        assert updated.status_code == 200
        assert updated.json()["name"] == "Renamed"
        assert updated.json()["check_interval"] == 300

        assert client.delete(target_url).status_code == 204
        assert client.get(target_url).status_code == 404
        assert client.delete(target_url).status_code == 404

    @pytest.mark.parametrize("field_name", [
        "name", "url", "check_interval", "image_monitoring", "reference_snapshots",
    ])
    def test_update_with_null_rejected(self, client, field_name):
        created = create_target(client)

        response = client.put(f"/api/targets/{created['id']}", json={field_name: None})

        assert response.status_code == 422
        assert field_name in response.json()["detail"]
        assert client.get(f"/api/targets/{created['id']}").json()["name"] == "Example"

    def test_unknown_target(self, client):
        assert client.get("/api/targets/missing").status_code == 404
        assert client.put("/api/targets/missing", json={"name": "x"}).status_code == 404
        assert client.get("/api/targets/missing/history").status_code == 404
        assert client.get("/api/targets/missing/stats").status_code == 404

    def test_history_and_stats_after_check(self, client, api_engine):
        created = create_target(client, url="https://httpstat.us/500")
        run_checks(client, api_engine)

        target = client.get(f"/api/targets/{created['id']}").json()
        assert target["status"] == "down"
        assert target["response_time_ms"] == 0

        history = client.get(f"/api/targets/{created['id']}/history").json()
        assert [(h["status"], h["status_code"]) for h in history] == [("down", 500)]

        stats = client.get(f"/api/targets/{created['id']}/stats").json()
        assert stats["count"] == 0

    def test_response_time_series(self, client):
        created = create_target(client)
        points = client.get(f"/api/targets/{created['id']}/response-times", params={"hours": 6}).json()
        assert len(points) == 7
        assert all(p["response_time_ms"] > 0 for p in points)


class TestAlertEndpoints:
    """Rules and events under /api/alerts."""

    def test_rule_lifecycle(self, client):
        target = create_target(client)

        response = client.post("/api/alerts/rules", json={
            "target_id": target["id"],
            "kind": "response_time",
            "threshold": 2000,
            "sms": True,
            "recipients": ["ops@example.com", "+15550001111"],
        })
        assert response.status_code == 201, response.text
        rule = response.json()
        assert rule["threshold"] == "2000"
        assert rule["condition"] == "Response time > 2000ms"
        assert rule["channels"] == ["email", "sms"]

        listed = client.get("/api/alerts/rules", params={"target_id": target["id"]}).json()
        assert [r["id"] for r in listed] == [rule["id"]]

        updated = client.put(f"/api/alerts/rules/{rule['id']}", json={"enabled": False}).json()
        assert updated["enabled"] is False

        assert client.delete(f"/api/alerts/rules/{rule['id']}").status_code == 204
        assert client.delete(f"/api/alerts/rules/{rule['id']}").status_code == 404

    def test_rule_validation(self, client):
        target = create_target(client)
        bad_kind = client.post("/api/alerts/rules", json={"target_id": target["id"], "kind": "bogus"})
        assert bad_kind.status_code == 422

        no_threshold = client.post("/api/alerts/rules", json={"target_id": target["id"], "kind": "ssl_expiry"})
        assert no_threshold.status_code == 422

        unknown_target = client.post("/api/alerts/rules", json={"target_id": "missing", "kind": "downtime"})
        assert unknown_target.status_code == 404

    def test_events_acknowledge_and_resolve(self, client, api_engine):
        target = create_target(client, name="Status 500", url="https://httpstat.us/500")
        client.post("/api/alerts/rules", json={"target_id": target["id"], "kind": "downtime"})
        run_checks(client, api_engine)

        events = client.get("/api/alerts/events").json()
        assert len(events) == 1
        event = events[0]
        assert event["severity"] == "critical"
        assert event["status"] == "active"
        assert "Status 500" in event["message"]

        acked = client.post(f"/api/alerts/events/{event['id']}/acknowledge").json()
        assert acked["status"] == "acknowledged"
        resolved = client.post(f"/api/alerts/events/{event['id']}/resolve").json()
        assert resolved["status"] == "resolved"

    def test_rule_update_with_null_rejected(self, client):
        target = create_target(client)
        rule = client.post("/api/alerts/rules", json={"target_id": target["id"], "kind": "downtime"}).json()

        for field_name in ("name", "kind", "enabled", "recipients"):
            response = client.put(f"/api/alerts/rules/{rule['id']}", json={field_name: None})
            assert response.status_code == 422, field_name

        cleared = client.put(f"/api/alerts/rules/{rule['id']}", json={"threshold": None})
        assert cleared.status_code == 200

    def test_send_test_notification(self, client, api_engine):
        response = client.post("/api/alerts/test/email", json={"recipient": "ops@example.com"})

        assert response.status_code == 200, response.text
        assert response.json()["success"] is True
        [(channel, recipients, subject, body)] = api_engine.alerts.notifier.sent
        assert channel.value == "email"
        assert recipients == ["ops@example.com"]
        assert subject == "SiteGuard - Test Notification"

    def test_test_notification_custom_message(self, client, api_engine):
        response = client.post(
            "/api/alerts/test/sms",
            json={"recipient": "+15550001111", "message": "Pager check"},
        )

        assert response.status_code == 200, response.text
        assert api_engine.alerts.notifier.sent[0][3] == "Pager check"

    def test_test_notification_validation(self, client, api_engine):
        wrong_channel = client.post("/api/alerts/test/sms", json={"recipient": "ops@example.com"})
        assert wrong_channel.status_code == 422

        unknown_channel = client.post("/api/alerts/test/fax", json={"recipient": "ops@example.com"})
        assert unknown_channel.status_code == 422

        missing_recipient = client.post("/api/alerts/test/email", json={})
        assert missing_recipient.status_code == 422

        assert api_engine.alerts.notifier.sent == []

    def test_test_notification_delivery_failure(self, client, api_engine):
        api_engine.alerts.notifier = RecordingNotifier(fail=True)

        response = client.post("/api/alerts/test/email", json={"recipient": "ops@example.com"})

        assert response.status_code == 502
        assert response.json()["detail"] == "rejected"

    def test_unknown_event(self, client):
        assert client.post("/api/alerts/events/missing/acknowledge").status_code == 404
        assert client.post("/api/alerts/events/missing/resolve").status_code == 404


class TestStatusEndpoints:

    def test_stats_without_targets(self, client):
        stats = client.get("/api/status/stats").json()
        assert stats == {
            "total": 0,
            "online": 0,
            "offline": 0,
            "checking": 0,
            "avg_response_time": 0,
            "avg_uptime": 100.0,
        }

    def test_stats_after_checks(self, client, api_engine):
        create_target(client, name="Up", url="https://example.com")
        create_target(client, name="Down", url="https://httpstat.us/500")
        create_target(client, name="Later", url="https://later.example.com", check_interval=120)
        run_checks(client, api_engine)
        create_target(client, name="Fresh", url="https://fresh.example.com")

        stats = client.get("/api/status/stats").json()

        assert stats["total"] == 4
        assert stats["online"] == 2
        assert stats["offline"] == 1
        assert stats["checking"] == 1
        assert stats["avg_response_time"] == 50
        assert stats["avg_uptime"] == 75.0

    def test_analytics_after_checks(self, client, api_engine):
        up_target = create_target(client, name="Up", url="https://example.com")
        create_target(client, name="Down", url="https://httpstat.us/500")
        run_checks(client, api_engine)

        analytics = client.get("/api/status/analytics").json()

        assert analytics["overview"] == {
            "total_uptime": 50.0,
            "avg_response_time": 50,
            "total_incidents": 1,
            "total_checks": 2,
            "visual_changes": 0,
        }
        rows = {row["name"]: row for row in analytics["targets"]}
        assert rows["Up"]["target_id"] == up_target["id"]
        assert rows["Up"]["status"] == "up"
        assert (rows["Up"]["checks"], rows["Up"]["failed_checks"]) == (1, 0)
        assert (rows["Down"]["checks"], rows["Down"]["failed_checks"]) == (1, 1)

    def test_analytics_without_targets(self, client):
        analytics = client.get("/api/status/analytics").json()
        assert analytics["overview"]["total_uptime"] == 100.0
        assert analytics["overview"]["total_checks"] == 0
        assert analytics["targets"] == []

    def test_incidents_list_down_targets(self, client, api_engine):
        create_target(client, name="Up", url="https://example.com")
        down_target = create_target(client, name="Down", url="https://httpstat.us/500")
        assert client.get("/api/status/incidents").json() == []

        run_checks(client, api_engine)

        [incident] = client.get("/api/status/incidents").json()
        assert incident["target_id"] == down_target["id"]
        assert incident["target_name"] == "Down"
        assert incident["status"] == "active"
        assert incident["detail"] == "HTTP 500"
        checked = client.get(f"/api/targets/{down_target['id']}").json()
        assert incident["started_at"] == checked["last_checked"]

    def test_monitoring_state(self, client):
        assert client.get("/api/status/active").json() == {"active": False}

        health = client.get("/api/status/health").json()
        assert health["is_active"] is False
        assert health["consecutive_errors"] == 0
        assert health["total_targets"] == 0

        reset = client.post("/api/status/reset-errors")
        assert reset.status_code == 200
        assert reset.json()["consecutive_errors"] == 0

    def test_app_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "monitoring_active": False}

    def test_status_feed_streams_check_results(self, client, api_engine):
        created = create_target(client)

        with client.websocket_connect("/ws/status") as websocket:
            for _ in range(100):
                if websocket_manager.connection_count:
                    break
                time.sleep(0.01)

            run_checks(client, api_engine)
            message = websocket.receive_json()

        assert message["type"] == "status_update"
        assert message["target_id"] == created["id"]
        assert message["status"] == "up"
        assert message["response_time_ms"] == 100
