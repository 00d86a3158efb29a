from __future__ import annotations


def test_health_reports_realtime_status(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()["data"]
    assert body["ok"] is True
    assert body["dispatcher_running"] is True
    assert body["feed_subscriptions"] == 0
