from __future__ import annotations


def test_health_ok(app_client):
    _app, client = app_client
    res = client.get("/health")
    assert res.status_code == 200
    data = res.get_json()
    assert data["service"] == "trainops"
    assert data["status"] == "ok"
    assert data["checks"] == {"db": "ok", "notifier": "ok"}
    assert "time" in data
    assert "version" in data


def test_health_reports_missing_notifier(app_client):
    app, client = app_client
    app.extensions.pop("notifier")
    data = client.get("/health").get_json()
    assert data["status"] == "ok"
    assert data["checks"]["notifier"] == "missing"


def test_version_reports_testing_env(app_client):
    _app, client = app_client
    res = client.get("/version")
    assert res.status_code == 200
    data = res.get_json()
    assert data["env"] == "testing"
    assert "version" in data


def test_request_id_echoed_and_security_headers(app_client):
    _app, client = app_client
    res = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert res.headers["X-Request-ID"] == "abc-123"
    assert res.headers["X-Content-Type-Options"] == "nosniff"

    res = client.get("/health", headers={"X-Request-ID": "bad id with spaces"})
    assert res.headers["X-Request-ID"] != "bad id with spaces"


def test_unknown_route_uses_error_envelope(app_client):
    _app, client = app_client
    res = client.get("/api/v1/nope", headers={"X-Request-ID": "rid-1"})
    assert res.status_code == 404
    body = res.get_json()
    assert body["success"] is False
    assert body["error"]["code"] == "HTTP_404"
    assert body["request_id"] == "rid-1"
    assert res.headers["Cache-Control"] == "no-store"
