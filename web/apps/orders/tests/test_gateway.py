import httpx
import pytest


@pytest.mark.django_db
def test_health_reports_database(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json() == {"ok": True, "components": {"db": {"ok": True}}}


@pytest.mark.django_db
def test_health_reports_unreachable_catalog(client, settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = True

    def fake_get(*args, **kwargs):
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx, "get", fake_get)

    r = client.get("/health/")

    assert r.status_code == 503
    assert r.json()["components"]["catalog"] == {"ok": False}


def test_ping_is_public(client):
    r = client.get("/api/orders/ping/")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_request_id_is_echoed(client):
    r = client.get("/api/orders/ping/", HTTP_X_REQUEST_ID="abc-123")
    assert r["X-Request-ID"] == "abc-123"


def test_unsafe_request_id_is_replaced(client):
    r = client.get("/api/orders/ping/", HTTP_X_REQUEST_ID="bad id\nwith newline")
    assert r["X-Request-ID"] != "bad id\nwith newline"
    assert r["X-Request-ID"]
