import uuid

import httpx
import pytest

from apps.orders.errors import PersistenceError
from apps.orders.http_adapters import CircuitBreaker, HttpCatalogClient


class DummyResp:
    def __init__(self, status_code, data=None):
        self.status_code = status_code
        self._data = data or {}

    def json(self):
        return self._data


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)


def test_retries_server_errors_then_succeeds(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 3
    answers = [DummyResp(502), DummyResp(503), DummyResp(404)]
    seen = []

    def fake_request(self, method, url, **kwargs):
        seen.append(kwargs["headers"]["X-Retry-Count"])
        return answers.pop(0)

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)

    assert HttpCatalogClient(base_url="http://catalog").get_book(uuid.uuid4()) is None
    assert seen == ["0", "1", "2"]


def test_transport_errors_exhaust_retry_budget(monkeypatch, settings, no_sleep):
    settings.HTTP_RETRY_MAX = 2
    attempts = []

    def fake_request(self, method, url, **kwargs):
        attempts.append(url)
        raise httpx.ConnectTimeout("slow catalog")

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)

    with pytest.raises(PersistenceError) as exc:
        HttpCatalogClient(base_url="http://catalog").get_book(uuid.uuid4())

    assert exc.value.code == "UPSTREAM_UNAVAILABLE"
    assert len(attempts) == 2


def test_circuit_breaker_transitions():
    cb = CircuitBreaker("test", fail_threshold=2, reset_timeout=0)

    assert cb.before_call() == "CLOSED"
    cb.on_failure()
    assert cb.state == "CLOSED"
    cb.on_failure()
    # reset_timeout=0 lets the open breaker try again straight away
    assert cb.state == "HALF_OPEN"

    assert cb.before_call() == "HALF_OPEN"
    with pytest.raises(RuntimeError, match="CIRCUIT_HALF_OPEN_BUSY"):
        cb.before_call()

    cb.on_failure()
    assert cb.state == "HALF_OPEN"
    assert cb.before_call() == "HALF_OPEN"
    cb.on_success()
    assert cb.state == "CLOSED"


def test_open_circuit_short_circuits(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 1
    cb = CircuitBreaker("catalog", 1, 60)
    monkeypatch.setattr("apps.orders.http_adapters._catalog_cb", cb)
    calls = []

    def fake_request(self, method, url, **kwargs):
        calls.append(url)
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    client = HttpCatalogClient(base_url="http://catalog")

    with pytest.raises(PersistenceError):
        client.get_book(uuid.uuid4())
    assert cb.state == "OPEN"

    with pytest.raises(PersistenceError) as exc:
        client.get_book(uuid.uuid4())

    assert exc.value.context["reason"] == "CIRCUIT_OPEN"
    assert len(calls) == 1
