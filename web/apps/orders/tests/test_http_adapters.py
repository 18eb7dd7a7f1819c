import uuid
from decimal import Decimal

import httpx
import pytest

from apps.orders.adapters import InMemoryOrderLedger
from apps.orders.domain import Address, CartItem
from apps.orders.errors import BookNotFound, InsufficientStock, PersistenceError
from apps.orders.http_adapters import CircuitBreaker, HttpCatalogClient
from apps.orders.services import OrderAssembler
from gateway.middleware import REQUEST_ID_CTX


class DummyResp:
    def __init__(self, status_code, data=None):
        self.status_code = status_code
        self._data = data or {}

    def json(self):
        return self._data


@pytest.fixture
def calls(monkeypatch):
    """Record outgoing requests and answer them from a queue of responses."""
    log = {"requests": [], "responses": []}

    def fake_request(self, method, url, **kwargs):
        log["requests"].append({"method": method, "url": url, **kwargs})
        return log["responses"].pop(0)

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    return log


@pytest.fixture
def catalog():
    return HttpCatalogClient(base_url="http://catalog:9001/")


def test_get_book_maps_payload(calls, catalog):
    book_id = uuid.uuid4()
    calls["responses"].append(
        DummyResp(
            200,
            {
                "id": str(book_id),
                "title": "Dune",
                "author": "Frank Herbert",
                "price": "20.00",
                "discount": "10.00",
                "stock": 4,
                "is_active": True,
            },
        )
    )

    book = catalog.get_book(book_id)

    assert book.id == book_id
    assert book.price == Decimal("20.00")
    assert book.effective_price == Decimal("18")
    assert book.stock == 4
    assert calls["requests"][0]["method"] == "GET"
    assert calls["requests"][0]["url"] == f"http://catalog:9001/books/{book_id}"


def test_get_book_returns_none_on_404(calls, catalog):
    calls["responses"].append(DummyResp(404, {"detail": "BOOK_NOT_FOUND"}))
    assert catalog.get_book(uuid.uuid4()) is None


def test_decrement_maps_409_to_insufficient_stock(calls, catalog):
    book_id = uuid.uuid4()
    calls["responses"].append(
        DummyResp(
            409,
            {"detail": "INSUFFICIENT_STOCK", "book_id": str(book_id), "title": "Dune", "requested": 3, "available": 1},
        )
    )

    with pytest.raises(InsufficientStock) as exc:
        catalog.decrement_stock([CartItem(book_id, 3)])

    assert exc.value.book_id == book_id
    assert exc.value.available == 1
    assert calls["requests"][0]["json"] == {"items": [{"book_id": str(book_id), "quantity": 3}], "reference": None}


def test_decrement_maps_404_to_book_not_found(calls, catalog):
    book_id = uuid.uuid4()
    calls["responses"].append(DummyResp(404, {"detail": "BOOK_NOT_FOUND", "book_id": str(book_id)}))

    with pytest.raises(BookNotFound):
        catalog.decrement_stock([CartItem(book_id, 1)])


def test_increment_reports_replayed_reference(calls, catalog):
    calls["responses"].append(DummyResp(200, {"applied": False}))

    applied = catalog.increment_stock([CartItem(uuid.uuid4(), 2)], reference="restock:abc")

    assert applied is False
    assert calls["requests"][0]["json"]["reference"] == "restock:abc"


def test_unexpected_client_error_is_not_retried(calls, catalog):
    calls["responses"].append(DummyResp(422, {"detail": "bad"}))

    with pytest.raises(PersistenceError):
        catalog.get_book(uuid.uuid4())

    assert len(calls["requests"]) == 1


def test_request_id_is_propagated(calls, catalog):
    calls["responses"].append(DummyResp(404))
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        catalog.get_book(uuid.uuid4())
    finally:
        REQUEST_ID_CTX.reset(token)

    headers = calls["requests"][0]["headers"]
    assert headers["X-Request-ID"] == "rid-42"
    assert headers["X-Circuit-State"] == "CLOSED"
    assert headers["X-Retry-Count"] == "0"


def test_release_posts_reference(calls, catalog):
    book_id = uuid.uuid4()
    calls["responses"].append(DummyResp(200, {"released": True}))

    released = catalog.release_stock([CartItem(book_id, 2)], reference="reserve:abc")

    assert released is True
    assert calls["requests"][0]["url"] == "http://catalog:9001/stock/release"
    assert calls["requests"][0]["json"] == {
        "items": [{"book_id": str(book_id), "quantity": 2}],
        "reference": "reserve:abc",
    }


class FakeCatalogService:
    """Stock bookkeeping of the catalog service for a single book.

    ``lose_responses`` decrements are applied and then time out before
    their response reaches the client.
    """

    def __init__(self, stock):
        self.book_id = uuid.uuid4()
        self.stock = stock
        self.movements = {}
        self.lose_responses = 0
        self.paths = []

    def __call__(self, method, url, json=None, headers=None, **kwargs):
        path = url.split("http://catalog:9001")[1]
        self.paths.append(path)
        if method == "GET":
            return DummyResp(
                200,
                {
                    "id": str(self.book_id),
                    "title": "Dune",
                    "author": "Frank Herbert",
                    "price": "20.00",
                    "discount": "0",
                    "stock": self.stock,
                    "is_active": True,
                },
            )
        reference = json["reference"]
        quantity = sum(item["quantity"] for item in json["items"])
        if path == "/stock/decrement":
            applied = reference not in self.movements
            if applied:
                self.movements[reference] = "reserved"
                self.stock -= quantity
            if self.lose_responses:
                self.lose_responses -= 1
                raise httpx.ReadTimeout("timed out")
            return DummyResp(200, {"ok": True, "applied": applied})
        if path == "/stock/release":
            state = self.movements.get(reference)
            self.movements[reference] = "released"
            if state == "reserved":
                self.stock += quantity
            return DummyResp(200, {"released": state == "reserved"})
        raise AssertionError(f"unexpected call {method} {path}")


ADDRESS = Address("Ada Lovelace", "+441234567890", "12 St James's Square", "London", "Greater London", "SW1Y4", "UK")


@pytest.fixture
def service(monkeypatch, settings):
    settings.HTTP_RETRY_MAX = 3
    monkeypatch.setattr("apps.orders.http_adapters.time.sleep", lambda _s: None)
    monkeypatch.setattr("apps.orders.http_adapters._catalog_cb", CircuitBreaker("catalog", 5, 30))
    fake = FakeCatalogService(stock=5)
    monkeypatch.setattr(httpx.Client, "request", fake, raising=True)
    return fake


def test_retried_decrement_after_lost_response_takes_stock_once(service, catalog):
    service.lose_responses = 1
    assembler = OrderAssembler(catalog, InMemoryOrderLedger())

    order = assembler.place_order(1, [CartItem(service.book_id, 2)], "paypal", ADDRESS)

    assert order.items[0].quantity == 2
    assert service.stock == 3
    assert service.paths.count("/stock/decrement") == 2
    assert list(service.movements.values()) == ["reserved"]


def test_decrement_timing_out_on_every_attempt_is_released(service, catalog):
    service.lose_responses = 3
    ledger = InMemoryOrderLedger()
    assembler = OrderAssembler(catalog, ledger)

    with pytest.raises(PersistenceError):
        assembler.place_order(1, [CartItem(service.book_id, 2)], "paypal", ADDRESS)

    assert service.stock == 5
    assert service.paths[-1] == "/stock/release"
    assert list(service.movements.values()) == ["released"]
    assert ledger.pending_releases(10) == []
