"""API tests for the create-order endpoint.

These tests exercise ``POST /api/orders/`` end to end against the
in-database catalog: pricing, stock decrement, validation and the error
payloads clients rely on.
"""
import uuid

import httpx
import pytest

from apps.orders.models import OrderModel

CREATE_URL = "/api/orders/"


def order_payload(book, address, quantity=2, **extra):
    payload = {
        "items": [{"book": str(book.id), "quantity": quantity}],
        "paymentMethod": "credit_card",
        "shippingAddress": address,
    }
    payload.update(extra)
    return payload


@pytest.mark.django_db
def test_create_order_happy_path(client, customer, make_book, address):
    """Returns 201 with totals computed from the snapshot and takes stock."""
    book = make_book(price="20.00", discount="10", stock=5)
    client.force_login(customer)

    r = client.post(CREATE_URL, data=order_payload(book, address), content_type="application/json")

    assert r.status_code == 201
    body = r.json()
    assert body["subtotal"] == 36.0
    assert body["tax"] == 3.6
    assert body["shipping"] == 10.0
    assert body["total"] == 49.6
    assert body["status"] == "pending"
    assert body["paymentStatus"] == "pending"
    assert body["paymentMethod"] == "credit_card"
    assert body["itemCount"] == 2
    assert body["user"] == customer.pk
    assert body["billingAddress"] == body["shippingAddress"] == address
    item = body["items"][0]
    assert item["book"] == {"id": str(book.id), "title": "Dune", "author": "Frank Herbert"}
    assert item["effectivePrice"] == 18.0
    assert item["lineTotal"] == 36.0
    assert "cancelledAt" not in body
    book.refresh_from_db()
    assert book.stock == 3


@pytest.mark.django_db
def test_create_order_free_shipping_above_threshold(client, customer, make_book, address):
    book = make_book(price="60.00", stock=5)
    client.force_login(customer)

    r = client.post(CREATE_URL, data=order_payload(book, address), content_type="application/json")

    assert r.status_code == 201
    assert r.json()["shipping"] == 0.0
    assert r.json()["total"] == 132.0


@pytest.mark.django_db
def test_create_order_insufficient_stock(client, customer, make_book, address):
    """Returns 400 with requested/available counts and leaves stock untouched."""
    book = make_book(stock=5)
    client.force_login(customer)

    r = client.post(CREATE_URL, data=order_payload(book, address, quantity=6), content_type="application/json")

    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "INSUFFICIENT_STOCK"
    assert body["bookId"] == str(book.id)
    assert body["requested"] == 6
    assert body["available"] == 5
    assert OrderModel.objects.count() == 0
    book.refresh_from_db()
    assert book.stock == 5


@pytest.mark.django_db
def test_create_order_unknown_book(client, customer, address):
    client.force_login(customer)
    payload = {
        "items": [{"book": str(uuid.uuid4()), "quantity": 1}],
        "paymentMethod": "paypal",
        "shippingAddress": address,
    }

    r = client.post(CREATE_URL, data=payload, content_type="application/json")

    assert r.status_code == 400
    assert r.json()["detail"] == "BOOK_NOT_FOUND"


@pytest.mark.django_db
def test_create_order_validation_error(client, customer, make_book, address):
    """Returns 400 with per-field messages when the payload fails DTO validation."""
    book = make_book()
    client.force_login(customer)
    payload = {
        "items": [{"book": str(book.id), "quantity": 0}],
        "paymentMethod": "bitcoin",
        "shippingAddress": {**address, "phone": "0123"},
    }

    r = client.post(CREATE_URL, data=payload, content_type="application/json")

    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "VALIDATION_ERROR"
    fields = {e["field"] for e in body["errors"]}
    assert {"items.0.quantity", "paymentMethod", "shippingAddress.phone"} <= fields
    book.refresh_from_db()
    assert book.stock == 5


@pytest.mark.django_db
def test_create_order_requires_items(client, customer, address):
    client.force_login(customer)
    payload = {"items": [], "paymentMethod": "paypal", "shippingAddress": address}

    r = client.post(CREATE_URL, data=payload, content_type="application/json")

    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


@pytest.mark.django_db
def test_create_order_requires_authentication(client, make_book, address):
    r = client.post(CREATE_URL, data=order_payload(make_book(), address), content_type="application/json")
    assert r.status_code in (401, 403)
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_create_order_catalog_unavailable(client, customer, settings, address, monkeypatch):
    """Returns 503 when the remote catalog cannot be reached."""
    settings.USE_HTTP_ADAPTERS = True
    settings.HTTP_RETRY_MAX = 2

    def fake_request(self, method, url, **kwargs):
        raise httpx.ConnectError("catalog down")

    monkeypatch.setattr(httpx.Client, "request", fake_request, raising=True)
    monkeypatch.setattr("time.sleep", lambda *a, **k: None, raising=True)
    client.force_login(customer)
    payload = {
        "items": [{"book": str(uuid.uuid4()), "quantity": 1}],
        "paymentMethod": "paypal",
        "shippingAddress": address,
    }

    r = client.post(CREATE_URL, data=payload, content_type="application/json")

    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_oversized_body_is_rejected(client, customer, settings):
    settings.API_MAX_BYTES = 64
    client.force_login(customer)

    r = client.post(CREATE_URL, data={"notes": "x" * 200}, content_type="application/json")

    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"
