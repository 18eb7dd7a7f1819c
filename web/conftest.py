from decimal import Decimal

import pytest
from django.core.cache import cache


@pytest.fixture(autouse=True)
def use_local_catalog(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.HTTP_RETRY_BACKOFF_BASE = 0.0


@pytest.fixture(autouse=True)
def reset_throttles():
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def closed_circuit():
    from apps.orders.http_adapters import _catalog_cb

    _catalog_cb.on_success()
    yield
    _catalog_cb.on_success()


@pytest.fixture
def customer(django_user_model):
    return django_user_model.objects.create_user(username="reader", password="secret")


@pytest.fixture
def other_customer(django_user_model):
    return django_user_model.objects.create_user(username="other-reader", password="secret")


@pytest.fixture
def make_book(db):
    from apps.catalog.models import BookModel

    def _make(title="Dune", author="Frank Herbert", price="20.00", discount="0", stock=5, is_active=True):
        return BookModel.objects.create(
            title=title,
            author=author,
            price=Decimal(price),
            discount=Decimal(discount),
            stock=stock,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def address():
    return {
        "name": "Ada Lovelace",
        "phone": "+441234567890",
        "street": "12 St James's Square",
        "city": "London",
        "state": "Greater London",
        "zipCode": "SW1Y4",
        "country": "United Kingdom",
    }
