from io import StringIO

import pytest
from django.core.management import call_command

from apps.orders.domain import Address, CartItem
from apps.orders.models import OrderModel, PendingStockRelease
from apps.orders.repository import BookRepository, DjangoOrderLedger
from apps.orders.services import OrderAssembler

ADDRESS = Address("Ada Lovelace", "+441234567890", "12 St James's Square", "London", "Greater London", "SW1Y4", "UK")


@pytest.mark.django_db
def test_reconcile_restores_deferred_cancellations(make_book, customer):
    book = make_book(stock=5)
    order = OrderAssembler(BookRepository(), DjangoOrderLedger()).place_order(
        customer.pk, [CartItem(book.id, 2)], "paypal", ADDRESS
    )
    # Cancelled while the catalog was unreachable
    OrderModel.objects.filter(pk=order.id).update(status="cancelled", stock_restored=False)

    out = StringIO()
    call_command("reconcile_stock", stdout=out)

    assert "Restored stock for 1 orders" in out.getvalue()
    assert OrderModel.objects.get(pk=order.id).stock_restored is True
    book.refresh_from_db()
    assert book.stock == 5

    again = StringIO()
    call_command("reconcile_stock", stdout=again)
    assert "Restored stock for 0 orders" in again.getvalue()
    book.refresh_from_db()
    assert book.stock == 5


@pytest.mark.django_db
def test_reconcile_ignores_restored_and_open_orders(make_book, customer):
    book = make_book(stock=5)
    OrderAssembler(BookRepository(), DjangoOrderLedger()).place_order(
        customer.pk, [CartItem(book.id, 1)], "paypal", ADDRESS
    )

    out = StringIO()
    call_command("reconcile_stock", "--limit", "10", stdout=out)

    assert "Restored stock for 0 orders" in out.getvalue()
    book.refresh_from_db()
    assert book.stock == 4


@pytest.mark.django_db
def test_reconcile_releases_deferred_reservations(make_book):
    book = make_book(stock=5)
    # Stock taken for an order that failed to persist, release not yet delivered
    BookRepository().decrement_stock([CartItem(book.id, 2)], reference="reserve:lost")
    DjangoOrderLedger().defer_release("reserve:lost", [CartItem(book.id, 2)])
    book.refresh_from_db()
    assert book.stock == 3

    out = StringIO()
    call_command("reconcile_stock", stdout=out)

    assert "Released stock for 1 failed orders" in out.getvalue()
    assert not PendingStockRelease.objects.exists()
    book.refresh_from_db()
    assert book.stock == 5

    again = StringIO()
    call_command("reconcile_stock", stdout=again)
    assert "Released stock for 0 failed orders" in again.getvalue()
    book.refresh_from_db()
    assert book.stock == 5
