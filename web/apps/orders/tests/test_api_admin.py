"""API tests for the admin endpoints: listing, status, payment and reports."""

import pytest

from apps.orders.models import OrderModel

CREATE_URL = "/api/orders/"
ALL_URL = "/api/orders/admin/all/"
STATUS_URL = "/api/orders/admin/{oid}/status/"
PAYMENT_URL = "/api/orders/admin/{oid}/payment/"
ANALYTICS_URL = "/api/orders/admin/analytics/"
SALES_URL = "/api/orders/admin/sales-report/"


@pytest.fixture
def placed(client, customer, make_book, address):
    """Two orders placed by ``customer``, oldest first."""
    book = make_book(price="10.00", stock=20)
    client.force_login(customer)
    orders = []
    for method, quantity in (("paypal", 1), ("stripe", 3)):
        r = client.post(
            CREATE_URL,
            data={
                "items": [{"book": str(book.id), "quantity": quantity}],
                "paymentMethod": method,
                "shippingAddress": address,
            },
            content_type="application/json",
        )
        assert r.status_code == 201
        orders.append(r.json())
    client.logout()
    return orders


@pytest.mark.django_db
@pytest.mark.parametrize(
    "method,url",
    [
        ("get", ALL_URL),
        ("get", ANALYTICS_URL),
        ("get", SALES_URL),
    ],
)
def test_admin_endpoints_reject_customers(client, customer, method, url):
    client.force_login(customer)
    r = getattr(client, method)(url)
    assert r.status_code == 403


@pytest.mark.django_db
def test_customer_cannot_change_status(client, customer, placed):
    client.force_login(customer)
    r = client.put(STATUS_URL.format(oid=placed[0]["id"]), data={"status": "shipped"}, content_type="application/json")
    assert r.status_code == 403
    assert OrderModel.objects.get(pk=placed[0]["id"]).status == "pending"


@pytest.mark.django_db
def test_admin_lists_all_orders_with_filters(admin_client, placed):
    OrderModel.objects.filter(pk=placed[1]["id"]).update(payment_status="paid")

    r = admin_client.get(ALL_URL)
    assert r.status_code == 200
    assert r.json()["pagination"]["total"] == 2
    assert r.json()["pagination"]["limit"] == 20

    paid = admin_client.get(ALL_URL, {"paymentStatus": "paid"})
    assert [o["id"] for o in paid.json()["orders"]] == [placed[1]["id"]]

    none = admin_client.get(ALL_URL, {"paymentStatus": "paid", "status": "shipped"})
    assert none.json()["orders"] == []

    bad = admin_client.get(ALL_URL, {"status": "lost"})
    assert bad.status_code == 400


@pytest.mark.django_db
def test_admin_moves_order_forward_and_delivery_is_final(admin_client, placed):
    url = STATUS_URL.format(oid=placed[0]["id"])

    shipped = admin_client.put(
        url,
        data={"status": "shipped", "estimatedDelivery": "2030-01-10T12:00:00Z"},
        content_type="application/json",
    )
    assert shipped.status_code == 200
    assert shipped.json()["status"] == "shipped"
    assert shipped.json()["estimatedDelivery"].startswith("2030-01-10T12:00:00")

    delivered = admin_client.put(url, data={"status": "delivered"}, content_type="application/json")
    assert delivered.status_code == 200
    assert delivered.json()["deliveredAt"]

    back = admin_client.put(url, data={"status": "processing"}, content_type="application/json")
    assert back.status_code == 400
    body = back.json()
    assert body["detail"] == "INVALID_TRANSITION"
    assert body["currentStatus"] == "delivered"
    assert body["requestedStatus"] == "processing"


@pytest.mark.django_db
def test_admin_cancel_restores_stock(admin_client, placed):
    from apps.catalog.models import BookModel

    before = BookModel.objects.get().stock
    r = admin_client.put(
        STATUS_URL.format(oid=placed[1]["id"]),
        data={"status": "cancelled", "reason": "fraud check"},
        content_type="application/json",
    )

    assert r.status_code == 200
    assert r.json()["cancellationReason"] == "fraud check"
    assert BookModel.objects.get().stock == before + 3


@pytest.mark.django_db
def test_admin_updates_payment_independently(admin_client, placed):
    r = admin_client.put(
        PAYMENT_URL.format(oid=placed[0]["id"]),
        data={"paymentStatus": "paid", "paymentId": "pay_123"},
        content_type="application/json",
    )

    assert r.status_code == 200
    body = r.json()
    assert body["paymentStatus"] == "paid"
    assert body["paymentId"] == "pay_123"
    assert body["status"] == "pending"


@pytest.mark.django_db
def test_admin_rejects_unknown_payment_status(admin_client, placed):
    r = admin_client.put(
        PAYMENT_URL.format(oid=placed[0]["id"]),
        data={"paymentStatus": "settled"},
        content_type="application/json",
    )
    assert r.status_code == 400
    assert r.json()["errors"][0]["field"] == "paymentStatus"


@pytest.mark.django_db
def test_admin_analytics(admin_client, placed):
    OrderModel.objects.filter(pk=placed[1]["id"]).update(payment_status="paid")

    r = admin_client.get(ANALYTICS_URL)

    assert r.status_code == 200
    body = r.json()
    assert body["totalOrders"] == 2
    assert body["monthlyOrders"] == 2
    assert body["yearlyOrders"] == 2
    assert body["totalRevenue"] == placed[1]["total"]
    assert body["monthlyRevenue"] == placed[1]["total"]
    assert body["statusDistribution"] == [{"status": "pending", "count": 2}]
    assert {d["paymentMethod"] for d in body["paymentMethodDistribution"]} == {"paypal", "stripe"}
    assert [o["id"] for o in body["recentOrders"]] == [placed[1]["id"], placed[0]["id"]]


@pytest.mark.django_db
def test_admin_sales_report(admin_client, placed):
    OrderModel.objects.filter(pk__in=[o["id"] for o in placed]).update(payment_status="paid")

    r = admin_client.get(SALES_URL, {"groupBy": "month"})

    assert r.status_code == 200
    body = r.json()
    assert body["groupBy"] == "month"
    assert len(body["salesData"]) == 1
    bucket = body["salesData"][0]
    assert bucket["orders"] == 2
    assert bucket["items"] == 4
    assert bucket["revenue"] == round(placed[0]["total"] + placed[1]["total"], 2)


@pytest.mark.django_db
def test_admin_sales_report_rejects_unknown_grouping(admin_client):
    r = admin_client.get(SALES_URL, {"groupBy": "week"})
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"
