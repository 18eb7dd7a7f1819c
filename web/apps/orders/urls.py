from django.urls import path

from .views import (
    AdminAnalyticsView,
    AdminOrderPaymentView,
    AdminOrdersView,
    AdminOrderStatusView,
    AdminSalesReportView,
    CancelOrderView,
    OrderDetailView,
    OrdersCollectionView,
    OrdersPingView,
)

app_name = "orders"

urlpatterns = [
    path("ping/", OrdersPingView.as_view(), name="ping"),
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("admin/all/", AdminOrdersView.as_view(), name="admin-all"),
    path("admin/analytics/", AdminAnalyticsView.as_view(), name="admin-analytics"),
    path("admin/sales-report/", AdminSalesReportView.as_view(), name="admin-sales-report"),
    path("admin/<uuid:order_id>/status/", AdminOrderStatusView.as_view(), name="admin-status"),
    path("admin/<uuid:order_id>/payment/", AdminOrderPaymentView.as_view(), name="admin-payment"),
    path("<uuid:order_id>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<uuid:order_id>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
]
