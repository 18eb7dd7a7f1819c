"""HTTP views for the orders app.

Views are kept intentionally small: they validate requests (via Pydantic),
build a ``Caller`` from the authenticated Django user, delegate to the order
services obtained from ``providers`` and serialize the result with the read
DTOs. Domain errors and validation failures propagate to the project's DRF
exception handler (``apps.orders.exception_handlers``), which turns them
into ``{"detail": CODE, "message": ...}`` responses.

Idempotency: when an ``Idempotency-Key`` header is provided, the create
endpoint stores the final response under ``(key, user)``. Retries with the
same payload get the stored response back with ``Idempotent-Replay: true``;
reusing the key with a different payload returns HTTP 409.
"""

import pydantic
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from .domain import Caller
from .errors import OrderError
from .exception_handlers import validation_payload
from .idempotency import IdempotencyConflict, finalize, get_or_create_idempotent, release
from .providers import get_lifecycle_manager, get_order_assembler, get_query_service
from .schemas import (
    AdminOrdersQuery,
    AnalyticsDTO,
    CancelOrderDTO,
    CreateOrderDTO,
    OrderPageDTO,
    OrderReadDTO,
    PageQuery,
    SalesReportDTO,
    SalesReportQuery,
    UpdatePaymentDTO,
    UpdateStatusDTO,
)


def _caller(request) -> Caller:
    return Caller(user_id=request.user.pk, is_admin=request.user.is_staff)


def _order_response(order, status_code=status.HTTP_200_OK) -> Response:
    return Response(OrderReadDTO.from_domain(order).to_json(), status=status_code)


class OrdersPingView(APIView):
    """Liveness endpoint for the orders module, used by smoke tests."""

    permission_classes = [AllowAny]

    def get(self, request):
        return Response({"ok": True})


class OrdersCollectionView(APIView):
    """List the caller's orders (GET) or place a new order (POST)."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        query = PageQuery.model_validate(request.query_params.dict())
        page = get_query_service().get_user_orders(request.user.pk, page=query.page, limit=query.limit)
        return Response(OrderPageDTO.from_page(page).to_json())

    def post(self, request):
        """Place an order.

        Returns:
            Response: One of the following responses.
            - 201 with the created order.
            - 400 with ``VALIDATION_ERROR``, ``BOOK_NOT_FOUND`` or
              ``INSUFFICIENT_STOCK``.
            - 409 with ``IDEMPOTENCY_CONFLICT`` or ``IDEMPOTENCY_IN_PROGRESS``.
            - 503 with ``UPSTREAM_UNAVAILABLE`` when the order could not be
              stored or the catalog is unreachable.
            A replayed idempotent request answers with the stored status
            and body.
        """
        idem_key = request.headers.get("Idempotency-Key")

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.user.pk, request.data)
            except IdempotencyConflict as exc:
                return Response({"detail": exc.code}, status=status.HTTP_409_CONFLICT)
            if existing:
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        try:
            status_code, body, order_id = self._place(request)
        except Exception:
            # Failures that may succeed on retry keep the key reusable.
            if rec is not None:
                release(rec)
            raise

        if rec is not None:
            finalize(rec, status_code, body, order_id=order_id)
        return Response(body, status=status_code)

    def _place(self, request):
        try:
            dto = CreateOrderDTO.model_validate(request.data)
            order = get_order_assembler().place_order(
                user_id=request.user.pk,
                items=dto.cart(),
                payment_method=dto.payment_method,
                shipping_address=dto.shipping_address.to_domain(),
                billing_address=dto.billing_address.to_domain() if dto.billing_address else None,
                notes=dto.notes,
            )
        except pydantic.ValidationError as exc:
            return status.HTTP_400_BAD_REQUEST, validation_payload(exc), None
        except OrderError as exc:
            if exc.status_code >= 500:
                raise
            return exc.status_code, exc.as_dict(), None

        get_query_service().attach_books([order])
        return status.HTTP_201_CREATED, OrderReadDTO.from_domain(order).to_json(), order.id


class OrderDetailView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, order_id):
        order = get_query_service().get_order_by_id(order_id, _caller(request))
        return _order_response(order)


class CancelOrderView(APIView):
    """Cancel one of the caller's orders and give its stock back."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def put(self, request, order_id):
        dto = CancelOrderDTO.model_validate(request.data or {})
        order = get_lifecycle_manager().cancel_order(order_id, _caller(request), reason=dto.reason)
        return _order_response(order)


class AdminView(APIView):
    permission_classes = [IsAdminUser]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_admin"


class AdminOrdersView(AdminView):
    def get(self, request):
        query = AdminOrdersQuery.model_validate(request.query_params.dict())
        page = get_query_service().get_all_orders(query.to_filters(), page=query.page, limit=query.limit)
        return Response(OrderPageDTO.from_page(page).to_json())


class AdminOrderStatusView(AdminView):
    def put(self, request, order_id):
        dto = UpdateStatusDTO.model_validate(request.data)
        order = get_lifecycle_manager().update_status(
            order_id,
            dto.status,
            reason=dto.reason,
            estimated_delivery=dto.estimated_delivery,
        )
        return _order_response(order)


class AdminOrderPaymentView(AdminView):
    def put(self, request, order_id):
        dto = UpdatePaymentDTO.model_validate(request.data)
        order = get_lifecycle_manager().update_payment_status(
            order_id, dto.payment_status, payment_id=dto.payment_id
        )
        return _order_response(order)


class AdminAnalyticsView(AdminView):
    def get(self, request):
        analytics = get_query_service().get_order_analytics()
        return Response(AnalyticsDTO.from_domain(analytics).to_json())


class AdminSalesReportView(AdminView):
    def get(self, request):
        query = SalesReportQuery.model_validate(request.query_params.dict())
        buckets = get_query_service().get_sales_report(
            start_date=query.start_date, end_date=query.end_date, group_by=query.group_by
        )
        return Response(SalesReportDTO.from_buckets(buckets, query.group_by).to_json())
