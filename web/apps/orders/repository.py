"""Repository layer backed by the Django ORM.

This module contains the database adapters for the two order ports:
``DjangoOrderLedger`` persists orders and answers the reporting queries,
and ``BookRepository`` reads books and moves stock in the same database.
Both translate between ORM rows and the domain dataclasses so the
services never see Django model instances.
"""

from dataclasses import asdict, replace
from datetime import timezone as dt_timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

from django.db import IntegrityError, transaction
from django.db.models import Count, F, Q, Sum
from django.db.models.functions import TruncDay, TruncMonth, TruncYear
from django.utils import timezone

from apps.catalog.models import BookModel, StockMovementModel

from .domain import (
    PERIOD_FORMATS,
    Address,
    Book,
    CartItem,
    CatalogPort,
    Order,
    OrderFilters,
    OrderLedgerPort,
    OrderLine,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    SalesBucket,
)
from .errors import BookNotFound, InsufficientStock
from .models import OrderItemModel, OrderModel, PendingStockRelease

PERIOD_TRUNCS = {"day": TruncDay, "month": TruncMonth, "year": TruncYear}


def _to_book(obj: BookModel) -> Book:
    return Book(
        id=obj.id,
        title=obj.title,
        author=obj.author,
        price=obj.price,
        discount=obj.discount,
        stock=obj.stock,
        is_active=obj.is_active,
    )


def _claim(reference: str, kind: str) -> bool:
    """Record ``reference``; False when the catalog has seen it before."""
    try:
        with transaction.atomic():
            StockMovementModel.objects.create(reference=reference, kind=kind)
    except IntegrityError:
        return False
    return True


def _give_back(moves: List[CartItem]) -> None:
    now = timezone.now()
    for move in moves:
        BookModel.objects.filter(pk=move.book_id).update(stock=F("stock") + move.quantity, updated_at=now)


def _filter_q(filters: OrderFilters) -> Q:
    q = Q()
    if filters.user_id is not None:
        q &= Q(user_id=filters.user_id)
    if filters.status is not None:
        q &= Q(status=filters.status.value)
    if filters.payment_status is not None:
        q &= Q(payment_status=filters.payment_status.value)
    if filters.created_from is not None:
        q &= Q(created_at__gte=filters.created_from)
    if filters.created_to is not None:
        q &= Q(created_at__lte=filters.created_to)
    if filters.stock_restored is not None:
        q &= Q(stock_restored=filters.stock_restored)
    return q


class BookRepository(CatalogPort):
    """Catalog port over ``BookModel``.

    Stock changes are conditional ``UPDATE`` statements, so concurrent
    orders for the last copies can never drive the stock below zero. The
    repository shares the ledger's database, which makes it transactional:
    the services run order writes and stock changes in one transaction.
    References are recorded in ``StockMovementModel`` so a referenced change
    is applied at most once, as in the catalog service.
    """

    transactional = True

    def get_book(self, book_id: UUID) -> Optional[Book]:
        obj = BookModel.objects.filter(pk=book_id).first()
        return _to_book(obj) if obj is not None else None

    def get_books(self, book_ids: Iterable[UUID]) -> Dict[UUID, Book]:
        return {obj.id: _to_book(obj) for obj in BookModel.objects.filter(pk__in=list(book_ids))}

    @transaction.atomic
    def decrement_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> None:
        """Take stock for every move or, when one move fails, for none."""
        if reference is not None and not _claim(reference, StockMovementModel.Kind.RESERVED):
            return
        now = timezone.now()
        for move in moves:
            updated = BookModel.objects.filter(
                pk=move.book_id, is_active=True, stock__gte=move.quantity
            ).update(stock=F("stock") - move.quantity, updated_at=now)
            if updated:
                continue
            # Raising rolls back the moves already applied in this block.
            book = BookModel.objects.filter(pk=move.book_id, is_active=True).first()
            if book is None:
                raise BookNotFound(move.book_id)
            raise InsufficientStock(book.id, requested=move.quantity, available=book.stock, title=book.title)

    @transaction.atomic
    def increment_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> bool:
        if reference is not None and not _claim(reference, StockMovementModel.Kind.INCREMENTED):
            return False
        _give_back(moves)
        return True

    @transaction.atomic
    def release_stock(self, moves: List[CartItem], reference: str) -> bool:
        movement = StockMovementModel.objects.select_for_update().filter(pk=reference).first()
        if movement is None:
            if _claim(reference, StockMovementModel.Kind.RELEASED):
                return False
            # A concurrent decrement recorded the reservation first
            movement = StockMovementModel.objects.select_for_update().get(pk=reference)
        if movement.kind != StockMovementModel.Kind.RESERVED:
            return False
        movement.kind = StockMovementModel.Kind.RELEASED
        movement.save(update_fields=["kind", "updated_at"])
        _give_back(moves)
        return True


class DjangoOrderLedger(OrderLedgerPort):
    """Order ledger persisting ``Order`` aggregates with the Django ORM.

    An order is stored as one ``OrderModel`` row plus one ``OrderItemModel``
    row per line. Only the status, payment and lifecycle columns are ever
    updated after creation.
    """

    def atomic(self):
        return transaction.atomic()

    def add(self, order: Order) -> Order:
        """Persist a new order and its lines.

        Args:
            order: Priced domain order without an id.

        Returns:
            A copy of ``order`` carrying the generated id, number and
            timestamps.
        """
        with transaction.atomic():
            obj = OrderModel(
                user_id=order.user_id,
                subtotal=order.subtotal,
                tax=order.tax,
                shipping=order.shipping,
                total=order.total,
                item_count=order.item_count,
                status=order.status.value,
                payment_status=order.payment_status.value,
                payment_method=order.payment_method.value,
                payment_id=order.payment_id,
                shipping_address=asdict(order.shipping_address),
                billing_address=asdict(order.billing_address),
                notes=order.notes,
            )
            obj.save()
            OrderItemModel.objects.bulk_create(
                [
                    OrderItemModel(
                        order=obj,
                        position=position,
                        book_id=line.book_id,
                        quantity=line.quantity,
                        price=line.price,
                        discount=line.discount,
                    )
                    for position, line in enumerate(order.items)
                ]
            )
        return replace(
            order,
            id=obj.id,
            number=obj.number,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
        )

    def get(self, order_id: UUID, for_update: bool = False) -> Optional[Order]:
        qs = OrderModel.objects.prefetch_related("items")
        if for_update:
            qs = qs.select_for_update()
        obj = qs.filter(pk=order_id).first()
        return self._to_domain(obj) if obj is not None else None

    def save(self, order: Order) -> Order:
        now = timezone.now()
        OrderModel.objects.filter(pk=order.id).update(
            status=order.status.value,
            payment_status=order.payment_status.value,
            payment_id=order.payment_id,
            estimated_delivery=order.estimated_delivery,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            stock_restored=order.stock_restored,
            updated_at=now,
        )
        return replace(order, updated_at=now)

    def find(self, filters: OrderFilters, offset: int, limit: int) -> List[Order]:
        qs = (
            OrderModel.objects.filter(_filter_q(filters))
            .prefetch_related("items")
            .order_by("-created_at", "-number")
        )
        return [self._to_domain(obj) for obj in qs[offset:offset + limit]]

    def count(self, filters: OrderFilters) -> int:
        return OrderModel.objects.filter(_filter_q(filters)).count()

    def revenue(self, filters: OrderFilters) -> Decimal:
        total = OrderModel.objects.filter(_filter_q(filters)).aggregate(total=Sum("total"))["total"]
        return total if total is not None else Decimal("0")

    def breakdown(self, field_name: str) -> List[tuple]:
        if field_name not in ("status", "payment_method"):
            raise ValueError(f"Unsupported breakdown field: {field_name}")
        rows = (
            OrderModel.objects.order_by()
            .values(field_name)
            .annotate(count=Count("id"))
            .order_by("-count", field_name)
        )
        return [(row[field_name], row["count"]) for row in rows]

    def sales_buckets(self, filters: OrderFilters, group_by: str) -> List[SalesBucket]:
        trunc = PERIOD_TRUNCS[group_by]("created_at", tzinfo=dt_timezone.utc)
        rows = (
            OrderModel.objects.filter(_filter_q(filters))
            .order_by()
            .annotate(period=trunc)
            .values("period")
            .annotate(orders=Count("id"), revenue=Sum("total"), items=Sum("item_count"))
            .order_by("period")
        )
        fmt = PERIOD_FORMATS[group_by]
        return [
            SalesBucket(
                period=row["period"].strftime(fmt),
                orders=row["orders"],
                revenue=row["revenue"] or Decimal("0"),
                items=row["items"] or 0,
            )
            for row in rows
        ]

    def defer_release(self, reference: str, moves: List[CartItem]) -> None:
        PendingStockRelease.objects.get_or_create(
            reference=reference,
            defaults={"items": [{"book_id": str(m.book_id), "quantity": m.quantity} for m in moves]},
        )

    def pending_releases(self, limit: int) -> List[Tuple[str, List[CartItem]]]:
        return [
            (row.reference, [CartItem(book_id=UUID(item["book_id"]), quantity=item["quantity"]) for item in row.items])
            for row in PendingStockRelease.objects.order_by("created_at", "reference")[:limit]
        ]

    def clear_release(self, reference: str) -> None:
        PendingStockRelease.objects.filter(pk=reference).delete()

    @staticmethod
    def _to_domain(obj: OrderModel) -> Order:
        return Order(
            id=obj.id,
            user_id=obj.user_id,
            items=[
                OrderLine(book_id=item.book_id, quantity=item.quantity, price=item.price, discount=item.discount)
                for item in obj.items.all()
            ],
            payment_method=PaymentMethod(obj.payment_method),
            shipping_address=Address(**obj.shipping_address),
            billing_address=Address(**obj.billing_address),
            subtotal=obj.subtotal,
            tax=obj.tax,
            shipping=obj.shipping,
            total=obj.total,
            status=OrderStatus(obj.status),
            payment_status=PaymentStatus(obj.payment_status),
            payment_id=obj.payment_id,
            notes=obj.notes,
            estimated_delivery=obj.estimated_delivery,
            delivered_at=obj.delivered_at,
            cancelled_at=obj.cancelled_at,
            cancellation_reason=obj.cancellation_reason,
            stock_restored=obj.stock_restored,
            number=obj.number,
            created_at=obj.created_at,
            updated_at=obj.updated_at,
        )
