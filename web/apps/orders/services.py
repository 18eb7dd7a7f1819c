"""Order services: assembly, lifecycle and queries.

The services orchestrate the catalog and ledger ports defined in
``domain``. They own every business rule about placing orders, moving them
through their lifecycle and reading them back, and they keep stock
consistent with orders: stock is taken when an order is placed and given
back exactly once when it is cancelled.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional
from uuid import UUID, uuid4

from .domain import (
    PERIOD_FORMATS,
    TERMINAL_STATUSES,
    Address,
    BookSummary,
    Caller,
    CartItem,
    CatalogPort,
    Order,
    OrderAnalytics,
    OrderFilters,
    OrderLedgerPort,
    OrderLine,
    OrderStatus,
    Page,
    PaymentMethod,
    PaymentStatus,
    PricingPolicy,
    SalesBucket,
    can_transition,
)
from .errors import (
    BookNotFound,
    Forbidden,
    InsufficientStock,
    InvalidTransition,
    OrderError,
    OrderNotFound,
    PersistenceError,
    ValidationError,
)

logger = logging.getLogger(__name__)

NOTES_MAX_LENGTH = 500
REASON_MAX_LENGTH = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}", field=field_name) from None


def _restock_reference(order: Order) -> str:
    return f"restock:{order.id}"


def _reservation_reference() -> str:
    return f"reserve:{uuid4()}"


class OrderAssembler:
    """Turns a cart into a priced, persisted order.

    Every cart line is checked against the catalog before anything is
    written. Only when the whole cart is valid does the assembler persist
    the order and take the stock, inside one ledger transaction.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        ledger: OrderLedgerPort,
        pricing: Optional[PricingPolicy] = None,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.pricing = pricing or PricingPolicy()

    def place_order(
        self,
        user_id: int,
        items: List[CartItem],
        payment_method,
        shipping_address: Address,
        billing_address: Optional[Address] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """Validate the cart, price it, persist the order and take stock.

        Args:
            user_id: Owner of the new order.
            items: Cart lines in the order the customer submitted them.
            payment_method: A ``PaymentMethod`` or its string value.
            shipping_address: Fully populated delivery address.
            billing_address: Defaults to the shipping address.
            notes: Optional free text, at most 500 characters.

        Returns:
            The persisted order with ``status`` and ``payment_status``
            both ``pending``.

        Raises:
            ValidationError: Malformed cart, address or payment method.
            BookNotFound: A line references a missing or inactive book.
            InsufficientStock: A book holds fewer copies than requested.
            PersistenceError: The order could not be stored.
        """
        method = _coerce(PaymentMethod, payment_method, "paymentMethod")
        billing_address = billing_address or shipping_address
        self._check_request(items, shipping_address, billing_address, notes)

        lines = self._price_lines(items)
        totals = self.pricing.totals(lines)
        order = Order(
            id=None,
            user_id=user_id,
            items=lines,
            payment_method=method,
            shipping_address=shipping_address,
            billing_address=billing_address,
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            notes=notes or None,
        )
        moves = order.stock_moves()
        reservation = _reservation_reference()

        try:
            with self.ledger.atomic():
                saved = self.ledger.add(order)
                self.catalog.decrement_stock(moves, reference=reservation)
        except PersistenceError:
            # The catalog may have applied the decrement before the call failed
            self._release_reservation(moves, reservation, user_id)
            raise
        except OrderError:
            raise
        except Exception as exc:
            self._release_reservation(moves, reservation, user_id)
            logger.exception("order persistence failed", extra={"user_id": user_id})
            raise PersistenceError("Order could not be stored") from exc

        logger.info(
            "order placed",
            extra={"order_id": str(saved.id), "user_id": user_id, "total": str(saved.total)},
        )
        return saved

    def _release_reservation(self, moves: List[CartItem], reservation: str, user_id: int) -> None:
        """Hand back stock a non-transactional catalog may still hold.

        A release the catalog cannot take right now is recorded on the
        ledger and retried by ``OrderLifecycleManager.release_pending_reservations``.
        """
        if self.catalog.transactional:
            return
        try:
            self.catalog.release_stock(moves, reference=reservation)
            return
        except PersistenceError:
            logger.warning(
                "stock release deferred",
                extra={"reference": reservation, "user_id": user_id},
                exc_info=True,
            )
        try:
            self.ledger.defer_release(reservation, moves)
        except Exception:
            logger.exception("stock release could not be recorded", extra={"reference": reservation})

    def _check_request(self, items, shipping_address, billing_address, notes) -> None:
        if not items:
            raise ValidationError("Order must contain at least one item", field="items")
        for item in items:
            if isinstance(item.quantity, bool) or not isinstance(item.quantity, int) or item.quantity < 1:
                raise ValidationError("Quantity must be at least 1", field="quantity")
        for label, address in (("shippingAddress", shipping_address), ("billingAddress", billing_address)):
            if address is None:
                raise ValidationError(f"{label} is required", field=label)
            missing = address.missing_fields()
            if missing:
                raise ValidationError(f"{label} is incomplete", field=label, missing=missing)
        if notes and len(notes) > NOTES_MAX_LENGTH:
            raise ValidationError("Notes cannot exceed 500 characters", field="notes")

    def _price_lines(self, items: Iterable[CartItem]) -> List[OrderLine]:
        lines = []
        books = {}
        requested = {}
        for item in items:
            book = books.get(item.book_id)
            if book is None:
                book = self.catalog.get_book(item.book_id)
                if book is None or not book.is_active:
                    raise BookNotFound(item.book_id)
                books[item.book_id] = book
            requested[item.book_id] = requested.get(item.book_id, 0) + item.quantity
            if book.stock < requested[item.book_id]:
                raise InsufficientStock(
                    book.id, requested=requested[item.book_id], available=book.stock, title=book.title
                )
            lines.append(
                OrderLine(book_id=book.id, quantity=item.quantity, price=book.price, discount=book.discount)
            )
        return lines


class OrderLifecycleManager:
    """Owns the order status graph and the payment fields.

    Cancelling gives the stock back. With a transactional catalog the
    restoration commits together with the status change; otherwise the
    cancellation commits first and the restoration follows, flagged by
    ``stock_restored`` so ``restore_pending_stock`` can finish it later.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        ledger: OrderLedgerPort,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.catalog = catalog
        self.ledger = ledger
        self.clock = clock

    def update_status(
        self,
        order_id: UUID,
        new_status,
        reason: Optional[str] = None,
        estimated_delivery: Optional[datetime] = None,
    ) -> Order:
        target = _coerce(OrderStatus, new_status, "status")
        if reason and len(reason) > REASON_MAX_LENGTH:
            raise ValidationError("Cancellation reason cannot exceed 200 characters", field="reason")

        with self.ledger.atomic():
            order = self._load(order_id, for_update=True)
            previous = order.status
            if not can_transition(previous, target):
                raise InvalidTransition(previous, target)

            now = self.clock()
            order.status = target
            if estimated_delivery is not None:
                order.estimated_delivery = estimated_delivery
            if target is OrderStatus.DELIVERED:
                order.delivered_at = now
            elif target is OrderStatus.CANCELLED:
                order.cancelled_at = now
                if reason:
                    order.cancellation_reason = reason
            order = self.ledger.save(order)

            if target is OrderStatus.CANCELLED and self.catalog.transactional:
                order = self._restore_stock(order)

        logger.info(
            "order status changed",
            extra={"order_id": str(order_id), "from": previous.value, "to": target.value},
        )
        if target is OrderStatus.CANCELLED and not order.stock_restored:
            order = self._try_restore_stock(order)
        return order

    def cancel_order(self, order_id: UUID, caller: Caller, reason: Optional[str] = None) -> Order:
        order = self._load(order_id)
        if not caller.can_access(order):
            raise Forbidden("Access denied. You can only cancel your own orders.")
        if order.status in TERMINAL_STATUSES:
            raise InvalidTransition(order.status, OrderStatus.CANCELLED)
        return self.update_status(order_id, OrderStatus.CANCELLED, reason=reason)

    def update_payment_status(self, order_id: UUID, payment_status, payment_id: Optional[str] = None) -> Order:
        """Record a payment outcome.

        Payment status is independent of the fulfilment status; callers
        coordinate the two.
        """
        target = _coerce(PaymentStatus, payment_status, "paymentStatus")
        with self.ledger.atomic():
            order = self._load(order_id, for_update=True)
            order.payment_status = target
            if payment_id is not None:
                order.payment_id = payment_id
            order = self.ledger.save(order)
        logger.info(
            "order payment updated",
            extra={"order_id": str(order_id), "payment_status": target.value},
        )
        return order

    def restore_pending_stock(self, limit: int = 100) -> int:
        """Finish stock restoration for cancelled orders that missed it.

        Returns:
            Number of orders whose stock is now restored.
        """
        pending = self.ledger.find(
            OrderFilters(status=OrderStatus.CANCELLED, stock_restored=False), offset=0, limit=limit
        )
        restored = 0
        for order in pending:
            if self._try_restore_stock(order).stock_restored:
                restored += 1
        return restored

    def release_pending_reservations(self, limit: int = 100) -> int:
        """Retry stock releases deferred by failed order placements.

        Returns:
            Number of deferred releases the catalog has now settled.
        """
        settled = 0
        for reference, moves in self.ledger.pending_releases(limit):
            try:
                self.catalog.release_stock(moves, reference=reference)
            except PersistenceError:
                logger.warning("stock release still pending", extra={"reference": reference}, exc_info=True)
                continue
            self.ledger.clear_release(reference)
            logger.info("deferred stock release settled", extra={"reference": reference})
            settled += 1
        return settled

    def _load(self, order_id: UUID, for_update: bool = False) -> Order:
        order = self.ledger.get(order_id, for_update=for_update)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _restore_stock(self, order: Order) -> Order:
        if order.stock_restored:
            return order
        self.catalog.increment_stock(order.stock_moves(), reference=_restock_reference(order))
        order.stock_restored = True
        order = self.ledger.save(order)
        logger.info("stock restored", extra={"order_id": str(order.id)})
        return order

    def _try_restore_stock(self, order: Order) -> Order:
        try:
            with self.ledger.atomic():
                return self._restore_stock(self._load(order.id, for_update=True))
        except PersistenceError:
            logger.warning(
                "stock restoration deferred",
                extra={"order_id": str(order.id)},
                exc_info=True,
            )
            return order


class OrderQueryService:
    """Read side: single orders, paginated lists and admin reports."""

    def __init__(
        self,
        ledger: OrderLedgerPort,
        catalog: CatalogPort,
        recent_limit: int = 5,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.ledger = ledger
        self.catalog = catalog
        self.recent_limit = recent_limit
        self.clock = clock

    def get_order_by_id(self, order_id: UUID, caller: Caller) -> Order:
        order = self.ledger.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if not caller.can_access(order):
            raise Forbidden("Access denied. You can only view your own orders.")
        self.attach_books([order])
        return order

    def get_user_orders(self, user_id: int, page: int = 1, limit: int = 10) -> Page:
        return self._page(OrderFilters(user_id=user_id), page, limit)

    def get_all_orders(self, filters: Optional[OrderFilters] = None, page: int = 1, limit: int = 20) -> Page:
        return self._page(filters or OrderFilters(), page, limit)

    def get_order_analytics(self, now: Optional[datetime] = None) -> OrderAnalytics:
        now = now or self.clock()
        start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        start_of_year = start_of_month.replace(month=1)
        paid = PaymentStatus.PAID
        recent = self.ledger.find(OrderFilters(), offset=0, limit=self.recent_limit)
        self.attach_books(recent)

        return OrderAnalytics(
            total_orders=self.ledger.count(OrderFilters()),
            monthly_orders=self.ledger.count(OrderFilters(created_from=start_of_month)),
            yearly_orders=self.ledger.count(OrderFilters(created_from=start_of_year)),
            total_revenue=self.ledger.revenue(OrderFilters(payment_status=paid)),
            monthly_revenue=self.ledger.revenue(OrderFilters(payment_status=paid, created_from=start_of_month)),
            status_distribution=self.ledger.breakdown("status"),
            payment_method_distribution=self.ledger.breakdown("payment_method"),
            recent_orders=recent,
        )

    def get_sales_report(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        group_by: str = "day",
    ) -> List[SalesBucket]:
        if group_by not in PERIOD_FORMATS:
            raise ValidationError(f"Invalid groupBy: {group_by!r}", field="groupBy")
        filters = OrderFilters(payment_status=PaymentStatus.PAID, created_from=start_date, created_to=end_date)
        return self.ledger.sales_buckets(filters, group_by)

    def _page(self, filters: OrderFilters, page: int, limit: int) -> Page:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive integers", field="page")
        orders = self.ledger.find(filters, offset=(page - 1) * limit, limit=limit)
        self.attach_books(orders)
        return Page(items=orders, page=page, limit=limit, total=self.ledger.count(filters))

    def attach_books(self, orders: List[Order]) -> None:
        """Fill ``order.books`` with catalog summaries, best effort."""
        book_ids = {line.book_id for order in orders for line in order.items}
        if not book_ids:
            return
        try:
            books = self.catalog.get_books(book_ids)
        except PersistenceError:
            logger.warning("book summaries unavailable", exc_info=True)
            return
        summaries = {
            book_id: BookSummary(id=book.id, title=book.title, author=book.author)
            for book_id, book in books.items()
        }
        for order in orders:
            order.books = {
                line.book_id: summaries[line.book_id]
                for line in order.items
                if line.book_id in summaries
            }
