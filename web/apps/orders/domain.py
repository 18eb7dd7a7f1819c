"""Domain models, ports and pricing rules for bookstore orders.

This module contains the dataclasses that describe books, carts and
orders, the order status graph, the pricing policy (tax and shipping),
and the protocol definitions (ports) for the two collaborators the order
services depend on: the catalog store that owns book stock and the order
ledger that persists orders. Nothing here touches Django or the network.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from math import ceil
from typing import ContextManager, Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import UUID


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle states of an order.

    ``DELIVERED`` and ``CANCELLED`` are terminal.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, Enum):
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    PAYPAL = "paypal"
    STRIPE = "stripe"
    RAZORPAY = "razorpay"
    CASH_ON_DELIVERY = "cash_on_delivery"


# ---- Status graph ----
FULFILMENT_FLOW = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
CANCELLABLE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PROCESSING}
)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """Return True when ``target`` is reachable from ``current``.

    Fulfilment only moves forward (skipping intermediate steps is allowed),
    cancellation is only possible before the order ships, and terminal
    statuses accept nothing.
    """
    if current in TERMINAL_STATUSES:
        return False
    if target is OrderStatus.CANCELLED:
        return current in CANCELLABLE_STATUSES
    return FULFILMENT_FLOW.index(target) > FULFILMENT_FLOW.index(current)


# ---- Pricing ----
def effective_price(price: Decimal, discount: Decimal) -> Decimal:
    """Unit price after applying a percentage discount."""
    if discount > 0:
        return price - price * discount / 100
    return price


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


@dataclass(frozen=True)
class PricingPolicy:
    """Fixed tax and shipping formulas applied to a cart.

    Attributes:
        tax_rate: Fraction of the subtotal charged as tax.
        free_shipping_over: Subtotals strictly above this ship for free.
        flat_shipping: Shipping charged otherwise.
    """

    tax_rate: Decimal = Decimal("0.10")
    free_shipping_over: Decimal = Decimal("100")
    flat_shipping: Decimal = Decimal("10")

    def totals(self, lines: Iterable["OrderLine"]) -> Totals:
        subtotal = sum((line.line_total for line in lines), Decimal("0"))
        tax = subtotal * self.tax_rate
        shipping = Decimal("0") if subtotal > self.free_shipping_over else self.flat_shipping
        return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=subtotal + tax + shipping)


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class Book:
    """Catalog view of a book as seen by the order core."""

    id: UUID
    title: str
    author: str
    price: Decimal
    discount: Decimal = Decimal("0")
    stock: int = 0
    is_active: bool = True

    @property
    def effective_price(self) -> Decimal:
        return effective_price(self.price, self.discount)


@dataclass(frozen=True)
class BookSummary:
    id: UUID
    title: str
    author: str


@dataclass(frozen=True)
class CartItem:
    """A (book, quantity) pair, used both for carts and stock moves."""

    book_id: UUID
    quantity: int


@dataclass(frozen=True)
class Address:
    name: str
    phone: str
    street: str
    city: str
    state: str
    zip_code: str
    country: str

    def missing_fields(self) -> List[str]:
        return [
            name
            for name in ("name", "phone", "street", "city", "state", "zip_code", "country")
            if not str(getattr(self, name) or "").strip()
        ]


@dataclass(frozen=True)
class OrderLine:
    """A line item with the price and discount captured at purchase time.

    Only the base price and the discount percent are stored; the effective
    price is derived so that a placed order keeps reading the same way no
    matter what happens to the catalog afterwards.
    """

    book_id: UUID
    quantity: int
    price: Decimal
    discount: Decimal = Decimal("0")

    @property
    def effective_price(self) -> Decimal:
        return effective_price(self.price, self.discount)

    @property
    def line_total(self) -> Decimal:
        return self.effective_price * self.quantity


@dataclass
class Order:
    """Container for order data.

    Line items and monetary fields are fixed once the order is placed;
    status, payment fields and the lifecycle timestamps change through the
    lifecycle manager only. ``books`` holds catalog summaries resolved for
    presentation and is never persisted.
    """

    id: Optional[UUID]
    user_id: int
    items: List[OrderLine]
    payment_method: PaymentMethod
    shipping_address: Address
    billing_address: Address
    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_id: Optional[str] = None
    notes: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    stock_restored: bool = False
    number: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    books: Dict[UUID, BookSummary] = field(default_factory=dict, compare=False)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.items)

    def stock_moves(self) -> List[CartItem]:
        """Quantities per book, merged, in first-seen order."""
        merged: Dict[UUID, int] = {}
        for line in self.items:
            merged[line.book_id] = merged.get(line.book_id, 0) + line.quantity
        return [CartItem(book_id=book_id, quantity=qty) for book_id, qty in merged.items()]


@dataclass(frozen=True)
class Caller:
    """Who is asking: the authenticated user and whether they administer."""

    user_id: int
    is_admin: bool = False

    def can_access(self, order: Order) -> bool:
        return self.is_admin or order.user_id == self.user_id


@dataclass(frozen=True)
class OrderFilters:
    """Conjunctive predicates over orders. ``None`` means "any"."""

    user_id: Optional[int] = None
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    stock_restored: Optional[bool] = None

    def matches(self, order: Order) -> bool:
        if self.user_id is not None and order.user_id != self.user_id:
            return False
        if self.status is not None and order.status != self.status:
            return False
        if self.payment_status is not None and order.payment_status != self.payment_status:
            return False
        if self.created_from is not None and order.created_at < self.created_from:
            return False
        if self.created_to is not None and order.created_at > self.created_to:
            return False
        if self.stock_restored is not None and order.stock_restored != self.stock_restored:
            return False
        return True


@dataclass
class Page:
    items: List[Order]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return ceil(self.total / self.limit) if self.limit else 0


PERIOD_FORMATS = {"day": "%Y-%m-%d", "month": "%Y-%m", "year": "%Y"}


@dataclass(frozen=True)
class SalesBucket:
    period: str
    orders: int
    revenue: Decimal
    items: int


@dataclass
class OrderAnalytics:
    total_orders: int
    monthly_orders: int
    yearly_orders: int
    total_revenue: Decimal
    monthly_revenue: Decimal
    status_distribution: List[tuple]
    payment_method_distribution: List[tuple]
    recent_orders: List[Order]


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Port describing the catalog operations the order core needs.

    Attributes:
        transactional: True when stock changes join the order ledger's
            transaction (same database). When False, the services
            compensate or defer stock changes themselves.
    """

    transactional: bool

    def get_book(self, book_id: UUID) -> Optional[Book]:
        """Return the book or None when it does not exist."""
        raise NotImplementedError()

    def get_books(self, book_ids: Iterable[UUID]) -> Dict[UUID, Book]:
        """Return the known books among ``book_ids`` keyed by id."""
        raise NotImplementedError()

    def decrement_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> None:
        """Atomically take stock for every move, or for none of them.

        Args:
            moves: Books and quantities to take.
            reference: Optional reservation reference. A reference the
                store already holds (applied or released) changes nothing,
                so a retried call never takes the stock twice.

        Raises:
            InsufficientStock: A book does not hold the requested quantity.
            BookNotFound: A book vanished or was deactivated.
            PersistenceError: The store could not be reached.
        """
        raise NotImplementedError()

    def increment_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> bool:
        """Return stock for every move.

        Args:
            moves: Books and quantities to put back.
            reference: Optional idempotency reference; a reference the
                store has already applied is ignored.

        Returns:
            True when the stock was changed, False for a replayed reference.
        """
        raise NotImplementedError()

    def release_stock(self, moves: List[CartItem], reference: str) -> bool:
        """Undo the decrement recorded under ``reference``.

        When that decrement never reached the store, the reference is
        recorded as released so a late duplicate of it is ignored.

        Returns:
            True when stock was given back, False when there was nothing
            to give back.
        """
        raise NotImplementedError()


class OrderLedgerPort(Protocol):
    """Port describing order persistence."""

    def atomic(self) -> ContextManager:
        """Context manager grouping writes into one all-or-nothing unit."""
        raise NotImplementedError()

    def add(self, order: Order) -> Order:
        """Persist a new order, assigning id, number and timestamps."""
        raise NotImplementedError()

    def get(self, order_id: UUID, for_update: bool = False) -> Optional[Order]:
        raise NotImplementedError()

    def save(self, order: Order) -> Order:
        """Persist status, payment and lifecycle fields of an existing order."""
        raise NotImplementedError()

    def find(self, filters: OrderFilters, offset: int, limit: int) -> List[Order]:
        """Matching orders, newest first."""
        raise NotImplementedError()

    def count(self, filters: OrderFilters) -> int:
        raise NotImplementedError()

    def revenue(self, filters: OrderFilters) -> Decimal:
        """Sum of ``total`` over matching orders."""
        raise NotImplementedError()

    def breakdown(self, field_name: str) -> List[tuple]:
        """``(value, count)`` pairs for ``status`` or ``payment_method``, largest first."""
        raise NotImplementedError()

    def sales_buckets(self, filters: OrderFilters, group_by: str) -> List[SalesBucket]:
        """Orders grouped by ``day``, ``month`` or ``year``, oldest period first."""
        raise NotImplementedError()

    def defer_release(self, reference: str, moves: List[CartItem]) -> None:
        """Record a stock release that could not reach the catalog."""
        raise NotImplementedError()

    def pending_releases(self, limit: int) -> List[Tuple[str, List[CartItem]]]:
        """Deferred releases as ``(reference, moves)``, oldest first."""
        raise NotImplementedError()

    def clear_release(self, reference: str) -> None:
        raise NotImplementedError()
