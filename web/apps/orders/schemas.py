"""Pydantic schemas for orders.

This module exposes the request/validation schemas used by the orders API
and the read DTOs it responds with. Field names are snake_case in Python
and camelCase on the wire. Money is kept as ``Decimal`` everywhere and only
rounded (half-up, 2 decimals) when a read DTO is serialized.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator
from pydantic.alias_generators import to_camel

from .domain import (
    Address,
    CartItem,
    Order,
    OrderAnalytics,
    OrderFilters,
    OrderStatus,
    Page,
    PaymentMethod,
    PaymentStatus,
    SalesBucket,
)

CENTS = Decimal("0.01")


def round_money(value: Decimal) -> float:
    """Round half-up to 2 decimals for presentation."""
    return float(Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))


Money = Annotated[Decimal, PlainSerializer(round_money, return_type=float)]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ---------------- Requests ---------------- #

class AddressDTO(CamelModel):
    """Postal address used for shipping and billing.

    Attributes:
        name: Recipient, 2-50 characters.
        phone: Digits with an optional leading ``+``, no leading zero.
        street: 5-100 characters.
        city: 2-50 characters.
        state: 2-50 characters.
        zip_code: 3-10 characters (``zipCode`` on the wire).
        country: 2-50 characters.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=50)
    phone: str = Field(pattern=r"^\+?[1-9]\d{0,15}$")
    street: str = Field(min_length=5, max_length=100)
    city: str = Field(min_length=2, max_length=50)
    state: str = Field(min_length=2, max_length=50)
    zip_code: str = Field(min_length=3, max_length=10)
    country: str = Field(min_length=2, max_length=50)

    def to_domain(self) -> Address:
        return Address(**self.model_dump())

    @classmethod
    def from_domain(cls, address: Address) -> "AddressDTO":
        return cls.model_construct(**vars(address))


class OrderItemIn(CamelModel):
    book: UUID
    quantity: int = Field(ge=1)


class CreateOrderDTO(CamelModel):
    """Schema for placing an order.

    Attributes:
        items: Non-empty list of ``{book, quantity}`` lines.
        payment_method: One of the accepted payment methods.
        shipping_address: Delivery address.
        billing_address: Defaults to the shipping address when omitted.
        notes: Optional free text, at most 500 characters.
    """

    items: List[OrderItemIn] = Field(min_length=1)
    payment_method: PaymentMethod
    shipping_address: AddressDTO
    billing_address: Optional[AddressDTO] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    def cart(self) -> List[CartItem]:
        return [CartItem(book_id=item.book, quantity=item.quantity) for item in self.items]


class CancelOrderDTO(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=200)


class UpdateStatusDTO(CamelModel):
    status: OrderStatus
    estimated_delivery: Optional[datetime] = None
    reason: Optional[str] = Field(default=None, max_length=200)

    @field_validator("estimated_delivery")
    @classmethod
    def delivery_as_utc(cls, value):
        return _as_utc(value)


class UpdatePaymentDTO(CamelModel):
    payment_status: PaymentStatus
    payment_id: Optional[str] = Field(default=None, max_length=100)


class PageQuery(CamelModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class AdminOrdersQuery(PageQuery):
    limit: int = Field(default=20, ge=1, le=100)
    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_as_utc(cls, value):
        return _as_utc(value)

    def to_filters(self) -> OrderFilters:
        return OrderFilters(
            status=self.status,
            payment_status=self.payment_status,
            created_from=self.start_date,
            created_to=self.end_date,
        )


class SalesReportQuery(CamelModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    group_by: Literal["day", "month", "year"] = "day"

    @field_validator("start_date", "end_date")
    @classmethod
    def dates_as_utc(cls, value):
        return _as_utc(value)


# ---------------- Responses ---------------- #

class BookRefDTO(CamelModel):
    id: UUID
    title: Optional[str] = None
    author: Optional[str] = None


class OrderItemReadDTO(CamelModel):
    book: BookRefDTO
    quantity: int
    price: Money
    discount: Money
    effective_price: Money
    line_total: Money


class OrderReadDTO(CamelModel):
    """Outbound representation of an order."""

    id: UUID
    order_number: Optional[int] = None
    user: int
    items: List[OrderItemReadDTO]
    item_count: int
    subtotal: Money
    tax: Money
    shipping: Money
    total: Money
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    payment_id: Optional[str] = None
    shipping_address: AddressDTO
    billing_address: AddressDTO
    notes: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    stock_restored: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        items = []
        for line in order.items:
            summary = order.books.get(line.book_id)
            book = BookRefDTO(
                id=line.book_id,
                title=summary.title if summary else None,
                author=summary.author if summary else None,
            )
            items.append(
                OrderItemReadDTO(
                    book=book,
                    quantity=line.quantity,
                    price=line.price,
                    discount=line.discount,
                    effective_price=line.effective_price,
                    line_total=line.line_total,
                )
            )
        return cls(
            id=order.id,
            order_number=order.number,
            user=order.user_id,
            items=items,
            item_count=order.item_count,
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping,
            total=order.total,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            shipping_address=AddressDTO.from_domain(order.shipping_address),
            billing_address=AddressDTO.from_domain(order.billing_address),
            notes=order.notes,
            estimated_delivery=order.estimated_delivery,
            delivered_at=order.delivered_at,
            cancelled_at=order.cancelled_at,
            cancellation_reason=order.cancellation_reason,
            stock_restored=order.stock_restored,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class PaginationDTO(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderPageDTO(CamelModel):
    orders: List[OrderReadDTO]
    pagination: PaginationDTO

    @classmethod
    def from_page(cls, page: Page) -> "OrderPageDTO":
        return cls(
            orders=[OrderReadDTO.from_domain(order) for order in page.items],
            pagination=PaginationDTO(page=page.page, limit=page.limit, total=page.total, pages=page.pages),
        )


class StatusCountDTO(CamelModel):
    status: OrderStatus
    count: int


class PaymentMethodCountDTO(CamelModel):
    payment_method: PaymentMethod
    count: int


class AnalyticsDTO(CamelModel):
    total_orders: int
    monthly_orders: int
    yearly_orders: int
    total_revenue: Money
    monthly_revenue: Money
    status_distribution: List[StatusCountDTO]
    payment_method_distribution: List[PaymentMethodCountDTO]
    recent_orders: List[OrderReadDTO]

    @classmethod
    def from_domain(cls, analytics: OrderAnalytics) -> "AnalyticsDTO":
        return cls(
            total_orders=analytics.total_orders,
            monthly_orders=analytics.monthly_orders,
            yearly_orders=analytics.yearly_orders,
            total_revenue=analytics.total_revenue,
            monthly_revenue=analytics.monthly_revenue,
            status_distribution=[
                StatusCountDTO(status=value, count=count) for value, count in analytics.status_distribution
            ],
            payment_method_distribution=[
                PaymentMethodCountDTO(payment_method=value, count=count)
                for value, count in analytics.payment_method_distribution
            ],
            recent_orders=[OrderReadDTO.from_domain(order) for order in analytics.recent_orders],
        )


class SalesBucketDTO(CamelModel):
    period: str
    orders: int
    revenue: Money
    items: int


class SalesReportDTO(CamelModel):
    sales_data: List[SalesBucketDTO]
    group_by: str

    @classmethod
    def from_buckets(cls, buckets: List[SalesBucket], group_by: str) -> "SalesReportDTO":
        return cls(
            sales_data=[
                SalesBucketDTO(period=b.period, orders=b.orders, revenue=b.revenue, items=b.items)
                for b in buckets
            ],
            group_by=group_by,
        )
