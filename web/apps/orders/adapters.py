"""In-process adapters for the orders domain ports.

``InMemoryCatalog`` and ``InMemoryOrderLedger`` implement ``CatalogPort``
and ``OrderLedgerPort`` with plain dictionaries. They are intended for unit
tests and local experiments where deterministic behavior is useful and no
database is required. The catalog is deliberately non-transactional so the
services' compensation paths get exercised.
"""

import copy
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import (
    PERIOD_FORMATS,
    Book,
    CartItem,
    CatalogPort,
    Order,
    OrderFilters,
    OrderLedgerPort,
    SalesBucket,
)
from .errors import BookNotFound, InsufficientStock


class InMemoryCatalog(CatalogPort):
    """Dictionary-backed catalog with all-or-nothing stock moves.

    ``movements`` maps each reference seen so far to ``"reserved"``,
    ``"incremented"`` or ``"released"``.
    """

    transactional = False

    def __init__(self, books: Iterable[Book] = ()):
        self._books: Dict[uuid.UUID, Book] = {book.id: book for book in books}
        self.movements: Dict[str, str] = {}

    def add(self, book: Book) -> Book:
        self._books[book.id] = book
        return book

    def stock(self, book_id: uuid.UUID) -> int:
        return self._books[book_id].stock

    def get_book(self, book_id: uuid.UUID) -> Optional[Book]:
        return self._books.get(book_id)

    def get_books(self, book_ids: Iterable[uuid.UUID]) -> Dict[uuid.UUID, Book]:
        return {book_id: self._books[book_id] for book_id in book_ids if book_id in self._books}

    def decrement_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> None:
        if reference is not None and reference in self.movements:
            return
        for move in moves:
            book = self._books.get(move.book_id)
            if book is None or not book.is_active:
                raise BookNotFound(move.book_id)
            if book.stock < move.quantity:
                raise InsufficientStock(book.id, requested=move.quantity, available=book.stock, title=book.title)
        for move in moves:
            book = self._books[move.book_id]
            self._books[move.book_id] = replace(book, stock=book.stock - move.quantity)
        if reference is not None:
            self.movements[reference] = "reserved"

    def increment_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> bool:
        if reference is not None and reference in self.movements:
            return False
        self._give_back(moves)
        if reference is not None:
            self.movements[reference] = "incremented"
        return True

    def release_stock(self, moves: List[CartItem], reference: str) -> bool:
        state = self.movements.get(reference)
        self.movements[reference] = "released"
        if state != "reserved":
            return False
        self._give_back(moves)
        return True

    def _give_back(self, moves: List[CartItem]) -> None:
        for move in moves:
            book = self._books.get(move.book_id)
            if book is not None:
                self._books[move.book_id] = replace(book, stock=book.stock + move.quantity)


class InMemoryOrderLedger(OrderLedgerPort):
    """Dictionary-backed ledger.

    ``atomic()`` snapshots the store and restores it when the block raises,
    so nested blocks behave like savepoints. Orders are copied on the way
    in and out to mimic a real store.
    """

    def __init__(self, clock=None):
        self._orders: Dict[uuid.UUID, Order] = {}
        self._last_number = 0
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._releases: Dict[str, List[CartItem]] = {}

    @contextmanager
    def atomic(self):
        snapshot = copy.deepcopy((self._orders, self._last_number))
        try:
            yield
        except BaseException:
            self._orders, self._last_number = snapshot
            raise

    def add(self, order: Order) -> Order:
        now = self._clock()
        self._last_number += 1
        stored = replace(
            copy.deepcopy(order),
            id=uuid.uuid4(),
            number=self._last_number,
            created_at=now,
            updated_at=now,
            books={},
        )
        self._orders[stored.id] = stored
        return copy.deepcopy(stored)

    def get(self, order_id: uuid.UUID, for_update: bool = False) -> Optional[Order]:
        order = self._orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    def save(self, order: Order) -> Order:
        stored = replace(copy.deepcopy(order), updated_at=self._clock(), books={})
        self._orders[order.id] = stored
        return copy.deepcopy(stored)

    def _matching(self, filters: OrderFilters) -> List[Order]:
        orders = [order for order in self._orders.values() if filters.matches(order)]
        return sorted(orders, key=lambda o: (o.created_at, o.number), reverse=True)

    def find(self, filters: OrderFilters, offset: int, limit: int) -> List[Order]:
        return [copy.deepcopy(order) for order in self._matching(filters)[offset:offset + limit]]

    def count(self, filters: OrderFilters) -> int:
        return len(self._matching(filters))

    def revenue(self, filters: OrderFilters) -> Decimal:
        return sum((order.total for order in self._matching(filters)), Decimal("0"))

    def breakdown(self, field_name: str) -> List[tuple]:
        counts = Counter(getattr(order, field_name).value for order in self._orders.values())
        return sorted(counts.items(), key=lambda pair: (-pair[1], pair[0]))

    def sales_buckets(self, filters: OrderFilters, group_by: str) -> List[SalesBucket]:
        fmt = PERIOD_FORMATS[group_by]
        buckets: Dict[str, list] = {}
        for order in self._matching(filters):
            bucket = buckets.setdefault(order.created_at.strftime(fmt), [0, Decimal("0"), 0])
            bucket[0] += 1
            bucket[1] += order.total
            bucket[2] += order.item_count
        return [
            SalesBucket(period=period, orders=orders, revenue=revenue, items=items)
            for period, (orders, revenue, items) in sorted(buckets.items())
        ]

    def defer_release(self, reference: str, moves: List[CartItem]) -> None:
        self._releases.setdefault(reference, list(moves))

    def pending_releases(self, limit: int) -> List[Tuple[str, List[CartItem]]]:
        return [(reference, list(moves)) for reference, moves in self._releases.items()][:limit]

    def clear_release(self, reference: str) -> None:
        self._releases.pop(reference, None)
