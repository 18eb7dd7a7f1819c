import uuid

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class BookModel(models.Model):
    """A sellable book and its stock.

    ``stock`` is only ever changed through conditional ``F()`` updates in
    ``apps.orders.repository.BookRepository``; the positive-integer column
    keeps the database from ever storing a negative count.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    title = models.CharField(max_length=200)
    author = models.CharField(max_length=100)
    isbn = models.CharField(max_length=13, unique=True, null=True, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, validators=[MinValueValidator(0)])
    discount = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=0,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
    )
    stock = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "books"
        ordering = ["title"]

    def __str__(self):
        return f"{self.title} ({self.author})"


class StockMovementModel(models.Model):
    """A referenced stock change the catalog has already seen.

    A decrement stored as ``reserved`` can later be ``released``; a release
    that arrives first leaves a ``released`` row, which makes the late
    decrement a no-op.
    """

    class Kind(models.TextChoices):
        RESERVED = "reserved"
        INCREMENTED = "incremented"
        RELEASED = "released"

    reference = models.CharField(max_length=200, primary_key=True)
    kind = models.CharField(max_length=20, choices=Kind.choices)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "stock_movements"

    def __str__(self):
        return f"{self.reference} ({self.kind})"
