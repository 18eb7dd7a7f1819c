"""Domain errors raised by the order services.

Each error carries a short machine-readable ``code``, the HTTP status the
API layer answers with, and a ``context`` dict with the details a client
needs to correct the request (for example the available stock).
"""


class OrderError(Exception):
    """Base class for every error the order core raises on purpose."""

    code = "ORDER_ERROR"
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def as_dict(self) -> dict:
        """Return the structured payload sent back to API clients."""
        return {"detail": self.code, "message": self.message, **self.context}


class ValidationError(OrderError):
    code = "VALIDATION_ERROR"


class BookNotFound(OrderError):
    code = "BOOK_NOT_FOUND"

    def __init__(self, book_id):
        super().__init__(f"Book {book_id} not found or unavailable", bookId=str(book_id))


class InsufficientStock(OrderError):
    """Requested quantity exceeds what the catalog holds.

    Raised both by the validation pass and by the conditional decrement,
    when a concurrent checkout took the last copies in between.
    """

    code = "INSUFFICIENT_STOCK"

    def __init__(self, book_id, requested: int, available: int, title: str | None = None):
        label = title or str(book_id)
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}",
            bookId=str(book_id),
            title=title,
            requested=requested,
            available=available,
        )
        self.book_id = book_id
        self.requested = requested
        self.available = available


class OrderNotFound(OrderError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, order_id):
        super().__init__(f"Order {order_id} not found", orderId=str(order_id))


class Forbidden(OrderError):
    code = "FORBIDDEN"
    status_code = 403


class InvalidTransition(OrderError):
    code = "INVALID_TRANSITION"

    def __init__(self, current, requested):
        current_value = getattr(current, "value", current)
        requested_value = getattr(requested, "value", requested)
        super().__init__(
            f"Order cannot move from '{current_value}' to '{requested_value}'",
            currentStatus=current_value,
            requestedStatus=requested_value,
        )
        self.current = current
        self.requested = requested


class PersistenceError(OrderError):
    """Storage or downstream catalog failure."""

    code = "UPSTREAM_UNAVAILABLE"
    status_code = 503
