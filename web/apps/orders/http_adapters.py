"""HTTP adapter for the catalog service with retries and a circuit breaker.

This module implements the catalog port over HTTP using ``httpx``, for
deployments where books and stock live in the standalone catalog service
(``services/catalog``). It adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
    the gateway middleware.
- A circuit breaker for the catalog service to avoid hammering an unhealthy
    dependency, with a HALF_OPEN trial call after a timeout.
- A simple retry policy with exponential backoff for transport errors and 5xx.

Stock changes made over HTTP cannot join the local database transaction,
so the client reports ``transactional = False``. Every stock change
carries a reference the service applies at most once, so retried calls
and compensations are safe.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import Book, CartItem, CatalogPort
from .errors import BookNotFound, InsufficientStock, PersistenceError

logger = logging.getLogger(__name__)


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful trial call; stays HALF_OPEN while a
      single trial call is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_trial_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_trial_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            RuntimeError: If the circuit is OPEN or a HALF_OPEN trial call is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise RuntimeError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                # one trial call at a time
                if self._half_open_trial_in_flight:
                    raise RuntimeError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_trial_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_trial_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker when the threshold is hit.

        A failed HALF_OPEN trial call reopens the breaker immediately.
        """
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_trial_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_trial_in_flight = False


_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: Dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_attempts, backoff_base_seconds)."""
    return (
        max(1, getattr(settings, "HTTP_RETRY_MAX", 3)),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retries are attempted only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _to_book(data: dict) -> Book:
    return Book(
        id=UUID(data["id"]),
        title=data["title"],
        author=data["author"],
        price=Decimal(str(data["price"])),
        discount=Decimal(str(data.get("discount", 0))),
        stock=int(data["stock"]),
        is_active=bool(data.get("is_active", True)),
    )


def _moves_payload(moves: List[CartItem]) -> list:
    return [{"book_id": str(m.book_id), "quantity": m.quantity} for m in moves]


# ---------------- Catalog Adapter ---------------- #

class HttpCatalogClient(CatalogPort):
    """HTTP client for the catalog service with retry and circuit breaker.

    Business outcomes (404 unknown book, 409 insufficient stock) are mapped
    to domain errors and do not count as circuit failures. Transport errors,
    5xx after the retry budget and an open circuit all surface as
    ``PersistenceError``.
    """

    transactional = False

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = (base_url or settings.CATALOG_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def get_book(self, book_id: UUID) -> Optional[Book]:
        resp = self._send("GET", f"/books/{book_id}")
        if resp.status_code == 404:
            return None
        return _to_book(resp.json())

    def get_books(self, book_ids: Iterable[UUID]) -> Dict[UUID, Book]:
        books = {}
        for book_id in book_ids:
            book = self.get_book(book_id)
            if book is not None:
                books[book_id] = book
        return books

    def decrement_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> None:
        """Take stock for all moves in one all-or-nothing remote call.

        The service applies a given ``reference`` at most once, so the
        retries in ``_send`` cannot take the stock twice when a response
        is lost after the decrement was applied.

        Raises:
            InsufficientStock: 409 from the service.
            BookNotFound: 404 from the service.
            PersistenceError: The service is unavailable.
        """
        payload = {"items": _moves_payload(moves), "reference": reference}
        resp = self._send("POST", "/stock/decrement", json=payload)
        if resp.status_code == 409:
            data = resp.json()
            raise InsufficientStock(
                UUID(data["book_id"]),
                requested=data["requested"],
                available=data["available"],
                title=data.get("title"),
            )
        if resp.status_code == 404:
            raise BookNotFound(UUID(resp.json()["book_id"]))

    def increment_stock(self, moves: List[CartItem], reference: Optional[str] = None) -> bool:
        payload = {"items": _moves_payload(moves), "reference": reference}
        resp = self._send("POST", "/stock/increment", json=payload)
        return bool(resp.json().get("applied", True))

    def release_stock(self, moves: List[CartItem], reference: str) -> bool:
        payload = {"items": _moves_payload(moves), "reference": reference}
        resp = self._send("POST", "/stock/release", json=payload)
        return bool(resp.json().get("released", False))

    def _send(self, method: str, path: str, json: Optional[dict] = None) -> httpx.Response:
        """Call the catalog service applying the circuit breaker and retries.

        Returns:
            httpx.Response: Any response below 500, including 404 and 409.

        Raises:
            PersistenceError: Circuit open, transport error or 5xx after the
                retry budget, or an unexpected 4xx.
        """
        max_attempts, backoff = _retry_policy()
        tries = 0

        try:
            state = _catalog_cb.before_call()
        except RuntimeError as exc:
            raise PersistenceError("Catalog service unavailable", reason=str(exc)) from exc
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, f"{self.base_url}{path}", json=json, headers=headers)
                        if resp.status_code in (200, 201, 404, 409):
                            _catalog_cb.on_success()
                            return resp
                        if not _should_retry(resp, None):
                            _catalog_cb.on_success()
                            raise PersistenceError(
                                "Unexpected catalog response", status=resp.status_code
                            )
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries >= max_attempts:
                        _catalog_cb.on_failure()
                        logger.warning(
                            "catalog call failed",
                            extra={"method": method, "path": path, "attempts": tries},
                        )
                        raise PersistenceError("Catalog service unavailable") from exc

                    sleep_s = backoff * (2 ** (tries - 1))
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            _catalog_cb.on_finish()
