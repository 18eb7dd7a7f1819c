"""Catalog service API built with FastAPI.

This module exposes the book catalog and its stock to the orders web tier
when it runs with ``USE_HTTP_ADAPTERS``. Validation is performed with
Pydantic models, while persistence and the locking stock logic live in the
SQLAlchemy-backed ``repo.CatalogRepo``.

Error responses are flat JSON objects (``{"detail": CODE, ...}``) so the
orders client can map them to its domain errors.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import List, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import CatalogRepo, OutOfStock, UnknownBook, engine, init_db

logger = logging.getLogger("catalog")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


def _wait_for_db(timeout: float = 30.0) -> None:
    deadline = time.time() + timeout
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    _wait_for_db()
    init_db()
    yield


app = FastAPI(title="Catalog Service", lifespan=lifespan)


class BookIn(BaseModel):
    """Attributes accepted when creating or replacing a book."""

    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)
    discount: Decimal = Field(default=Decimal("0"), ge=0, le=100, max_digits=5, decimal_places=2)
    stock: int = Field(default=0, ge=0)
    is_active: bool = True


class BookOut(BookIn):
    id: uuid.UUID


class StockMove(BaseModel):
    book_id: uuid.UUID
    quantity: int = Field(gt=0)


class DecrementRequest(BaseModel):
    """Stock to take.

    Attributes:
        items: Books and quantities.
        reference: Optional reservation reference, e.g. ``reserve:<uuid>``.
            A retried request with the same reference takes nothing.
    """

    items: List[StockMove] = Field(min_length=1)
    reference: Optional[str] = Field(default=None, max_length=200)


class IncrementRequest(BaseModel):
    """Stock to give back.

    Attributes:
        items: Books and quantities.
        reference: Optional idempotency reference, e.g. ``restock:<order id>``.
    """

    items: List[StockMove] = Field(min_length=1)
    reference: Optional[str] = Field(default=None, max_length=200)


class ReleaseRequest(BaseModel):
    items: List[StockMove] = Field(min_length=1)
    reference: str = Field(min_length=1, max_length=200)


def _book_out(book) -> BookOut:
    return BookOut(
        id=book.id,
        title=book.title,
        author=book.author,
        price=book.price,
        discount=book.discount,
        stock=book.stock,
        is_active=book.is_active,
    )


def _not_found(book_id: uuid.UUID) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "BOOK_NOT_FOUND", "book_id": str(book_id)})


@app.get("/health")
def health():
    if not applied:
        logger.info("stock decrement replayed", extra={"reference": req.reference})
    return {"ok": True, "applied": applied}


@app.get("/books/{book_id}", response_model=BookOut)
def get_book(book_id: uuid.UUID):
    book = CatalogRepo().get(book_id)
    if book is None:
        return _not_found(book_id)
    return _book_out(book)


@app.put("/books/{book_id}", response_model=BookOut)
def put_book(book_id: uuid.UUID, body: BookIn):
    book = CatalogRepo().upsert(book_id, **body.model_dump())
    return _book_out(book)


@app.post("/stock/decrement")
def decrement(req: DecrementRequest):
    """Take stock for a batch of books, all or nothing.

    Returns:
        dict: ``{"ok": true, "applied": bool}``; ``applied`` is false when
        the reference was already recorded.

    Responses:
        404: ``BOOK_NOT_FOUND`` for a missing or inactive book.
        409: ``INSUFFICIENT_STOCK`` with the requested and available counts.
    """
    try:
        applied = CatalogRepo().decrement([(m.book_id, m.quantity) for m in req.items], reference=req.reference)
    except UnknownBook as exc:
        return _not_found(exc.book_id)
    except OutOfStock as exc:
        return JSONResponse(
            status_code=409,
            content={
                "detail": "INSUFFICIENT_STOCK",
                "book_id": str(exc.book_id),
                "title": exc.title,
                "requested": exc.requested,
                "available": exc.available,
            },
        )
    if not applied:
        logger.info("stock decrement replayed", extra={"reference": req.reference})
    return {"ok": True, "applied": applied}


@app.post("/stock/increment")
def increment(req: IncrementRequest):
    applied = CatalogRepo().increment([(m.book_id, m.quantity) for m in req.items], reference=req.reference)
    if not applied:
        logger.info("stock increment replayed", extra={"reference": req.reference})
    return {"applied": applied}


@app.post("/stock/release")
def release(req: ReleaseRequest):
    """Give back a reservation taken by ``/stock/decrement``.

    Releasing a reference the catalog has not seen yet records it, so the
    matching decrement is ignored if it arrives later.
    """
    released = CatalogRepo().release([(m.book_id, m.quantity) for m in req.items], reference=req.reference)
    logger.info("stock reservation released", extra={"reference": req.reference, "released": released})
    return {"released": released}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    started = time.perf_counter()
    try:
        response = await call_next(request)
    finally:
        logger.info(
            "request handled",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
    response.headers["X-Request-ID"] = rid
    return response
