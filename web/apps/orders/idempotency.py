"""Idempotency utilities for safely handling duplicate order submissions.

This module stores and retrieves idempotency keys to de-duplicate client
requests. Keys are scoped to the authenticated user, so two customers can
never collide on the same key. It supports creating a record, detecting
conflicts when the same key is reused with a different payload, reporting a
request that is still being processed, and finalizing a stored response so
subsequent retries can short-circuit.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_FLIGHT = 0


class IdempotencyConflict(Exception):
    """Raised when a key is reused; ``code`` tells the two cases apart."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


def _hash(payload) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, user_id: int, payload):
    """Get-or-create an idempotency record for ``(key, user_id)``.

    Behavior:
        - New key: create an in-flight record and return ``(False, rec)``.
        - Known key, same payload, response stored: return ``(True, rec)``.
        - Known key, different payload: raise ``IDEMPOTENCY_CONFLICT``.
        - Known key, same payload, still in flight: raise
          ``IDEMPOTENCY_IN_PROGRESS``.

    The create path runs in a nested savepoint so an ``IntegrityError`` only
    rolls back that block. The existing-record path takes a row lock
    (SELECT ... FOR UPDATE) to avoid races under concurrency.

    Args:
        key: Client-provided idempotency key.
        user_id: Authenticated caller the key belongs to.
        payload: Request payload used to compute the request hash.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.

    Raises:
        IdempotencyConflict: See behavior above.
    """
    h = _hash(payload)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, user_id=user_id, request_hash=h, response_status=IN_FLIGHT, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key, user_id=user_id)
        if rec.request_hash != h:
            raise IdempotencyConflict("IDEMPOTENCY_CONFLICT")
        if rec.response_status == IN_FLIGHT:
            raise IdempotencyConflict("IDEMPOTENCY_IN_PROGRESS")
        return True, rec


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_id=None):
    """Persist the final response for an idempotent request.

    Args:
        rec: The idempotency record to update.
        status_code: HTTP status code to store for the response.
        body: JSON-serializable response body to persist.
        order_id: Optional id of the order the request created.
    """
    rec.response_status = status_code
    rec.response_body = body
    if order_id is not None:
        rec.order_id = order_id
    rec.save(update_fields=["response_status", "response_body", "order_id"])


def release(rec: IdempotencyKey):
    """Drop an in-flight record whose request failed unexpectedly, so the key can be retried."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=IN_FLIGHT).delete()
