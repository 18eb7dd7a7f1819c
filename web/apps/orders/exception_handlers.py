"""DRF exception handler mapping order errors to JSON responses."""

import logging

import pydantic
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from .errors import OrderError

logger = logging.getLogger(__name__)


def validation_payload(exc: pydantic.ValidationError) -> dict:
    return {
        "detail": "VALIDATION_ERROR",
        "message": "Validation failed",
        "errors": [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ],
    }


def orders_exception_handler(exc, context):
    """Translate domain and validation errors; defer everything else to DRF."""
    if isinstance(exc, OrderError):
        if exc.status_code >= 500:
            logger.warning("order request failed", extra={"code": exc.code, "reason": exc.message})
        return Response(exc.as_dict(), status=exc.status_code)
    if isinstance(exc, pydantic.ValidationError):
        return Response(validation_payload(exc), status=400)
    response = drf_exception_handler(exc, context)
    if response is None:
        logger.error("unhandled API error", exc_info=exc)
    return response
