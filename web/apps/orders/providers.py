"""Service provider helpers for wiring the order services with ports.

The factories below return services wired with the Django ORM ledger and
either the in-database catalog (``BookRepository``) or the HTTP client for
the standalone catalog service, depending on
``settings.USE_HTTP_ADAPTERS``.
"""

from decimal import Decimal

from django.conf import settings

from .domain import CatalogPort, OrderLedgerPort, PricingPolicy
from .http_adapters import HttpCatalogClient
from .repository import BookRepository, DjangoOrderLedger
from .services import OrderAssembler, OrderLifecycleManager, OrderQueryService


def get_catalog() -> CatalogPort:
    if getattr(settings, "USE_HTTP_ADAPTERS", False):
        return HttpCatalogClient()
    return BookRepository()


def get_order_ledger() -> OrderLedgerPort:
    return DjangoOrderLedger()


def get_pricing_policy() -> PricingPolicy:
    """Build the pricing policy from the ``ORDER_*`` settings."""
    return PricingPolicy(
        tax_rate=Decimal(str(getattr(settings, "ORDER_TAX_RATE", "0.10"))),
        free_shipping_over=Decimal(str(getattr(settings, "ORDER_FREE_SHIPPING_OVER", "100"))),
        flat_shipping=Decimal(str(getattr(settings, "ORDER_FLAT_SHIPPING", "10"))),
    )


def get_order_assembler() -> OrderAssembler:
    return OrderAssembler(
        catalog=get_catalog(),
        ledger=get_order_ledger(),
        pricing=get_pricing_policy(),
    )


def get_lifecycle_manager() -> OrderLifecycleManager:
    return OrderLifecycleManager(catalog=get_catalog(), ledger=get_order_ledger())


def get_query_service() -> OrderQueryService:
    return OrderQueryService(
        ledger=get_order_ledger(),
        catalog=get_catalog(),
        recent_limit=getattr(settings, "ORDER_RECENT_LIMIT", 5),
    )
