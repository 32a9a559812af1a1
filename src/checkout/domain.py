"""Checkout bounded context: the storefront's cart-to-paid-order transaction.

Owns the checkout saga (order → gateway payment order → gateway UI → capture →
reconciliation), coupon pricing and the free-entitlement bypass. Orders,
coupons, entitlements and payments themselves live in remote services that
are reached through ports in ``checkout.services``.
"""

from protean.domain import Domain

from checkout.utils.logging import configure_logging, get_logger

configure_logging()

logger = get_logger(__name__)

checkout = Domain(name="checkout")
