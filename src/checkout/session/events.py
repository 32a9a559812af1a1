"""Domain events for the CheckoutSession aggregate."""

from protean.fields import Boolean, DateTime, Identifier, Integer, String

from checkout.domain import checkout


@checkout.event(part_of="CheckoutSession")
class CheckoutStarted:
    """A shopper started checking out a cart."""

    __version__ = 1

    session_id = Identifier(required=True)
    user_id = String(required=True)
    line_count = Integer(required=True)
    subtotal_minor = Integer(required=True)
    started_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutOrderPlaced:
    """The order service issued an order id; every later step refers to it."""

    __version__ = 1

    session_id = Identifier(required=True)
    order_id = String(required=True)
    final_amount_minor = Integer(required=True)
    coupon_code = String()


@checkout.event(part_of="CheckoutSession")
class CheckoutSucceeded:
    """The order is paid (or free) and confirmed."""

    __version__ = 1

    session_id = Identifier(required=True)
    order_id = String()
    final_amount_minor = Integer(required=True)
    free = Boolean(default=False)
    completed_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutFailed:
    """The attempt ended without a paid order."""

    __version__ = 1

    session_id = Identifier(required=True)
    order_id = String()
    failure_kind = String(required=True)
    reason = String(required=True, max_length=1000)
    failed_at = DateTime(required=True)


@checkout.event(part_of="CheckoutSession")
class CheckoutUnresolved:
    """Capture timed out and the order could not be confirmed as paid."""

    __version__ = 1

    session_id = Identifier(required=True)
    order_id = String(required=True)
    reason = String(required=True, max_length=1000)
    failed_at = DateTime(required=True)
