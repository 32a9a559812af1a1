"""Checkout error taxonomy.

Local input problems are reported with Protean's ``ValidationError`` like the
rest of the domain. Everything that can go wrong once the saga talks to the
outside world is a ``CheckoutError`` subclass carrying a machine-readable
``kind`` and a message that is safe to show to the shopper.
"""

from enum import Enum


class FailureKind(Enum):
    VALIDATION = "validation"
    GATEWAY_CONFIG = "gateway_config"
    PAYMENT_FAILED = "payment_failed"
    UNRESOLVED = "unresolved"
    INTEGRITY = "integrity"
    SERVICE = "service"


class CheckoutError(Exception):
    """Base class for checkout failures."""

    kind = FailureKind.SERVICE
    user_message = "Checkout could not be completed. Please try again."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.user_message
        super().__init__(self.message)


class ServiceError(CheckoutError):
    """A remote storefront service answered with an error or not at all."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class GatewayConfigError(CheckoutError):
    """The payment gateway is not configured (missing merchant key)."""

    kind = FailureKind.GATEWAY_CONFIG
    user_message = "Online payments are not available right now. Please contact support."


class PaymentFailedError(CheckoutError):
    """The shopper abandoned the gateway flow or the gateway rejected the payment."""

    kind = FailureKind.PAYMENT_FAILED
    user_message = "Payment could not be processed."


class GatewayUnavailableError(PaymentFailedError):
    """The embedded gateway UI could not be loaded, so no payment was attempted."""

    user_message = "Payment gateway not loaded. Please refresh the page and try again."


class CaptureAmbiguousError(CheckoutError):
    """Capture did not answer definitively; the order must be reconciled."""

    kind = FailureKind.UNRESOLVED
    user_message = "We could not confirm your payment yet."


class UnresolvedPaymentState(CheckoutError):
    """Reconciliation could not confirm the charge either way.

    Never a prompt to retry: the payment may already have been taken.
    """

    kind = FailureKind.UNRESOLVED
    user_message = "Your payment may have been processed. Please check your orders before trying again."


class IntegrityError(CheckoutError):
    """Amounts disagree between the order, the gateway order or the capture."""

    kind = FailureKind.INTEGRITY
    user_message = "The order amount could not be verified. No further payment steps were taken."


class CheckoutInProgressError(CheckoutError):
    """A checkout is already running for this client."""

    user_message = "A checkout is already in progress."


class UnknownSessionError(CheckoutError):
    """No active checkout session has this id (never started, or already finished)."""

    user_message = "This checkout session is no longer active."
