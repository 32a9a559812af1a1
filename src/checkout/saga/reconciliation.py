"""Capture reconciliation.

Runs only after a capture timed out. It re-reads the order from the order
service first: a ``success`` status means the gateway did capture the money.
When the order has not caught up yet and a payment record is known, the
gateway-side payment status is consulted as a second opinion. Both lookups
are reads, so reconciliation can run any number of times without charging
the shopper again.
"""

from enum import Enum

from checkout.errors import ServiceError
from checkout.services.port import OrderStatus, PaymentStatus
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class ReconcileResult(Enum):
    SUCCEEDED = "succeeded"
    UNRESOLVED = "unresolved"


class CaptureReconciler:
    def __init__(self, orders, payments=None) -> None:
        self.orders = orders
        self.payments = payments

    async def reconcile(self, order_id: str, payment_record_id: str | None = None) -> ReconcileResult:
        order_status = await self._order_status(order_id)
        if order_status == OrderStatus.SUCCESS:
            logger.info("Reconciled timed-out capture as paid", order_id=order_id)
            return ReconcileResult.SUCCEEDED

        if self.payments is not None and payment_record_id:
            payment_status = await self._payment_status(payment_record_id)
            if payment_status == PaymentStatus.CAPTURED:
                logger.info(
                    "Reconciled timed-out capture from payment status",
                    order_id=order_id,
                    payment_record_id=payment_record_id,
                    order_status=order_status.value if order_status else None,
                )
                return ReconcileResult.SUCCEEDED

        logger.warning(
            "Capture could not be reconciled",
            order_id=order_id,
            order_status=order_status.value if order_status else None,
        )
        return ReconcileResult.UNRESOLVED

    async def _order_status(self, order_id: str) -> OrderStatus | None:
        try:
            order = await self.orders.get_order(order_id)
        except ServiceError as exc:
            logger.warning(
                "Order detail unavailable during reconciliation",
                order_id=order_id,
                error=exc.message,
                status_code=exc.status_code,
            )
            return None
        return order.status

    async def _payment_status(self, payment_record_id: str) -> PaymentStatus | None:
        try:
            payment = await self.payments.get_payment_status(payment_record_id)
        except ServiceError as exc:
            logger.warning(
                "Payment status unavailable during reconciliation",
                payment_record_id=payment_record_id,
                error=exc.message,
                status_code=exc.status_code,
            )
            return None
        return payment.status
