"""Configurable in-memory storefront for development and testing.

``FakeStorefrontBackend`` simulates the storefront backend without any
network calls. It implements every remote checkout port over one shared
order book, so what the capture step writes is exactly what reconciliation
reads back. Behaviour is switched at runtime with ``configure()``, failures
are injected per method with ``fail()``, and every call is recorded in
``calls`` for assertions.
"""

import asyncio
from itertools import count
from uuid import uuid4

from checkout.errors import ServiceError
from checkout.services.port import (
    CaptureOutcome,
    CaptureRecord,
    CaptureService,
    ClientChannel,
    CouponResult,
    CouponService,
    EntitlementService,
    EntitlementStatus,
    GatewayCheckout,
    GatewayCheckoutRequest,
    GatewayCheckoutResult,
    OrderDetail,
    OrderReceipt,
    OrderService,
    OrderStatus,
    PaymentGatewayService,
    PaymentOrder,
    PaymentState,
    PaymentStatus,
)


class FakeStorefrontBackend(CouponService, EntitlementService, OrderService, PaymentGatewayService, CaptureService):
    """In-memory storefront backend."""

    def __init__(self) -> None:
        # Entitlement
        self.will_be_free: bool = False
        self.plan_name: str | None = None
        # Capture behaviour and what a timed-out capture actually did server-side
        self.capture_outcome: CaptureOutcome = CaptureOutcome.CAPTURED
        self.capture_error: str | None = None
        self.status_after_timeout: OrderStatus = OrderStatus.SUCCESS
        # Whether the gateway kept the money after a timeout; None follows the order status
        self.captured_after_timeout: bool | None = None
        # Amount drift knobs for integrity testing (added to what the server reports)
        self.order_amount_drift: int = 0
        self.gateway_amount_drift: int = 0
        self.capture_amount_drift: int = 0
        # Simulate a backend that forgets to return an order id
        self.omit_order_id: bool = False

        self.coupons: dict[str, dict] = {}
        self.orders: dict[str, dict] = {}
        self.payments: dict[str, dict] = {}
        self.calls: list[dict] = []
        self._failures: dict[str, ServiceError] = {}
        self._idempotency: dict[str, str] = {}
        self._order_ids = count(1001)
        self._payment_ids = count(501)

    def configure(self, **options) -> None:
        """Configure backend behaviour at runtime."""
        for name, value in options.items():
            if name.startswith("_") or name in ("calls", "coupons", "orders", "payments") or not hasattr(self, name):
                raise TypeError(f"Unknown fake backend option: {name}")
            setattr(self, name, value)

    def add_coupon(
        self,
        code: str,
        discount_type: str = "flat",
        discount_value: int = 0,
        name: str | None = None,
        min_order_minor: int = 0,
    ) -> None:
        self.coupons[code.upper()] = {
            "discount_type": discount_type,
            "discount_value": discount_value,
            "name": name or code.upper(),
            "min_order_minor": min_order_minor,
        }

    def fail(self, method: str, message: str = "Service unavailable", status_code: int = 503) -> None:
        """Make ``method`` raise a ``ServiceError`` until ``recover()`` is called."""
        self._failures[method] = ServiceError(message, status_code=status_code)

    def recover(self, method: str | None = None) -> None:
        if method is None:
            self._failures.clear()
        else:
            self._failures.pop(method, None)

    def calls_to(self, method: str) -> list[dict]:
        return [call for call in self.calls if call["method"] == method]

    def _record(self, method: str, **arguments) -> None:
        self.calls.append({"method": method, **arguments})
        if method in self._failures:
            raise self._failures[method]

    # -------------------------------------------------------------------
    # CouponService
    # -------------------------------------------------------------------
    async def validate_coupon(self, code: str, order_amount_minor: int) -> CouponResult:
        self._record("validate_coupon", code=code, order_amount_minor=order_amount_minor)

        coupon = self.coupons.get(code.upper())
        if coupon is None:
            return CouponResult(valid=False, code=code, error="Invalid coupon code")
        if order_amount_minor < coupon["min_order_minor"]:
            return CouponResult(
                valid=False,
                code=code,
                error=f"Minimum order amount is {coupon['min_order_minor']}",
            )

        if coupon["discount_type"] == "percentage":
            discount = order_amount_minor * coupon["discount_value"] // 100
        else:
            discount = coupon["discount_value"]

        return CouponResult(
            valid=True,
            discount_minor=discount,
            code=code.upper(),
            discount_type=coupon["discount_type"],
            discount_value=coupon["discount_value"],
            coupon_name=coupon["name"],
        )

    # -------------------------------------------------------------------
    # EntitlementService
    # -------------------------------------------------------------------
    async def check_entitlement(self) -> EntitlementStatus:
        self._record("check_entitlement")
        return EntitlementStatus(will_be_free=self.will_be_free, plan_name=self.plan_name)

    # -------------------------------------------------------------------
    # OrderService
    # -------------------------------------------------------------------
    def _new_order(self, total_amount_minor: int, status: OrderStatus, product_ids, coupon_code) -> str:
        order_id = str(next(self._order_ids))
        self.orders[order_id] = {
            "status": status,
            "total_amount_minor": total_amount_minor,
            "product_ids": tuple(product_ids),
            "coupon_code": coupon_code,
        }
        return order_id

    async def create_order(
        self,
        product_ids: list[int],
        final_amount_minor: int,
        coupon_code: str | None,
        idempotency_key: str,
    ) -> OrderReceipt:
        self._record(
            "create_order",
            product_ids=list(product_ids),
            final_amount_minor=final_amount_minor,
            coupon_code=coupon_code,
            idempotency_key=idempotency_key,
        )
        if self.omit_order_id:
            return OrderReceipt(order_id=None)

        # Same key, same order: a second tab cannot create a duplicate
        order_id = self._idempotency.get(idempotency_key)
        if order_id is None:
            order_id = self._new_order(final_amount_minor, OrderStatus.PENDING, product_ids, coupon_code)
            self._idempotency[idempotency_key] = order_id

        return OrderReceipt(
            order_id=order_id,
            total_amount_minor=self.orders[order_id]["total_amount_minor"] + self.order_amount_drift,
        )

    async def create_free_purchase(self, payment_method: str, coupon_code: str | None) -> OrderReceipt:
        self._record("create_free_purchase", payment_method=payment_method, coupon_code=coupon_code)
        if self.omit_order_id:
            return OrderReceipt(order_id=None)

        order_id = self._new_order(0, OrderStatus.SUCCESS, (), coupon_code)
        return OrderReceipt(order_id=order_id, total_amount_minor=0)

    async def get_order(self, order_id: str) -> OrderDetail:
        self._record("get_order", order_id=order_id)
        order = self.orders.get(str(order_id))
        if order is None:
            raise ServiceError("Order not found", status_code=404)
        return OrderDetail(
            order_id=str(order_id),
            status=order["status"],
            total_amount_minor=order["total_amount_minor"],
            product_ids=order["product_ids"],
        )

    # -------------------------------------------------------------------
    # PaymentGatewayService
    # -------------------------------------------------------------------
    async def create_payment_order(
        self,
        amount_minor: int,
        currency: str,
        order_id: str,
        description: str,
    ) -> PaymentOrder:
        self._record(
            "create_payment_order",
            amount_minor=amount_minor,
            currency=currency,
            order_id=order_id,
            description=description,
        )
        payment_record_id = str(next(self._payment_ids))
        gateway_order_id = f"order_fake{uuid4().hex[:14]}"
        self.payments[payment_record_id] = {
            "order_id": str(order_id),
            "gateway_order_id": gateway_order_id,
            "amount_minor": amount_minor,
            "captured": False,
        }
        return PaymentOrder(
            gateway_order_id=gateway_order_id,
            payment_record_id=payment_record_id,
            amount_minor=amount_minor + self.gateway_amount_drift,
            currency=currency,
        )

    async def get_payment_status(self, payment_record_id: str) -> PaymentState:
        self._record("get_payment_status", payment_record_id=payment_record_id)
        payment = self.payments.get(str(payment_record_id))
        if payment is None:
            raise ServiceError("Payment not found", status_code=404)
        return PaymentState(
            payment_record_id=str(payment_record_id),
            status=PaymentStatus.CAPTURED if payment["captured"] else PaymentStatus.PENDING,
            amount_minor=payment["amount_minor"],
        )

    # -------------------------------------------------------------------
    # CaptureService
    # -------------------------------------------------------------------
    async def capture_payment(
        self,
        payment_record_id: str,
        gateway_payment_id: str,
        amount_minor: int,
    ) -> CaptureRecord:
        self._record(
            "capture_payment",
            payment_record_id=payment_record_id,
            gateway_payment_id=gateway_payment_id,
            amount_minor=amount_minor,
        )
        payment = self.payments.get(str(payment_record_id))
        order = self.orders.get(payment["order_id"]) if payment else None

        outcome = self.capture_outcome
        if outcome in (CaptureOutcome.CAPTURED, CaptureOutcome.ALREADY_CAPTURED):
            if payment is not None:
                payment["captured"] = True
            if order is not None:
                order["status"] = OrderStatus.SUCCESS
        elif outcome == CaptureOutcome.TIMEOUT:
            # The client gave up waiting; the server may still have finished
            if order is not None:
                order["status"] = self.status_after_timeout
            if payment is not None:
                if self.captured_after_timeout is None:
                    payment["captured"] = self.status_after_timeout == OrderStatus.SUCCESS
                else:
                    payment["captured"] = self.captured_after_timeout

        return CaptureRecord(
            payment_record_id=str(payment_record_id),
            gateway_payment_id=gateway_payment_id,
            amount_minor=amount_minor + self.capture_amount_drift,
            outcome=outcome,
            error=self.capture_error,
        )


class FakeGatewayCheckout(GatewayCheckout):
    """Stands in for the shopper completing (or dismissing) the gateway UI."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Payment cancelled by user"
        self.cancel_task: bool = False
        # Raised from open(), as when the gateway script never loads
        self.load_error: Exception | None = None
        self.requests: list[GatewayCheckoutRequest] = []

    def configure(self, should_succeed: bool, failure_reason: str = "Payment cancelled by user") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    async def open(self, request: GatewayCheckoutRequest) -> GatewayCheckoutResult:
        self.requests.append(request)
        if self.cancel_task:
            raise asyncio.CancelledError()
        if self.load_error is not None:
            raise self.load_error
        if self.should_succeed:
            return GatewayCheckoutResult(success=True, gateway_payment_id=f"pay_fake{uuid4().hex[:14]}")
        return GatewayCheckoutResult(success=False, error=self.failure_reason)


class FakeClientChannel(ClientChannel):
    """Records notices and cache invalidations instead of showing them."""

    def __init__(self) -> None:
        self.notices: list = []
        self.invalidated: list[str] = []

    def notify(self, notice) -> None:
        self.notices.append(notice)

    def invalidate(self, *keys: str) -> None:
        self.invalidated.extend(keys)
