"""Checkout Saga Orchestrator.

Drives one CheckoutSession from VALIDATING to SUCCEEDED or FAILED:

    1. VALIDATING             local checks, entitlement bypass, coupon pricing,
                              then create the order (or the free purchase)
    2. ORDER_CREATED          create the gateway payment order
    3. GATEWAY_ORDER_CREATED  hand off to the embedded gateway UI
    4. AWAITING_GATEWAY       suspended until the shopper pays or gives up
    5. CAPTURING              capture the authorized payment
    6. RECONCILING            only after a capture timeout: re-read the order
    7. SUCCEEDED / FAILED     notify the client exactly once

The session aggregate owns the legal transitions. This module owns the loop
that dispatches on the session's current state to a single step handler and
turns whatever the handler raises into the matching transition, so each step
can be exercised on its own.

The saga never compensates. Once the order exists it stays ``pending``
server-side on any failure; server jobs settle long-pending orders.
"""

import asyncio
import time
from dataclasses import dataclass

from protean.exceptions import ValidationError

from checkout.cart.snapshot import CartSnapshot
from checkout.coupon.coupon import CouponEngine
from checkout.entitlement.resolver import FreeEntitlementResolver
from checkout.errors import (
    CaptureAmbiguousError,
    CheckoutError,
    CheckoutInProgressError,
    FailureKind,
    GatewayConfigError,
    GatewayUnavailableError,
    IntegrityError,
    PaymentFailedError,
    ServiceError,
    UnknownSessionError,
    UnresolvedPaymentState,
)
from checkout.money import to_gateway_subunits
from checkout.saga.notices import Notice, NoticeKind, notice_for
from checkout.saga.reconciliation import CaptureReconciler, ReconcileResult
from checkout.services.port import (
    CaptureOutcome,
    GatewayCheckoutRequest,
    GatewayCheckoutResult,
)
from checkout.session.session import CheckoutSession, CheckoutState
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

FREE_PLAN_PAYMENT_METHOD = "subscription"
FULL_DISCOUNT_PAYMENT_METHOD = "coupon"


@dataclass(frozen=True)
class CheckoutRequest:
    user_id: str | None
    cart: CartSnapshot
    coupon_code: str | None = None
    description: str = "Payment for order"


@dataclass(frozen=True)
class GatewayHandoff:
    """A session suspended at AWAITING_GATEWAY and what the gateway UI needs."""

    session_id: str
    order_id: str
    gateway: GatewayCheckoutRequest


@dataclass(frozen=True)
class CheckoutOutcome:
    session_id: str
    state: CheckoutState
    notice: Notice
    order_id: str | None = None
    final_amount_minor: int = 0
    free: bool = False
    failure_kind: str | None = None
    error: str | None = None
    invalidated: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state == CheckoutState.SUCCEEDED

    @property
    def unresolved(self) -> bool:
        return self.notice.kind == NoticeKind.UNRESOLVED


@dataclass
class _ActiveCheckout:
    session: CheckoutSession
    request: CheckoutRequest
    guard_key: str
    started_at: float
    attended: bool = False


def _validation_message(exc: ValidationError) -> str:
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        return "; ".join(str(msg) for values in messages.values() for msg in (values if isinstance(values, list) else [values]))
    return str(exc)


class CheckoutOrchestrator:
    def __init__(
        self,
        coupons,
        entitlements,
        orders,
        payments,
        captures,
        client,
        settings,
        coupon_engine: CouponEngine | None = None,
        clock=None,
    ) -> None:
        self.orders = orders
        self.payments = payments
        self.captures = captures
        self.client = client
        self.settings = settings
        self.coupon_engine = coupon_engine or CouponEngine(coupons)
        self.entitlement_resolver = FreeEntitlementResolver(entitlements)
        self.reconciler = CaptureReconciler(orders, payments)
        self._clock = clock or time.monotonic

        # One running checkout per shopper and cart; the order service dedups across processes
        self._guards: dict[str, str] = {}
        self._active: dict[str, _ActiveCheckout] = {}

        self._steps = {
            CheckoutState.IDLE: self._begin,
            CheckoutState.VALIDATING: self._validate_and_place_order,
            CheckoutState.ORDER_CREATED: self._create_payment_order,
            CheckoutState.GATEWAY_ORDER_CREATED: self._hand_off,
            CheckoutState.CAPTURING: self._capture,
            CheckoutState.RECONCILING: self._reconcile,
        }

    @classmethod
    def from_backend(cls, backend, client, settings, clock=None) -> "CheckoutOrchestrator":
        """Wire every remote port to one backend adapter."""
        return cls(backend, backend, backend, backend, backend, client, settings, clock=clock)

    @property
    def in_progress(self) -> bool:
        return bool(self._guards)

    def get_session(self, session_id: str) -> CheckoutSession:
        entry = self._active.get(str(session_id))
        if entry is None:
            raise UnknownSessionError(f"No active checkout session {session_id}")
        return entry.session

    # -------------------------------------------------------------------
    # Drivers
    # -------------------------------------------------------------------
    async def checkout(self, request: CheckoutRequest, gateway_ui) -> CheckoutOutcome:
        """Run a whole checkout, awaiting the embedded gateway UI inline."""
        progress = await self.start(request)
        if isinstance(progress, CheckoutOutcome):
            return progress
        self._active[progress.session_id].attended = True

        try:
            result = await gateway_ui.open(progress.gateway)
        except asyncio.CancelledError:
            await self.cancel(progress.session_id, "Payment cancelled by user")
            raise
        except CheckoutError as exc:
            result = GatewayCheckoutResult(success=False, error=exc.message)
        except Exception:
            # A broken gateway UI must still end the session with a notice
            logger.exception(
                "Gateway checkout crashed",
                session_id=progress.session_id,
                order_id=progress.order_id,
            )
            result = GatewayCheckoutResult(success=False, error=GatewayUnavailableError().message)

        return await self.submit_gateway_result(progress.session_id, result)

    async def start(self, request: CheckoutRequest) -> "CheckoutOutcome | GatewayHandoff":
        """Run the saga until it finishes or suspends at the gateway hand-off."""
        await self.expire_abandoned()

        guard_key = self._guard_key(request)
        if guard_key in self._guards:
            logger.warning(
                "Checkout rejected, this cart is already being checked out",
                user_id=request.user_id,
                session_id=self._guards[guard_key],
            )
            raise CheckoutInProgressError()

        session = CheckoutSession.start(
            user_id=request.user_id,
            cart=request.cart,
            coupon_code=request.coupon_code,
        )
        self._guards[guard_key] = str(session.id)
        self._active[str(session.id)] = _ActiveCheckout(session, request, guard_key, self._clock())
        logger.info(
            "Checkout started",
            session_id=str(session.id),
            user_id=request.user_id,
            line_count=len(request.cart.lines),
            subtotal_minor=request.cart.subtotal_minor,
        )
        return await self._run(session, request)

    async def submit_gateway_result(self, session_id: str, result: GatewayCheckoutResult) -> CheckoutOutcome:
        """Resume a session suspended at AWAITING_GATEWAY."""
        session = self.get_session(session_id)
        request = self._active[str(session_id)].request

        if session.current_state != CheckoutState.AWAITING_GATEWAY:
            raise ValidationError({"state": [f"Session is {session.state}, not waiting for the gateway"]})

        if result.success and result.gateway_payment_id:
            session.record_gateway_payment(result.gateway_payment_id)
        else:
            reason = result.error or "Payment was not completed"
            self._fail(session, PaymentFailedError(reason))

        return await self._run(session, request)

    async def cancel(self, session_id: str, reason: str = "Payment cancelled by user") -> CheckoutOutcome:
        """The shopper dismissed the gateway UI. No capture is attempted."""
        return await self.submit_gateway_result(session_id, GatewayCheckoutResult(success=False, error=reason))

    async def expire_abandoned(self) -> list[CheckoutOutcome]:
        """Cancel sessions left at the gateway hand-off for longer than the configured TTL.

        Sessions driven inline by ``checkout()`` are awaited by their own task and never expire here.
        """
        ttl = self.settings.gateway_session_ttl
        if ttl is None:
            return []

        now = self._clock()
        expired = [
            session_id
            for session_id, entry in self._active.items()
            if not entry.attended
            and entry.session.current_state == CheckoutState.AWAITING_GATEWAY
            and now - entry.started_at >= ttl
        ]
        outcomes = []
        for session_id in expired:
            logger.warning("Abandoned checkout expired", session_id=session_id)
            outcomes.append(await self.cancel(session_id, "Checkout session expired"))
        return outcomes

    # -------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------
    async def _run(self, session: CheckoutSession, request: CheckoutRequest) -> "CheckoutOutcome | GatewayHandoff":
        try:
            await self._advance(session, request)
        except BaseException:
            # Unexpected error or task cancellation: free the guard, keep the traceback
            self._release(session)
            raise

        if session.current_state == CheckoutState.AWAITING_GATEWAY:
            return self._handoff_for(session, request)
        return self._finish(session)

    async def _advance(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        while not session.is_terminal and session.current_state != CheckoutState.AWAITING_GATEWAY:
            state = session.current_state
            step = self._steps[state]
            try:
                await step(session, request)
            except CaptureAmbiguousError as exc:
                logger.warning(
                    "Capture outcome ambiguous, reconciling",
                    session_id=str(session.id),
                    order_id=session.order_id,
                    error=exc.message,
                )
                session.begin_reconciliation()
            except ValidationError as exc:
                self._fail(session, exc)
            except CheckoutError as exc:
                self._fail(session, exc)

    def _fail(self, session: CheckoutSession, exc: Exception) -> None:
        if isinstance(exc, ValidationError):
            kind, reason = FailureKind.VALIDATION, _validation_message(exc)
        else:
            kind, reason = exc.kind, exc.message

        session.fail(kind, reason)
        log = logger.warning if kind in (FailureKind.VALIDATION, FailureKind.PAYMENT_FAILED) else logger.error
        log(
            "Checkout failed",
            session_id=str(session.id),
            order_id=session.order_id,
            failure_kind=kind.value,
            reason=reason,
        )

    def _finish(self, session: CheckoutSession) -> CheckoutOutcome:
        notice = notice_for(session)
        self.client.notify(notice)

        invalidated: tuple[str, ...] = ()
        if session.current_state == CheckoutState.SUCCEEDED:
            invalidated = ("cart", "orders")
            self.coupon_engine.invalidate()
        elif session.order_id:
            # A pending order now exists; the order list must show it
            invalidated = ("orders",)
        if invalidated:
            self.client.invalidate(*invalidated)

        self._release(session)
        logger.info(
            "Checkout finished",
            session_id=str(session.id),
            state=session.state,
            order_id=session.order_id,
            final_amount_minor=session.final_amount_minor,
        )
        return CheckoutOutcome(
            session_id=str(session.id),
            state=session.current_state,
            notice=notice,
            order_id=session.order_id,
            final_amount_minor=session.final_amount_minor,
            free=bool(session.free),
            failure_kind=session.failure_kind,
            error=session.error,
            invalidated=invalidated,
        )

    @staticmethod
    def _guard_key(request: CheckoutRequest) -> str:
        return request.cart.idempotency_key(request.user_id or "")

    def _release(self, session: CheckoutSession) -> None:
        entry = self._active.pop(str(session.id), None)
        if entry is not None and self._guards.get(entry.guard_key) == str(session.id):
            del self._guards[entry.guard_key]

    def _handoff_for(self, session: CheckoutSession, request: CheckoutRequest) -> GatewayHandoff:
        currency = self.settings.currency
        return GatewayHandoff(
            session_id=str(session.id),
            order_id=session.order_id,
            gateway=GatewayCheckoutRequest(
                gateway_order_id=session.gateway_order_id,
                amount_subunits=to_gateway_subunits(session.final_amount_minor, currency),
                currency=currency,
                merchant_key=self.settings.merchant_key,
                merchant_name=self.settings.merchant_name,
                description=request.description,
                theme_color=self.settings.theme_color,
            ),
        )

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    async def _begin(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        session.begin_validation()

    async def _validate_and_place_order(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        cart = request.cart
        product_ids = self._validate_locally(request)

        decision = await self.entitlement_resolver.resolve(cart)
        if decision.free:
            # The plan pays; a coupon the server never checked is not sent along
            session.coupon_code = None
            session.mark_free()
            await self._place_free_purchase(session, FREE_PLAN_PAYMENT_METHOD)
            return

        if request.coupon_code:
            validation = await self.coupon_engine.validate(request.coupon_code, cart.subtotal_minor, cart=cart)
            if not validation.valid:
                raise ValidationError({"coupon_code": [validation.error]})
            session.coupon_code = validation.code
            session.apply_discount(validation.discount_minor, validation.coupon)

        if session.final_amount_minor == 0:
            await self._place_free_purchase(session, FULL_DISCOUNT_PAYMENT_METHOD)
            return

        # Nothing may be written server-side before the gateway is usable
        if not self.settings.has_merchant_key:
            raise GatewayConfigError("Payment gateway merchant key is not configured")

        receipt = await self.orders.create_order(
            product_ids=product_ids,
            final_amount_minor=session.final_amount_minor,
            coupon_code=session.coupon_code,
            idempotency_key=cart.idempotency_key(request.user_id),
        )
        if not receipt.order_id:
            raise ServiceError("Order service did not return an order id")

        session.record_order(str(receipt.order_id))
        logger.info(
            "Order created",
            session_id=str(session.id),
            order_id=session.order_id,
            final_amount_minor=session.final_amount_minor,
        )
        if receipt.total_amount_minor is not None and receipt.total_amount_minor != session.final_amount_minor:
            raise IntegrityError(
                f"Order {session.order_id} records {receipt.total_amount_minor}, checkout computed {session.final_amount_minor}"
            )

    def _validate_locally(self, request: CheckoutRequest) -> list[int]:
        cart = request.cart
        if cart.is_empty:
            raise ValidationError({"cart": ["Cart is empty"]})
        if not request.user_id:
            raise ValidationError({"user_id": ["Sign in to check out"]})

        subtotal = cart.subtotal_minor
        if isinstance(subtotal, bool) or not isinstance(subtotal, int) or subtotal < 0:
            raise ValidationError({"subtotal_minor": ["Subtotal must be a non-negative integer"]})

        return cart.product_ids()

    async def _place_free_purchase(self, session: CheckoutSession, payment_method: str) -> None:
        receipt = await self.orders.create_free_purchase(
            payment_method=payment_method,
            coupon_code=session.coupon_code,
        )
        if not receipt.order_id:
            raise ServiceError("Order service did not return an order id")
        if receipt.total_amount_minor:
            raise IntegrityError(f"Free purchase {receipt.order_id} records {receipt.total_amount_minor}, expected 0")

        session.succeed(order_id=str(receipt.order_id))
        logger.info(
            "Free purchase created",
            session_id=str(session.id),
            order_id=session.order_id,
            payment_method=payment_method,
        )

    async def _create_payment_order(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        payment_order = await self.payments.create_payment_order(
            amount_minor=session.final_amount_minor,
            currency=self.settings.currency,
            order_id=session.order_id,
            description=request.description,
        )
        session.record_gateway_order(payment_order.gateway_order_id, str(payment_order.payment_record_id))

        if payment_order.amount_minor != session.final_amount_minor:
            raise IntegrityError(
                f"Gateway order {payment_order.gateway_order_id} is for {payment_order.amount_minor}, "
                f"order {session.order_id} is for {session.final_amount_minor}"
            )
        if payment_order.currency.upper() != self.settings.currency.upper():
            raise IntegrityError(f"Gateway order currency {payment_order.currency} does not match {self.settings.currency}")

    async def _hand_off(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        session.await_gateway()
        logger.info(
            "Awaiting gateway payment",
            session_id=str(session.id),
            order_id=session.order_id,
            gateway_order_id=session.gateway_order_id,
        )

    async def _capture(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        try:
            record = await self.captures.capture_payment(
                payment_record_id=session.payment_record_id,
                gateway_payment_id=session.gateway_payment_id,
                amount_minor=session.final_amount_minor,
            )
        except ServiceError as exc:
            raise PaymentFailedError(f"Payment capture failed: {exc.message}") from exc

        if record.outcome == CaptureOutcome.TIMEOUT:
            raise CaptureAmbiguousError(record.error or "Capture timed out")
        if not record.is_captured:
            raise PaymentFailedError(record.error or "Payment capture failed")

        if record.amount_minor != session.final_amount_minor:
            raise IntegrityError(
                f"Captured {record.amount_minor} for order {session.order_id}, expected {session.final_amount_minor}"
            )

        session.succeed()
        logger.info(
            "Payment captured",
            session_id=str(session.id),
            order_id=session.order_id,
            outcome=record.outcome.value,
        )

    async def _reconcile(self, session: CheckoutSession, request: CheckoutRequest) -> None:
        result = await self.reconciler.reconcile(session.order_id, session.payment_record_id)
        if result == ReconcileResult.SUCCEEDED:
            session.succeed()
            return
        raise UnresolvedPaymentState(f"Could not confirm payment for order {session.order_id}")
