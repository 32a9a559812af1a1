"""CheckoutSession aggregate: one checkout attempt, i.e. one saga instance.

The session is client-local and ephemeral: it is created when checkout starts
and dropped once it reaches a terminal state. The durable anchor of the
transaction is the server-side order id recorded in ORDER_CREATED.

State Machine:
    IDLE → VALIDATING → ORDER_CREATED → GATEWAY_ORDER_CREATED
         → AWAITING_GATEWAY → CAPTURING → SUCCEEDED
    CAPTURING → RECONCILING → SUCCEEDED | FAILED (unresolved)
    VALIDATING → SUCCEEDED (free purchase)
    any non-terminal state → FAILED
"""

from datetime import UTC, datetime
from enum import Enum

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String, ValueObject

from checkout.coupon.coupon import Coupon
from checkout.domain import checkout
from checkout.errors import FailureKind
from checkout.session.events import (
    CheckoutFailed,
    CheckoutOrderPlaced,
    CheckoutStarted,
    CheckoutSucceeded,
    CheckoutUnresolved,
)


class CheckoutState(Enum):
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    ORDER_CREATED = "ORDER_CREATED"
    GATEWAY_ORDER_CREATED = "GATEWAY_ORDER_CREATED"
    AWAITING_GATEWAY = "AWAITING_GATEWAY"
    CAPTURING = "CAPTURING"
    RECONCILING = "RECONCILING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


TERMINAL_STATES = frozenset({CheckoutState.SUCCEEDED, CheckoutState.FAILED})

_VALID_TRANSITIONS = {
    CheckoutState.IDLE: {CheckoutState.VALIDATING, CheckoutState.FAILED},
    CheckoutState.VALIDATING: {CheckoutState.ORDER_CREATED, CheckoutState.SUCCEEDED, CheckoutState.FAILED},
    CheckoutState.ORDER_CREATED: {CheckoutState.GATEWAY_ORDER_CREATED, CheckoutState.FAILED},
    CheckoutState.GATEWAY_ORDER_CREATED: {CheckoutState.AWAITING_GATEWAY, CheckoutState.FAILED},
    CheckoutState.AWAITING_GATEWAY: {CheckoutState.CAPTURING, CheckoutState.FAILED},
    CheckoutState.CAPTURING: {CheckoutState.RECONCILING, CheckoutState.SUCCEEDED, CheckoutState.FAILED},
    CheckoutState.RECONCILING: {CheckoutState.SUCCEEDED, CheckoutState.FAILED},
    CheckoutState.SUCCEEDED: set(),  # Terminal
    CheckoutState.FAILED: set(),  # Terminal
}


@checkout.aggregate
class CheckoutSession:
    user_id = String(max_length=255)
    state = String(max_length=30, choices=CheckoutState, default=CheckoutState.IDLE.value)
    line_count = Integer(min_value=0, default=0)
    subtotal_minor = Integer(min_value=0, default=0)
    discount_minor = Integer(min_value=0, default=0)
    final_amount_minor = Integer(min_value=0, default=0)
    coupon_code = String(max_length=100)
    coupon = ValueObject(Coupon)
    free = Boolean(default=False)
    order_id = String(max_length=255)
    gateway_order_id = String(max_length=255)
    payment_record_id = String(max_length=255)
    gateway_payment_id = String(max_length=255)
    error = String(max_length=1000)
    failure_kind = String(max_length=30, choices=FailureKind)
    started_at = DateTime()
    finished_at = DateTime()

    @invariant.post
    def final_amount_is_discounted_subtotal(self):
        expected = max(0, (self.subtotal_minor or 0) - (self.discount_minor or 0))
        if self.final_amount_minor != expected:
            raise ValidationError({"final_amount_minor": ["Final amount must equal subtotal minus discount"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def start(cls, user_id, cart, coupon_code=None):
        # A malformed subtotal is reported by the VALIDATING step, not here
        subtotal = cart.subtotal_minor
        if isinstance(subtotal, bool) or not isinstance(subtotal, int) or subtotal < 0:
            subtotal = 0

        now = datetime.now(UTC)
        session = cls(
            user_id=user_id,
            state=CheckoutState.IDLE.value,
            line_count=len(cart.lines),
            subtotal_minor=subtotal,
            final_amount_minor=subtotal,
            coupon_code=coupon_code,
            started_at=now,
        )
        session.raise_(
            CheckoutStarted(
                session_id=str(session.id),
                user_id=user_id or "anonymous",
                line_count=len(cart.lines),
                subtotal_minor=subtotal,
                started_at=now,
            )
        )
        return session

    # -------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------
    @property
    def current_state(self) -> CheckoutState:
        return CheckoutState(self.state)

    @property
    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES

    @property
    def is_unresolved(self) -> bool:
        return self.failure_kind == FailureKind.UNRESOLVED.value

    def _transition(self, target: CheckoutState) -> None:
        current = self.current_state
        if target not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"state": [f"Cannot transition from {current.value} to {target.value}"]})
        self.state = target.value

    # -------------------------------------------------------------------
    # Saga steps
    # -------------------------------------------------------------------
    def begin_validation(self) -> None:
        self._transition(CheckoutState.VALIDATING)

    def apply_discount(self, discount_minor: int, coupon: Coupon | None = None) -> None:
        """Price the session with a server-validated discount."""
        if self.current_state != CheckoutState.VALIDATING:
            raise ValidationError({"state": ["Discounts can only be applied while validating"]})

        discount_minor = min(discount_minor, self.subtotal_minor)
        with atomic_change(self):
            self.discount_minor = discount_minor
            self.final_amount_minor = max(0, self.subtotal_minor - discount_minor)
        self.coupon = coupon

    def mark_free(self) -> None:
        """Entitlement covers the cart: nothing is payable."""
        with atomic_change(self):
            self.discount_minor = self.subtotal_minor
            self.final_amount_minor = 0
        self.free = True

    def record_order(self, order_id: str) -> None:
        self._transition(CheckoutState.ORDER_CREATED)
        self.order_id = order_id
        self.raise_(
            CheckoutOrderPlaced(
                session_id=str(self.id),
                order_id=order_id,
                final_amount_minor=self.final_amount_minor,
                coupon_code=self.coupon_code,
            )
        )

    def record_gateway_order(self, gateway_order_id: str, payment_record_id: str) -> None:
        self._transition(CheckoutState.GATEWAY_ORDER_CREATED)
        self.gateway_order_id = gateway_order_id
        self.payment_record_id = payment_record_id

    def await_gateway(self) -> None:
        self._transition(CheckoutState.AWAITING_GATEWAY)

    def record_gateway_payment(self, gateway_payment_id: str) -> None:
        self._transition(CheckoutState.CAPTURING)
        self.gateway_payment_id = gateway_payment_id

    def begin_reconciliation(self) -> None:
        self._transition(CheckoutState.RECONCILING)

    # -------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------
    def succeed(self, order_id: str | None = None) -> None:
        self._transition(CheckoutState.SUCCEEDED)
        if order_id is not None:
            self.order_id = order_id
        now = datetime.now(UTC)
        self.finished_at = now
        self.raise_(
            CheckoutSucceeded(
                session_id=str(self.id),
                order_id=self.order_id,
                final_amount_minor=self.final_amount_minor,
                free=self.free,
                completed_at=now,
            )
        )

    def fail(self, kind: FailureKind, reason: str) -> None:
        self._transition(CheckoutState.FAILED)
        now = datetime.now(UTC)
        self.failure_kind = kind.value
        self.error = reason[:1000]
        self.finished_at = now

        if kind == FailureKind.UNRESOLVED:
            self.raise_(
                CheckoutUnresolved(
                    session_id=str(self.id),
                    order_id=self.order_id,
                    reason=self.error,
                    failed_at=now,
                )
            )
        else:
            self.raise_(
                CheckoutFailed(
                    session_id=str(self.id),
                    order_id=self.order_id,
                    failure_kind=kind.value,
                    reason=self.error,
                    failed_at=now,
                )
            )
