"""Storefront service ports (abstract interfaces).

The checkout saga never talks to HTTP directly. It depends on these ports,
which are implemented by ``FakeStorefrontBackend`` (dev/test) and
``HttpStorefrontBackend`` (production). Results cross the port as frozen
dataclasses so adapters cannot leak transport details into the saga.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class CaptureOutcome(Enum):
    CAPTURED = "captured"
    ALREADY_CAPTURED = "already_captured"
    TIMEOUT = "timeout"
    FAILED = "failed"


class PaymentStatus(Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class CouponResult:
    """Server verdict on a coupon for a given order amount."""

    valid: bool
    discount_minor: int = 0
    code: str | None = None
    discount_type: str | None = None
    discount_value: int | None = None
    coupon_name: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class EntitlementStatus:
    will_be_free: bool
    plan_name: str | None = None


@dataclass(frozen=True)
class OrderReceipt:
    """Server acknowledgement of a created order."""

    order_id: str | None
    total_amount_minor: int | None = None


@dataclass(frozen=True)
class OrderDetail:
    order_id: str
    status: OrderStatus
    total_amount_minor: int | None = None
    product_ids: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class PaymentOrder:
    """Gateway-side payment order created against a storefront order."""

    gateway_order_id: str
    payment_record_id: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class CaptureRecord:
    payment_record_id: str
    gateway_payment_id: str
    amount_minor: int
    outcome: CaptureOutcome
    error: str | None = None

    @property
    def is_captured(self) -> bool:
        return self.outcome in (CaptureOutcome.CAPTURED, CaptureOutcome.ALREADY_CAPTURED)


@dataclass(frozen=True)
class PaymentState:
    """Gateway-side status of one payment record."""

    payment_record_id: str
    status: PaymentStatus
    amount_minor: int | None = None


@dataclass(frozen=True)
class GatewayCheckoutRequest:
    """Everything the embedded gateway UI needs to collect a payment."""

    gateway_order_id: str
    amount_subunits: int
    currency: str
    merchant_key: str
    merchant_name: str
    description: str
    theme_color: str


@dataclass(frozen=True)
class GatewayCheckoutResult:
    success: bool
    gateway_payment_id: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Remote service ports
# ---------------------------------------------------------------------------
class CouponService(ABC):
    @abstractmethod
    async def validate_coupon(self, code: str, order_amount_minor: int) -> CouponResult:
        """Validate ``code`` against ``order_amount_minor`` and price the discount."""
        ...


class EntitlementService(ABC):
    @abstractmethod
    async def check_entitlement(self) -> EntitlementStatus:
        """Report whether the authenticated user's plan makes the cart free."""
        ...


class OrderService(ABC):
    @abstractmethod
    async def create_order(
        self,
        product_ids: list[int],
        final_amount_minor: int,
        coupon_code: str | None,
        idempotency_key: str,
    ) -> OrderReceipt:
        """Create a pending order for the cart."""
        ...

    @abstractmethod
    async def create_free_purchase(
        self,
        payment_method: str,
        coupon_code: str | None,
    ) -> OrderReceipt:
        """Create a zero-amount order without going through the gateway."""
        ...

    @abstractmethod
    async def get_order(self, order_id: str) -> OrderDetail:
        """Read the authoritative state of an order."""
        ...


class PaymentGatewayService(ABC):
    @abstractmethod
    async def create_payment_order(
        self,
        amount_minor: int,
        currency: str,
        order_id: str,
        description: str,
    ) -> PaymentOrder:
        """Create the gateway payment order for a storefront order."""
        ...

    @abstractmethod
    async def get_payment_status(self, payment_record_id: str) -> PaymentState:
        """Read the gateway-side status of a payment record. Never charges."""
        ...


class CaptureService(ABC):
    @abstractmethod
    async def capture_payment(
        self,
        payment_record_id: str,
        gateway_payment_id: str,
        amount_minor: int,
    ) -> CaptureRecord:
        """Capture an authorized payment. Always answers with a structured outcome."""
        ...


# ---------------------------------------------------------------------------
# Client-side ports
# ---------------------------------------------------------------------------
class GatewayCheckout(ABC):
    """The embedded, user-interactive gateway checkout."""

    @abstractmethod
    async def open(self, request: GatewayCheckoutRequest) -> GatewayCheckoutResult:
        """Show the gateway UI and wait until the shopper completes or dismisses it."""
        ...


class ClientChannel(ABC):
    """Where checkout reports back to the storefront client."""

    @abstractmethod
    def notify(self, notice) -> None:
        """Show a single toast/banner for a terminal checkout state."""
        ...

    @abstractmethod
    def invalidate(self, *keys: str) -> None:
        """Drop cached client data (cart, orders) so dependent views refetch."""
        ...
