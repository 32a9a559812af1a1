"""Wire models for the storefront REST API.

These pydantic models are the anti-corruption layer between the backend's
JSON and the port dataclasses: they accept the field-name variants the
backend actually sends and nothing crosses into the saga untranslated.
"""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from checkout.services.port import (
    CouponResult,
    EntitlementStatus,
    OrderDetail,
    OrderReceipt,
    OrderStatus,
    PaymentOrder,
    PaymentState,
    PaymentStatus,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def to_minor(value: int | float | str | None) -> int | None:
    """Amounts arrive as ints, floats or decimal strings; they are whole minor units."""
    if value is None or value == "":
        return None
    return int(round(float(value)))


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------
class CouponPayload(_WireModel):
    code: str | None = None
    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "coupon_name"))
    discount_type: str | None = None
    discount_value: int | float | str | None = None


class CouponValidationResponse(_WireModel):
    valid: bool = False
    discount_amount: int | float | str | None = Field(
        default=0, validation_alias=AliasChoices("discount_amount", "discount")
    )
    coupon: CouponPayload | None = None
    error: str | None = Field(default=None, validation_alias=AliasChoices("error", "message", "detail"))

    def to_result(self, code: str) -> CouponResult:
        if not self.valid:
            return CouponResult(valid=False, code=code, error=self.error or "Invalid coupon code")

        coupon = self.coupon or CouponPayload()
        return CouponResult(
            valid=True,
            discount_minor=to_minor(self.discount_amount) or 0,
            code=(coupon.code or code),
            discount_type=(coupon.discount_type or "flat").lower(),
            discount_value=to_minor(coupon.discount_value),
            coupon_name=coupon.name,
        )


# ---------------------------------------------------------------------------
# Entitlement
# ---------------------------------------------------------------------------
class CartSummaryResponse(_WireModel):
    total_amount: int | float | str | None = None
    has_active_subscription: bool = False
    will_be_free: bool = False
    subscription_plan: str | dict | None = None

    def to_status(self) -> EntitlementStatus:
        plan = self.subscription_plan
        if isinstance(plan, dict):
            plan = plan.get("name") or plan.get("plan_name")
        return EntitlementStatus(will_be_free=self.will_be_free, plan_name=plan or None)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------
class OrderCreatedResponse(_WireModel):
    order_id: int | str | None = Field(default=None, validation_alias=AliasChoices("order_id", "id"))
    total_amount: int | float | str | None = None

    def to_receipt(self) -> OrderReceipt:
        return OrderReceipt(
            order_id=str(self.order_id) if self.order_id not in (None, "") else None,
            total_amount_minor=to_minor(self.total_amount),
        )


class OrderDetailResponse(_WireModel):
    order_id: int | str = Field(validation_alias=AliasChoices("order_id", "id"))
    status: str = OrderStatus.PENDING.value
    total_amount: int | float | str | None = None
    product_ids: list[int] = Field(default_factory=list)

    def to_detail(self) -> OrderDetail:
        try:
            status = OrderStatus(self.status.lower())
        except ValueError:
            # Statuses we do not know (e.g. "processing") are not proof of payment
            status = OrderStatus.PENDING
        return OrderDetail(
            order_id=str(self.order_id),
            status=status,
            total_amount_minor=to_minor(self.total_amount),
            product_ids=tuple(self.product_ids),
        )


# ---------------------------------------------------------------------------
# Gateway
# ---------------------------------------------------------------------------
class PaymentOrderResponse(_WireModel):
    razorpay_order_id: str = Field(validation_alias=AliasChoices("razorpay_order_id", "gateway_order_id"))
    payment_id: int | str = Field(validation_alias=AliasChoices("payment_id", "payment_record_id"))
    amount: int | float | str | None = None
    currency: str | None = None

    def to_payment_order(self, requested_amount_minor: int, requested_currency: str) -> PaymentOrder:
        amount = to_minor(self.amount)
        return PaymentOrder(
            gateway_order_id=self.razorpay_order_id,
            payment_record_id=str(self.payment_id),
            amount_minor=requested_amount_minor if amount is None else amount,
            currency=(self.currency or requested_currency).upper(),
        )


class CaptureResponse(_WireModel):
    status: str | None = None
    captured: bool | None = None
    already_captured: bool | None = None
    timeout: bool | None = None
    amount: int | float | str | None = None
    error: str | None = Field(default=None, validation_alias=AliasChoices("error", "message", "detail"))


class PaymentStatusResponse(_WireModel):
    status: str | None = Field(default=None, validation_alias=AliasChoices("status", "payment_status"))
    captured: bool | None = None
    amount: int | float | str | None = None

    def to_state(self, payment_record_id: str) -> PaymentState:
        status = (self.status or "").lower()
        if self.captured or status == "captured":
            payment_status = PaymentStatus.CAPTURED
        elif status == "failed":
            payment_status = PaymentStatus.FAILED
        else:
            # created/authorized and anything unknown: money not confirmed yet
            payment_status = PaymentStatus.PENDING
        return PaymentState(
            payment_record_id=str(payment_record_id),
            status=payment_status,
            amount_minor=to_minor(self.amount),
        )
