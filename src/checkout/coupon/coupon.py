"""Coupon Discount Engine.

Coupons are priced by the storefront server against a specific order amount.
The engine forwards the request, normalizes the answer and keeps a small
display cache so the cart view can show the last applied coupon across
reloads. The cache is a hint for rendering only: it is keyed by the cart
fingerprint it was validated against and is dropped as soon as the cart, the
amount or the code changes, or a later validation fails.
"""

from dataclasses import dataclass
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import Integer, String

from checkout.domain import checkout
from checkout.money import final_amount
from checkout.utils.logging import get_logger

logger = get_logger(__name__)


class DiscountType(Enum):
    FLAT = "flat"
    PERCENTAGE = "percentage"


@checkout.value_object(part_of="CheckoutSession")
class Coupon:
    """A coupon as described by the server.

    ``discount_value`` is the flat amount in minor units for flat coupons and
    the percentage for percentage coupons. It is for display; the payable
    discount always comes from the server.
    """

    code = String(max_length=100, required=True)
    discount_type = String(max_length=20, choices=DiscountType, required=True)
    discount_value = Integer(min_value=0)
    coupon_name = String(max_length=255)

    def display_label(self) -> str:
        if self.discount_type == DiscountType.PERCENTAGE.value:
            return f"{self.discount_value}% off"
        return f"{self.discount_value} off"


@dataclass(frozen=True)
class CouponValidation:
    """Outcome of validating a coupon code against an order amount."""

    code: str
    order_amount_minor: int
    valid: bool
    discount_minor: int = 0
    coupon: Coupon | None = None
    error: str | None = None

    def apply_to(self, subtotal_minor: int) -> int:
        """Payable amount for ``subtotal_minor`` with this validation applied."""
        return final_amount(subtotal_minor, self.discount_minor if self.valid else 0)


class CouponCache:
    """Display-only cache of successful validations, keyed by coupon code."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[str, CouponValidation]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def store(self, validation: CouponValidation, cart) -> None:
        self._entries[validation.code] = (cart.fingerprint(), validation)

    def get(self, code: str, cart) -> CouponValidation | None:
        entry = self._entries.get(code.strip().upper())
        if entry is None:
            return None

        fingerprint, validation = entry
        if fingerprint != cart.fingerprint() or validation.order_amount_minor != cart.subtotal_minor:
            # Validated against a different cart; never let it price this one
            del self._entries[validation.code]
            return None
        return validation

    def invalidate(self) -> None:
        self._entries.clear()


def normalize_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError({"code": ["Coupon code is required"]})
    return code.strip().upper()


class CouponEngine:
    """Validates coupon codes through the coupon service."""

    def __init__(self, service, cache: CouponCache | None = None) -> None:
        self.service = service
        self.cache = cache if cache is not None else CouponCache()

    async def validate(self, code, order_amount_minor, cart=None) -> CouponValidation:
        """Validate ``code`` for ``order_amount_minor``.

        Returns an invalid ``CouponValidation`` for codes the server rejects and
        raises ``ValidationError`` for malformed input, before any network call.
        A successful result is remembered for display when ``cart`` is given.
        """
        code = normalize_code(code)
        if isinstance(order_amount_minor, bool) or not isinstance(order_amount_minor, int) or order_amount_minor <= 0:
            raise ValidationError({"order_amount_minor": ["Order amount must be a positive integer"]})

        result = await self.service.validate_coupon(code, order_amount_minor)

        if not result.valid:
            self.cache.invalidate()
            logger.info("Coupon rejected", code=code, order_amount_minor=order_amount_minor, error=result.error)
            return CouponValidation(
                code=code,
                order_amount_minor=order_amount_minor,
                valid=False,
                error=result.error or "Coupon is not valid for this order",
            )

        discount_minor = min(max(result.discount_minor or 0, 0), order_amount_minor)
        if discount_minor != result.discount_minor:
            logger.warning(
                "Coupon discount outside order amount, clamped",
                code=code,
                order_amount_minor=order_amount_minor,
                server_discount_minor=result.discount_minor,
                discount_minor=discount_minor,
            )

        validation = CouponValidation(
            code=code,
            order_amount_minor=order_amount_minor,
            valid=True,
            discount_minor=discount_minor,
            coupon=Coupon(
                code=result.code or code,
                discount_type=result.discount_type or DiscountType.FLAT.value,
                discount_value=result.discount_value,
                coupon_name=result.coupon_name,
            ),
        )
        if cart is not None:
            self.cache.store(validation, cart)

        logger.info("Coupon applied", code=code, order_amount_minor=order_amount_minor, discount_minor=discount_minor)
        return validation

    def cached(self, code: str, cart) -> CouponValidation | None:
        """Last successful validation of ``code`` for exactly this cart, for display."""
        return self.cache.get(code, cart)

    def invalidate(self) -> None:
        """Forget cached validations; call when the cart or the code field changes."""
        self.cache.invalidate()
