"""Monetary helpers for checkout.

All storefront amounts are integers in the storefront's minor currency unit.
The payment gateway wants its own sub-unit (paise for INR), so every amount
handed to the gateway is multiplied by the currency's sub-unit multiplier.
Multiplication of integers never rounds, so the server-computed final amount
reaches the gateway unchanged.
"""

from protean.exceptions import ValidationError

DEFAULT_SUBUNIT_MULTIPLIER = 100

GATEWAY_SUBUNIT_MULTIPLIERS = {
    "INR": 100,
    "USD": 100,
    "EUR": 100,
    "GBP": 100,
    "JPY": 1,
}


def _require_amount(name: str, value) -> int:
    # bool is an int subclass; True is not a price
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError({name: ["Amount must be an integer in minor currency units"]})
    if value < 0:
        raise ValidationError({name: ["Amount cannot be negative"]})
    return value


def final_amount(subtotal_minor: int, discount_minor: int) -> int:
    """Amount payable after discount, never below zero."""
    subtotal_minor = _require_amount("subtotal_minor", subtotal_minor)
    discount_minor = _require_amount("discount_minor", discount_minor)
    return max(0, subtotal_minor - discount_minor)


def subunit_multiplier(currency: str) -> int:
    return GATEWAY_SUBUNIT_MULTIPLIERS.get(currency.upper(), DEFAULT_SUBUNIT_MULTIPLIER)


def to_gateway_subunits(amount_minor: int, currency: str) -> int:
    """Convert a storefront amount into the gateway's sub-unit."""
    amount_minor = _require_amount("amount_minor", amount_minor)
    return amount_minor * subunit_multiplier(currency)
