"""Pydantic request/response schemas for the Checkout API.

These are external contracts (anti-corruption layer), separate from the saga's
internal dataclasses.
"""

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class CartLineSchema(BaseModel):
    product_id: int | str
    unit_price_minor: int = Field(ge=0)
    title: str = ""


class NoticeSchema(BaseModel):
    kind: str
    title: str
    message: str
    order_id: str | None = None
    next_view: str


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class ValidateCouponRequest(BaseModel):
    code: str
    lines: list[CartLineSchema] = Field(min_length=1)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "code": "FLAT500",
                    "lines": [{"product_id": 42, "unit_price_minor": 2499, "title": "Poster pack"}],
                }
            ]
        }
    }


class StartCheckoutRequest(BaseModel):
    user_id: str | None = None
    lines: list[CartLineSchema] = Field(default_factory=list)
    coupon_code: str | None = None
    description: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-001",
                    "lines": [{"product_id": 42, "unit_price_minor": 2499, "title": "Poster pack"}],
                    "coupon_code": "FLAT500",
                }
            ]
        }
    }


class GatewayResultRequest(BaseModel):
    success: bool
    gateway_payment_id: str | None = None
    error: str | None = None


class CancelCheckoutRequest(BaseModel):
    reason: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class CouponValidationResponse(BaseModel):
    valid: bool
    code: str
    order_amount_minor: int
    discount_minor: int = 0
    final_amount_minor: int
    discount_type: str | None = None
    discount_value: int | None = None
    coupon_name: str | None = None
    label: str | None = None
    error: str | None = None


class GatewayHandoffResponse(BaseModel):
    session_id: str
    state: str = "AWAITING_GATEWAY"
    order_id: str
    gateway_order_id: str
    amount_subunits: int
    currency: str
    merchant_key: str
    merchant_name: str
    description: str
    theme_color: str


class CheckoutOutcomeResponse(BaseModel):
    session_id: str
    state: str
    order_id: str | None = None
    final_amount_minor: int = 0
    free: bool = False
    failure_kind: str | None = None
    error: str | None = None
    notice: NoticeSchema
    invalidated: list[str] = Field(default_factory=list)
