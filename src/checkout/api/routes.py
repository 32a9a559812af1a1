"""FastAPI routes for the Checkout domain.

A checkout runs in two requests because the gateway UI lives in the browser:
``POST /checkout`` runs the saga up to the gateway hand-off and returns what
the UI needs (202), then ``POST /checkout/{session_id}/gateway`` (or
``/cancel``) resumes it to a terminal outcome. Free and early-failing
checkouts finish in the first request.
"""

from fastapi import APIRouter, HTTPException, Response
from protean.exceptions import ValidationError

from checkout.api.schemas import (
    CancelCheckoutRequest,
    CheckoutOutcomeResponse,
    CouponValidationResponse,
    GatewayHandoffResponse,
    GatewayResultRequest,
    NoticeSchema,
    StartCheckoutRequest,
    ValidateCouponRequest,
)
from checkout.cart.snapshot import CartLine, CartSnapshot
from checkout.errors import CheckoutInProgressError, ServiceError, UnknownSessionError
from checkout.saga.orchestrator import CheckoutOutcome, CheckoutRequest, GatewayHandoff
from checkout.services import get_orchestrator
from checkout.services.port import GatewayCheckoutResult
from checkout.utils.logging import bind_session

router = APIRouter(prefix="/checkout", tags=["checkout"])


def _cart_from(lines) -> CartSnapshot:
    return CartSnapshot.from_lines(
        CartLine(product_id=line.product_id, unit_price_minor=line.unit_price_minor, title=line.title)
        for line in lines
    )


def _validation_detail(exc: ValidationError):
    return getattr(exc, "messages", None) or str(exc)


def _outcome_response(outcome: CheckoutOutcome) -> CheckoutOutcomeResponse:
    notice = outcome.notice
    return CheckoutOutcomeResponse(
        session_id=outcome.session_id,
        state=outcome.state.value,
        order_id=outcome.order_id,
        final_amount_minor=outcome.final_amount_minor,
        free=outcome.free,
        failure_kind=outcome.failure_kind,
        error=outcome.error,
        notice=NoticeSchema(
            kind=notice.kind.value,
            title=notice.title,
            message=notice.message,
            order_id=notice.order_id,
            next_view=notice.next_view,
        ),
        invalidated=list(outcome.invalidated),
    )


def _handoff_response(handoff: GatewayHandoff) -> GatewayHandoffResponse:
    gateway = handoff.gateway
    return GatewayHandoffResponse(
        session_id=handoff.session_id,
        order_id=handoff.order_id,
        gateway_order_id=gateway.gateway_order_id,
        amount_subunits=gateway.amount_subunits,
        currency=gateway.currency,
        merchant_key=gateway.merchant_key,
        merchant_name=gateway.merchant_name,
        description=gateway.description,
        theme_color=gateway.theme_color,
    )


@router.post("/coupons/validate", response_model=CouponValidationResponse)
async def validate_coupon(body: ValidateCouponRequest) -> CouponValidationResponse:
    cart = _cart_from(body.lines)
    engine = get_orchestrator().coupon_engine
    try:
        validation = await engine.validate(body.code, cart.subtotal_minor, cart=cart)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    except ServiceError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc

    coupon = validation.coupon
    return CouponValidationResponse(
        valid=validation.valid,
        code=validation.code,
        order_amount_minor=validation.order_amount_minor,
        discount_minor=validation.discount_minor,
        final_amount_minor=validation.apply_to(cart.subtotal_minor),
        discount_type=coupon.discount_type if coupon else None,
        discount_value=coupon.discount_value if coupon else None,
        coupon_name=coupon.coupon_name if coupon else None,
        label=coupon.display_label() if coupon else None,
        error=validation.error,
    )


@router.post("", response_model=CheckoutOutcomeResponse | GatewayHandoffResponse)
async def start_checkout(body: StartCheckoutRequest, response: Response):
    """Start a checkout.

    Returns the gateway hand-off with 202 when the shopper has to pay, or the
    terminal outcome with 200 when the checkout already finished.
    """
    request = CheckoutRequest(
        user_id=body.user_id,
        cart=_cart_from(body.lines),
        coupon_code=body.coupon_code,
        description=body.description or "Payment for order",
    )
    try:
        progress = await get_orchestrator().start(request)
    except CheckoutInProgressError as exc:
        raise HTTPException(status_code=409, detail=exc.message) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc

    bind_session(progress.session_id)
    if isinstance(progress, GatewayHandoff):
        response.status_code = 202
        return _handoff_response(progress)
    return _outcome_response(progress)


@router.post("/{session_id}/gateway", response_model=CheckoutOutcomeResponse)
async def submit_gateway_result(session_id: str, body: GatewayResultRequest) -> CheckoutOutcomeResponse:
    bind_session(session_id)
    result = GatewayCheckoutResult(
        success=body.success,
        gateway_payment_id=body.gateway_payment_id,
        error=body.error,
    )
    try:
        outcome = await get_orchestrator().submit_gateway_result(session_id, result)
    except UnknownSessionError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    return _outcome_response(outcome)


@router.post("/{session_id}/cancel", response_model=CheckoutOutcomeResponse)
async def cancel_checkout(session_id: str, body: CancelCheckoutRequest | None = None) -> CheckoutOutcomeResponse:
    bind_session(session_id)
    reason = (body.reason if body else None) or "Payment cancelled by user"
    try:
        outcome = await get_orchestrator().cancel(session_id, reason)
    except UnknownSessionError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=_validation_detail(exc)) from exc
    return _outcome_response(outcome)
