"""Storefront REST adapter (production).

Implements every remote checkout port against the storefront backend with a
shared ``httpx.AsyncClient``. Non-2xx answers become ``ServiceError`` carrying
the one message the backend meant for the shopper; transport failures do too,
except on capture, where a timeout is a legitimate, structured outcome that
sends the saga to reconciliation.
"""

import httpx
from pydantic import ValidationError as PydanticValidationError

from checkout.config import CheckoutSettings
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
    OrderDetail,
    OrderReceipt,
    OrderService,
    PaymentGatewayService,
    PaymentOrder,
    PaymentState,
)
from checkout.services.schemas import (
    CaptureResponse,
    CartSummaryResponse,
    CouponValidationResponse,
    OrderCreatedResponse,
    OrderDetailResponse,
    PaymentOrderResponse,
    PaymentStatusResponse,
    to_minor,
)
from checkout.utils.logging import get_logger

logger = get_logger(__name__)

COUPON_VALIDATE_PATH = "/api/orders/coupons/validate/"
CART_SUMMARY_PATH = "/api/orders/cart/summary/"
ORDERS_PATH = "/api/orders/orders/"
PURCHASE_PATH = "/api/orders/purchase/"
GATEWAY_ORDER_PATH = "/api/razorpay/create-order/"
CAPTURE_PATH = "/api/razorpay/capture-payment/"
PAYMENT_STATUS_PATH = "/api/razorpay/payment/{payment_record_id}/status/"

_TIMEOUT_STATUSES = {408, 504}


def extract_error_message(payload, fallback: str) -> str:
    """Reduce a backend error body to one human-readable message."""
    if isinstance(payload, str):
        return payload.strip() or fallback
    if not isinstance(payload, dict):
        return fallback

    for key in ("detail", "error", "message"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()

    non_field = payload.get("non_field_errors")
    if isinstance(non_field, list) and non_field:
        return str(non_field[0])

    # Field errors: {"coupon_code": ["Expired"]}
    for field_name, value in payload.items():
        if isinstance(value, list) and value:
            return f"{field_name}: {value[0]}"

    return fallback


def _capture_outcome_from_message(message: str) -> CaptureOutcome:
    lowered = message.lower()
    if "already captured" in lowered:
        return CaptureOutcome.ALREADY_CAPTURED
    if "timeout" in lowered or "timed out" in lowered:
        return CaptureOutcome.TIMEOUT
    return CaptureOutcome.FAILED


class HttpStorefrontBackend(CouponService, EntitlementService, OrderService, PaymentGatewayService, CaptureService):
    """Remote checkout ports over the storefront's REST API."""

    def __init__(self, settings: CheckoutSettings, client: httpx.AsyncClient | None = None) -> None:
        self.settings = settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=httpx.Timeout(settings.http_timeout),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self, extra: dict | None = None) -> dict:
        headers = {"Accept": "application/json"}
        if self.settings.api_token:
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, path: str, *, json=None, headers=None) -> httpx.Response:
        try:
            return await self.client.request(method, path, json=json, headers=self._headers(headers))
        except httpx.TimeoutException as exc:
            raise ServiceError(f"Request to {path} timed out", status_code=504) from exc
        except httpx.HTTPError as exc:
            raise ServiceError(f"Could not reach the storefront service: {exc}") from exc

    @staticmethod
    def _body(response: httpx.Response):
        try:
            return response.json()
        except ValueError:
            return response.text

    def _raise_for_status(self, response: httpx.Response, path: str) -> None:
        if response.is_success:
            return
        message = extract_error_message(self._body(response), response.reason_phrase or "Request failed")
        logger.warning(
            "Storefront request failed",
            path=path,
            status_code=response.status_code,
            error=message,
        )
        raise ServiceError(message, status_code=response.status_code)

    async def _call(self, method: str, path: str, **kwargs):
        response = await self._request(method, path, **kwargs)
        self._raise_for_status(response, path)
        return self._body(response)

    @staticmethod
    def _parse(model, payload, path: str):
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            raise ServiceError(f"Unexpected response from {path}") from exc

    # -------------------------------------------------------------------
    # Coupons
    # -------------------------------------------------------------------
    async def validate_coupon(self, code: str, order_amount_minor: int) -> CouponResult:
        response = await self._request(
            "POST",
            COUPON_VALIDATE_PATH,
            json={"code": code, "order_amount": order_amount_minor},
        )
        body = self._body(response)

        # 400 with an error body is the backend's way of saying "invalid coupon"
        if response.status_code == 400:
            return CouponResult(valid=False, code=code, error=extract_error_message(body, "Invalid coupon code"))
        self._raise_for_status(response, COUPON_VALIDATE_PATH)

        return self._parse(CouponValidationResponse, body, COUPON_VALIDATE_PATH).to_result(code)

    # -------------------------------------------------------------------
    # Entitlement
    # -------------------------------------------------------------------
    async def check_entitlement(self) -> EntitlementStatus:
        body = await self._call("GET", CART_SUMMARY_PATH)
        return self._parse(CartSummaryResponse, body, CART_SUMMARY_PATH).to_status()

    # -------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------
    async def create_order(
        self,
        product_ids: list[int],
        final_amount_minor: int,
        coupon_code: str | None,
        idempotency_key: str,
    ) -> OrderReceipt:
        payload = {"product_ids": list(product_ids), "total_amount": final_amount_minor}
        if coupon_code:
            payload["coupon_code"] = coupon_code

        body = await self._call(
            "POST",
            ORDERS_PATH,
            json=payload,
            headers={"Idempotency-Key": idempotency_key},
        )
        return self._parse(OrderCreatedResponse, body, ORDERS_PATH).to_receipt()

    async def create_free_purchase(self, payment_method: str, coupon_code: str | None) -> OrderReceipt:
        payload = {"payment_method": payment_method}
        if coupon_code:
            payload["coupon_code"] = coupon_code

        body = await self._call("POST", PURCHASE_PATH, json=payload)
        receipt = self._parse(OrderCreatedResponse, body, PURCHASE_PATH).to_receipt()
        # The purchase endpoint does not echo a total; a free purchase is 0 by definition
        if receipt.total_amount_minor is None:
            return OrderReceipt(order_id=receipt.order_id, total_amount_minor=0)
        return receipt

    async def get_order(self, order_id: str) -> OrderDetail:
        path = f"{ORDERS_PATH}{order_id}/"
        body = await self._call("GET", path)
        return self._parse(OrderDetailResponse, body, path).to_detail()

    # -------------------------------------------------------------------
    # Gateway
    # -------------------------------------------------------------------
    async def create_payment_order(
        self,
        amount_minor: int,
        currency: str,
        order_id: str,
        description: str,
    ) -> PaymentOrder:
        body = await self._call(
            "POST",
            GATEWAY_ORDER_PATH,
            json={
                "amount": amount_minor,
                "currency": currency,
                "order_id": order_id,
                "description": description,
            },
        )
        return self._parse(PaymentOrderResponse, body, GATEWAY_ORDER_PATH).to_payment_order(amount_minor, currency)

    async def get_payment_status(self, payment_record_id: str) -> PaymentState:
        path = PAYMENT_STATUS_PATH.format(payment_record_id=payment_record_id)
        body = await self._call("GET", path)
        return self._parse(PaymentStatusResponse, body, path).to_state(payment_record_id)

    async def capture_payment(
        self,
        payment_record_id: str,
        gateway_payment_id: str,
        amount_minor: int,
    ) -> CaptureRecord:
        def record(outcome: CaptureOutcome, amount: int | None = None, error: str | None = None) -> CaptureRecord:
            return CaptureRecord(
                payment_record_id=payment_record_id,
                gateway_payment_id=gateway_payment_id,
                amount_minor=amount_minor if amount is None else amount,
                outcome=outcome,
                error=error,
            )

        payload = {
            "payment_id": payment_record_id,
            "razorpay_payment_id": gateway_payment_id,
            "amount": amount_minor,
        }
        try:
            response = await self.client.request(
                "POST",
                CAPTURE_PATH,
                json=payload,
                headers=self._headers(),
                timeout=httpx.Timeout(self.settings.http_timeout, read=self.settings.capture_timeout),
            )
        except httpx.TimeoutException:
            logger.warning("Capture request timed out", payment_record_id=payment_record_id)
            return record(CaptureOutcome.TIMEOUT, error="Capture request timed out")
        except httpx.HTTPError as exc:
            # The request may or may not have reached the server
            logger.warning("Capture request failed in transport", payment_record_id=payment_record_id, error=str(exc))
            return record(CaptureOutcome.TIMEOUT, error=f"Capture request did not complete: {exc}")

        body = self._body(response)

        if not response.is_success:
            message = extract_error_message(body, response.reason_phrase or "Payment capture failed")
            if response.status_code in _TIMEOUT_STATUSES:
                return record(CaptureOutcome.TIMEOUT, error=message)
            outcome = _capture_outcome_from_message(message)
            logger.warning(
                "Capture rejected",
                payment_record_id=payment_record_id,
                status_code=response.status_code,
                outcome=outcome.value,
                error=message,
            )
            return record(outcome, error=None if outcome == CaptureOutcome.ALREADY_CAPTURED else message)

        parsed = self._parse(CaptureResponse, body if isinstance(body, dict) else {}, CAPTURE_PATH)
        amount = to_minor(parsed.amount)
        status = (parsed.status or "").lower()

        if parsed.already_captured or status == "already_captured":
            return record(CaptureOutcome.ALREADY_CAPTURED, amount)
        if parsed.timeout or status == "timeout":
            return record(CaptureOutcome.TIMEOUT, amount, error=parsed.error or "Capture timed out")
        if status == "failed" or parsed.captured is False:
            return record(CaptureOutcome.FAILED, amount, error=parsed.error or "Payment capture failed")
        return record(CaptureOutcome.CAPTURED, amount)


class LogClientChannel(ClientChannel):
    """Server-side client channel: notices and invalidations go to the log."""

    def notify(self, notice) -> None:
        logger.info(
            "Checkout notice",
            kind=notice.kind.value,
            title=notice.title,
            order_id=notice.order_id,
            next_view=notice.next_view,
        )

    def invalidate(self, *keys: str) -> None:
        logger.info("Client caches invalidated", keys=list(keys))
