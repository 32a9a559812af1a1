"""Integration tests for the storefront REST adapter over httpx.MockTransport."""

import json

import httpx
import pytest

from checkout.config import CheckoutSettings
from checkout.errors import ServiceError
from checkout.saga.orchestrator import CheckoutOrchestrator, CheckoutRequest
from checkout.services.fake_adapter import FakeClientChannel, FakeGatewayCheckout
from checkout.services.http_adapter import HttpStorefrontBackend, extract_error_message
from checkout.services.port import CaptureOutcome, OrderStatus, PaymentStatus


class StorefrontStub:
    """Routes requests to canned responses and records what was sent."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def on(self, method, path, status=200, body=None, exc=None):
        self.routes[(method, path)] = (status, body, exc)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status, body, exc = self.routes.get((request.method, request.url.path), (404, {"detail": "Not found."}, None))
        if exc is not None:
            raise exc
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    def sent(self, path):
        return [json.loads(r.content) if r.content else None for r in self.requests if r.url.path == path]


@pytest.fixture()
def stub():
    return StorefrontStub()


@pytest.fixture()
def http_settings():
    return CheckoutSettings(
        api_base_url="https://api.storefront.test",
        api_token="token-123",
        merchant_key="rzp_test_checkout",
    )


@pytest.fixture()
def http_backend(stub, http_settings):
    client = httpx.AsyncClient(base_url=http_settings.api_base_url, transport=httpx.MockTransport(stub))
    return HttpStorefrontBackend(http_settings, client=client)


class TestErrorMessages:
    def test_detail(self):
        assert extract_error_message({"detail": "Not allowed"}, "x") == "Not allowed"

    def test_error_key(self):
        assert extract_error_message({"error": "Coupon expired"}, "x") == "Coupon expired"

    def test_non_field_errors(self):
        assert extract_error_message({"non_field_errors": ["Cart is empty"]}, "x") == "Cart is empty"

    def test_field_errors(self):
        assert extract_error_message({"coupon_code": ["Expired"]}, "x") == "coupon_code: Expired"

    def test_plain_text(self):
        assert extract_error_message("Bad Gateway", "x") == "Bad Gateway"

    def test_fallback(self):
        assert extract_error_message({}, "Request failed") == "Request failed"


class TestCoupons:
    async def test_valid_coupon(self, stub, http_backend):
        stub.on(
            "POST",
            "/api/orders/coupons/validate/",
            body={
                "valid": True,
                "discount_amount": "500.00",
                "coupon": {"code": "FLAT500", "name": "Flat 500", "discount_type": "FLAT", "discount_value": 500},
            },
        )
        result = await http_backend.validate_coupon("FLAT500", 2499)

        assert result.valid is True
        assert result.discount_minor == 500
        assert result.discount_type == "flat"
        assert result.coupon_name == "Flat 500"
        assert stub.sent("/api/orders/coupons/validate/") == [{"code": "FLAT500", "order_amount": 2499}]

    async def test_rejected_coupon_is_a_result_not_an_error(self, stub, http_backend):
        stub.on("POST", "/api/orders/coupons/validate/", status=400, body={"error": "Coupon has expired"})
        result = await http_backend.validate_coupon("OLD", 2499)

        assert result.valid is False
        assert result.error == "Coupon has expired"

    async def test_server_error_raises(self, stub, http_backend):
        stub.on("POST", "/api/orders/coupons/validate/", status=500, body={"detail": "Server error"})
        with pytest.raises(ServiceError) as exc:
            await http_backend.validate_coupon("FLAT500", 2499)
        assert exc.value.status_code == 500

    async def test_bearer_token_sent(self, stub, http_backend):
        stub.on("POST", "/api/orders/coupons/validate/", body={"valid": False})
        await http_backend.validate_coupon("FLAT500", 2499)
        assert stub.requests[0].headers["Authorization"] == "Bearer token-123"


class TestEntitlement:
    async def test_cart_summary(self, stub, http_backend):
        stub.on(
            "GET",
            "/api/orders/cart/summary/",
            body={
                "total_amount": 5000,
                "has_active_subscription": True,
                "will_be_free": True,
                "subscription_plan": "Pro",
            },
        )
        status = await http_backend.check_entitlement()
        assert status.will_be_free is True
        assert status.plan_name == "Pro"

    async def test_unauthorized(self, stub, http_backend):
        stub.on("GET", "/api/orders/cart/summary/", status=401, body={"detail": "Authentication required."})
        with pytest.raises(ServiceError) as exc:
            await http_backend.check_entitlement()
        assert exc.value.message == "Authentication required."
        assert exc.value.status_code == 401


class TestOrders:
    async def test_create_order_sends_idempotency_key(self, stub, http_backend):
        stub.on("POST", "/api/orders/orders/", status=201, body={"id": 1001, "total_amount": "1999.00"})
        receipt = await http_backend.create_order([42], 1999, "FLAT500", "checkout-abc")

        assert receipt.order_id == "1001"
        assert receipt.total_amount_minor == 1999
        assert stub.requests[0].headers["Idempotency-Key"] == "checkout-abc"
        assert stub.sent("/api/orders/orders/") == [
            {"product_ids": [42], "total_amount": 1999, "coupon_code": "FLAT500"}
        ]

    async def test_create_order_without_id(self, stub, http_backend):
        stub.on("POST", "/api/orders/orders/", status=201, body={"message": "created"})
        receipt = await http_backend.create_order([42], 1999, None, "checkout-abc")
        assert receipt.order_id is None

    async def test_free_purchase(self, stub, http_backend):
        stub.on("POST", "/api/orders/purchase/", body={"order_id": 77})
        receipt = await http_backend.create_free_purchase("subscription", None)

        assert receipt.order_id == "77"
        assert receipt.total_amount_minor == 0
        assert stub.sent("/api/orders/purchase/") == [{"payment_method": "subscription"}]

    async def test_get_order(self, stub, http_backend):
        stub.on(
            "GET",
            "/api/orders/orders/1001/",
            body={"id": 1001, "status": "success", "total_amount": 1999, "product_ids": [42]},
        )
        detail = await http_backend.get_order("1001")
        assert detail.status == OrderStatus.SUCCESS
        assert detail.product_ids == (42,)

    async def test_unknown_status_is_pending(self, stub, http_backend):
        stub.on("GET", "/api/orders/orders/1001/", body={"id": 1001, "status": "processing"})
        detail = await http_backend.get_order("1001")
        assert detail.status == OrderStatus.PENDING

    async def test_transport_error(self, stub, http_backend):
        stub.on("GET", "/api/orders/orders/1001/", exc=httpx.ConnectError("connection refused"))
        with pytest.raises(ServiceError):
            await http_backend.get_order("1001")

    async def test_malformed_response(self, stub, http_backend):
        stub.on("GET", "/api/orders/orders/1001/", body={"status": "success"})
        with pytest.raises(ServiceError):
            await http_backend.get_order("1001")


class TestGatewayOrder:
    async def test_create_payment_order(self, stub, http_backend):
        stub.on(
            "POST",
            "/api/razorpay/create-order/",
            body={"razorpay_order_id": "order_Nx1", "payment_id": 501, "amount": 1999, "currency": "INR"},
        )
        payment_order = await http_backend.create_payment_order(1999, "INR", "1001", "Payment for order")

        assert payment_order.gateway_order_id == "order_Nx1"
        assert payment_order.payment_record_id == "501"
        assert payment_order.amount_minor == 1999
        assert stub.sent("/api/razorpay/create-order/") == [
            {"amount": 1999, "currency": "INR", "order_id": "1001", "description": "Payment for order"}
        ]

    async def test_amount_defaults_to_requested(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/create-order/", body={"razorpay_order_id": "order_Nx1", "payment_id": 501})
        payment_order = await http_backend.create_payment_order(1999, "INR", "1001", "Payment for order")
        assert payment_order.amount_minor == 1999
        assert payment_order.currency == "INR"


class TestPaymentStatus:
    async def test_captured(self, stub, http_backend):
        stub.on("GET", "/api/razorpay/payment/501/status/", body={"status": "captured", "amount": 1999})
        state = await http_backend.get_payment_status("501")

        assert state.status == PaymentStatus.CAPTURED
        assert state.amount_minor == 1999

    async def test_authorized_is_pending(self, stub, http_backend):
        stub.on("GET", "/api/razorpay/payment/501/status/", body={"payment_status": "authorized"})
        state = await http_backend.get_payment_status("501")
        assert state.status == PaymentStatus.PENDING

    async def test_failed(self, stub, http_backend):
        stub.on("GET", "/api/razorpay/payment/501/status/", body={"status": "failed"})
        state = await http_backend.get_payment_status("501")
        assert state.status == PaymentStatus.FAILED

    async def test_not_found(self, stub, http_backend):
        with pytest.raises(ServiceError) as exc:
            await http_backend.get_payment_status("999")
        assert exc.value.status_code == 404


class TestCapture:
    async def _capture(self, http_backend):
        return await http_backend.capture_payment("501", "pay_1", 1999)

    async def test_captured(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", body={"status": "captured", "amount": 1999})
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.CAPTURED
        assert record.is_captured
        assert stub.sent("/api/razorpay/capture-payment/") == [
            {"payment_id": "501", "razorpay_payment_id": "pay_1", "amount": 1999}
        ]

    async def test_already_captured_body(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", body={"already_captured": True})
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.ALREADY_CAPTURED
        assert record.amount_minor == 1999

    async def test_already_captured_error_message(self, stub, http_backend):
        stub.on(
            "POST",
            "/api/razorpay/capture-payment/",
            status=400,
            body={"error": "This payment has already captured"},
        )
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.ALREADY_CAPTURED

    async def test_gateway_timeout_status(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", status=504, body="Gateway Timeout")
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.TIMEOUT

    async def test_timeout_error_message(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", status=500, body={"detail": "Razorpay request timeout"})
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.TIMEOUT

    async def test_client_side_timeout(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", exc=httpx.ReadTimeout("read timed out"))
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.TIMEOUT

    async def test_declined(self, stub, http_backend):
        stub.on("POST", "/api/razorpay/capture-payment/", status=400, body={"error": "Payment declined by bank"})
        record = await self._capture(http_backend)
        assert record.outcome == CaptureOutcome.FAILED
        assert record.error == "Payment declined by bank"


class TestSagaOverHttp:
    async def test_timeout_reconciled_from_payment_status(self, stub, http_backend, http_settings, make_cart):
        stub.on("GET", "/api/orders/cart/summary/", body={"will_be_free": False})
        stub.on("POST", "/api/orders/orders/", status=201, body={"id": 1001, "total_amount": 2499})
        stub.on(
            "POST",
            "/api/razorpay/create-order/",
            body={"razorpay_order_id": "order_Nx1", "payment_id": 501, "amount": 2499},
        )
        stub.on("POST", "/api/razorpay/capture-payment/", status=504, body="Gateway Timeout")
        stub.on("GET", "/api/orders/orders/1001/", body={"id": 1001, "status": "pending"})
        stub.on("GET", "/api/razorpay/payment/501/status/", body={"status": "captured"})

        orchestrator = CheckoutOrchestrator.from_backend(http_backend, FakeClientChannel(), http_settings)
        outcome = await orchestrator.checkout(
            CheckoutRequest(user_id="user-001", cart=make_cart(2499, product_ids=[42])),
            FakeGatewayCheckout(),
        )

        assert outcome.succeeded
        assert [r.url.path for r in stub.requests][-2:] == [
            "/api/orders/orders/1001/",
            "/api/razorpay/payment/501/status/",
        ]

    async def test_timeout_then_reconciled(self, stub, http_backend, http_settings, make_cart):
        stub.on("GET", "/api/orders/cart/summary/", body={"will_be_free": False})
        stub.on("POST", "/api/orders/orders/", status=201, body={"id": 1001, "total_amount": 2499})
        stub.on(
            "POST",
            "/api/razorpay/create-order/",
            body={"razorpay_order_id": "order_Nx1", "payment_id": 501, "amount": 2499},
        )
        stub.on("POST", "/api/razorpay/capture-payment/", exc=httpx.ReadTimeout("read timed out"))
        stub.on("GET", "/api/orders/orders/1001/", body={"id": 1001, "status": "success", "total_amount": 2499})

        channel = FakeClientChannel()
        orchestrator = CheckoutOrchestrator.from_backend(http_backend, channel, http_settings)
        outcome = await orchestrator.checkout(
            CheckoutRequest(user_id="user-001", cart=make_cart(2499, product_ids=[42])),
            FakeGatewayCheckout(),
        )

        assert outcome.succeeded
        assert outcome.order_id == "1001"
        assert [r.url.path for r in stub.requests][-2:] == [
            "/api/razorpay/capture-payment/",
            "/api/orders/orders/1001/",
        ]
