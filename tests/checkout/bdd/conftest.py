"""Shared BDD fixtures and step definitions for the Checkout domain."""

import pytest
from pytest_bdd import given, parsers, then

from checkout.cart.snapshot import CartLine
from checkout.errors import GatewayUnavailableError
from checkout.saga.notices import NoticeKind
from checkout.services.port import CaptureOutcome, OrderStatus
from checkout.session.session import CheckoutState


@pytest.fixture()
def attempt():
    """What the shopper is about to check out, and how it ended."""
    return {"user_id": None, "lines": [], "coupon_code": None, "outcome": None}


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(parsers.cfparse('the shopper "{user_id}" is signed in'))
def shopper_signed_in(attempt, user_id):
    attempt["user_id"] = user_id


@given(parsers.cfparse("the cart holds product {product_id:d} priced {price:d}"))
def cart_holds_product(attempt, product_id, price):
    attempt["lines"].append(CartLine(product_id=product_id, unit_price_minor=price))


@given(parsers.cfparse('the shopper enters coupon "{code}"'))
def shopper_enters_coupon(attempt, code):
    attempt["coupon_code"] = code


@given("the shopper's plan makes the cart free")
def plan_makes_cart_free(backend):
    backend.configure(will_be_free=True, plan_name="Pro")


@given("the shopper will dismiss the gateway")
def shopper_dismisses_gateway(gateway_ui):
    gateway_ui.configure(should_succeed=False)


@given(parsers.cfparse('the capture service reports "{outcome}"'))
def capture_reports(backend, outcome):
    backend.configure(capture_outcome=CaptureOutcome(outcome))


@given(parsers.cfparse('the order is "{status}" after the timeout'))
def order_after_timeout(backend, status):
    backend.configure(status_after_timeout=OrderStatus(status))


@given("the gateway kept the payment")
def gateway_kept_payment(backend):
    backend.configure(captured_after_timeout=True)


@given("the payment gateway fails to load")
def gateway_fails_to_load(gateway_ui):
    gateway_ui.load_error = GatewayUnavailableError()


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then("the checkout succeeds")
def checkout_succeeds(attempt):
    assert attempt["outcome"].state == CheckoutState.SUCCEEDED


@then(parsers.cfparse('the checkout fails with "{kind}"'))
def checkout_fails_with(attempt, kind):
    outcome = attempt["outcome"]
    assert outcome.state == CheckoutState.FAILED
    assert outcome.failure_kind == kind


@then(parsers.cfparse('a "{kind}" notice is shown'))
def notice_is_shown(client_channel, kind):
    assert [notice.kind for notice in client_channel.notices] == [NoticeKind(kind)]
