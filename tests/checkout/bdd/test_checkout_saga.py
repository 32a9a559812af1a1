"""BDD tests for the checkout saga."""

import asyncio

from pytest_bdd import parsers, scenarios, then, when

from checkout.cart.snapshot import CartSnapshot
from checkout.saga.orchestrator import CheckoutRequest
from checkout.services.port import OrderStatus

scenarios("features/checkout_saga.feature")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the shopper checks out and pays")
def checks_out(orchestrator, gateway_ui, attempt):
    request = CheckoutRequest(
        user_id=attempt["user_id"],
        cart=CartSnapshot.from_lines(attempt["lines"]),
        coupon_code=attempt["coupon_code"],
    )
    attempt["outcome"] = asyncio.run(orchestrator.checkout(request, gateway_ui))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse("the order is created for {amount:d}"))
def order_created_for(backend, amount):
    assert backend.calls_to("create_order")[0]["final_amount_minor"] == amount


@then(parsers.cfparse("the gateway is asked for {subunits:d} sub-units"))
def gateway_asked_for(gateway_ui, subunits):
    assert gateway_ui.requests[0].amount_subunits == subunits


@then("no gateway payment was started")
def no_gateway_payment(backend, gateway_ui):
    assert backend.calls_to("create_payment_order") == []
    assert gateway_ui.requests == []


@then(parsers.cfparse('the free purchase was made with payment method "{method}"'))
def free_purchase_made(backend, method):
    assert backend.calls_to("create_free_purchase")[0]["payment_method"] == method


@then("no order was created")
def no_order_created(backend):
    assert backend.calls_to("create_order") == []
    assert backend.orders == {}


@then("the order stays pending")
def order_stays_pending(backend, attempt):
    assert backend.orders[attempt["outcome"].order_id]["status"] == OrderStatus.PENDING


@then("the order was reconciled")
def order_reconciled(backend):
    assert len(backend.calls_to("get_order")) == 1
