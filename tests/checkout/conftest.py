import pytest
from protean.integrations.pytest import DomainFixture

from checkout.cart.snapshot import CartLine, CartSnapshot
from checkout.config import CheckoutSettings
from checkout.saga.orchestrator import CheckoutOrchestrator, CheckoutRequest
from checkout.services.fake_adapter import FakeClientChannel, FakeGatewayCheckout, FakeStorefrontBackend


@pytest.fixture(scope="session")
def checkout_bed():
    from checkout.domain import checkout

    bed = DomainFixture(checkout)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(checkout_bed):
    with checkout_bed.domain_context():
        yield


def _make_cart(*prices, product_ids=None) -> CartSnapshot:
    product_ids = product_ids or [101 + index for index in range(len(prices))]
    return CartSnapshot.from_lines(
        CartLine(product_id=product_id, unit_price_minor=price, title=f"Design {product_id}")
        for product_id, price in zip(product_ids, prices, strict=True)
    )


@pytest.fixture()
def make_cart():
    """Cart builder: one line per price, product ids default to 101, 102, ..."""
    return _make_cart


@pytest.fixture()
def settings():
    return CheckoutSettings(merchant_key="rzp_test_checkout", currency="INR", merchant_name="Storefront")


@pytest.fixture()
def backend():
    fake = FakeStorefrontBackend()
    fake.add_coupon("FLAT500", discount_type="flat", discount_value=500, name="Flat 500 off")
    fake.add_coupon("SAVE10", discount_type="percentage", discount_value=10, name="Ten percent off")
    fake.add_coupon("ALLFREE", discount_type="flat", discount_value=100000, name="Everything free")
    return fake


@pytest.fixture()
def gateway_ui():
    return FakeGatewayCheckout()


@pytest.fixture()
def client_channel():
    return FakeClientChannel()


@pytest.fixture()
def orchestrator(backend, client_channel, settings):
    return CheckoutOrchestrator.from_backend(backend, client_channel, settings)


@pytest.fixture()
def cart():
    return _make_cart(2499, product_ids=[42])


@pytest.fixture()
def checkout_request(cart):
    return CheckoutRequest(user_id="user-001", cart=cart)
