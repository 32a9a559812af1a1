import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the Protean config overlay and pins the checkout services to the
    in-memory backend, whatever the shell environment says.
    """
    os.environ["PROTEAN_ENV"] = session.config.option.env
    os.environ["CHECKOUT_SERVICES_ADAPTER"] = "fake"
    os.environ.setdefault("CHECKOUT_GATEWAY_MERCHANT_KEY", "rzp_test_checkout")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(autouse=True)
def run_around_tests():
    """Drop the orchestrator singleton so no saga state leaks between tests."""
    yield

    from checkout.services import reset_orchestrator

    reset_orchestrator()
