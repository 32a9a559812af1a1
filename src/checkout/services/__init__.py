"""Checkout orchestrator factory.

Provides get_orchestrator() / set_orchestrator() to swap the backend:
- FakeStorefrontBackend for development and testing (default)
- HttpStorefrontBackend against the storefront REST API

Selected with the CHECKOUT_SERVICES_ADAPTER environment variable.
"""

from checkout.config import load_settings

_orchestrator = None


def get_orchestrator():
    """Return the configured checkout orchestrator (singleton)."""
    global _orchestrator
    if _orchestrator is None:
        from checkout.saga.orchestrator import CheckoutOrchestrator

        settings = load_settings()
        if settings.services_adapter == "fake":
            from checkout.services.fake_adapter import FakeClientChannel, FakeStorefrontBackend

            _orchestrator = CheckoutOrchestrator.from_backend(FakeStorefrontBackend(), FakeClientChannel(), settings)
        elif settings.services_adapter == "http":
            from checkout.services.http_adapter import HttpStorefrontBackend, LogClientChannel

            _orchestrator = CheckoutOrchestrator.from_backend(
                HttpStorefrontBackend(settings), LogClientChannel(), settings
            )
        else:
            raise ValueError(f"Unknown checkout services adapter: {settings.services_adapter}")
    return _orchestrator


def set_orchestrator(orchestrator) -> None:
    """Override the active orchestrator (useful for tests)."""
    global _orchestrator
    _orchestrator = orchestrator


def reset_orchestrator() -> None:
    """Reset to the default orchestrator."""
    global _orchestrator
    _orchestrator = None


async def close_orchestrator() -> None:
    """Release the backend's HTTP connections and drop the orchestrator."""
    global _orchestrator
    if _orchestrator is not None:
        aclose = getattr(_orchestrator.orders, "aclose", None)
        if aclose is not None:
            await aclose()
    _orchestrator = None
