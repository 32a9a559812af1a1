"""Checkout configuration, read from the environment.

Protean's own settings (providers, event processing) stay at their defaults
and are selected by ``PROTEAN_ENV``; this module only covers what the
checkout saga and its adapters need.
"""

import os
from dataclasses import dataclass


def _float_env(name: str, default: float | None) -> float | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() == "none":
        return None
    return float(raw)


@dataclass(frozen=True)
class CheckoutSettings:
    api_base_url: str = "http://localhost:8000"
    api_token: str | None = None
    merchant_key: str = ""
    currency: str = "INR"
    merchant_name: str = "Storefront"
    theme_color: str = "#8B5CF6"
    http_timeout: float | None = 10.0
    # Capture has its own server-side deadline; keep ours well past it
    capture_timeout: float | None = 120.0
    services_adapter: str = "fake"
    # Sessions left at the gateway hand-off longer than this are cancelled
    gateway_session_ttl: float | None = 900.0

    @property
    def has_merchant_key(self) -> bool:
        return bool(self.merchant_key and self.merchant_key.strip())


def load_settings() -> CheckoutSettings:
    return CheckoutSettings(
        api_base_url=os.environ.get("CHECKOUT_API_BASE_URL", "http://localhost:8000"),
        api_token=os.environ.get("CHECKOUT_API_TOKEN") or None,
        merchant_key=os.environ.get("CHECKOUT_GATEWAY_MERCHANT_KEY") or os.environ.get("RAZORPAY_KEY_ID", ""),
        currency=os.environ.get("CHECKOUT_CURRENCY", "INR").upper(),
        merchant_name=os.environ.get("CHECKOUT_MERCHANT_NAME", "Storefront"),
        theme_color=os.environ.get("CHECKOUT_THEME_COLOR", "#8B5CF6"),
        http_timeout=_float_env("CHECKOUT_HTTP_TIMEOUT", 10.0),
        capture_timeout=_float_env("CHECKOUT_CAPTURE_TIMEOUT", 120.0),
        services_adapter=os.environ.get("CHECKOUT_SERVICES_ADAPTER", "fake").lower(),
        gateway_session_ttl=_float_env("CHECKOUT_GATEWAY_SESSION_TTL", 900.0),
    )
