# billing/stripe_client.py
"""
Stripe SDK initialization.

The SDK is configured once at startup from the application config: the API
key plus a shared httpx-backed HTTP client with a fixed timeout. The client
holds no request state and is safe to reuse across concurrent requests.
"""

from __future__ import annotations

import logging
from typing import Optional

import stripe

from app.config import SubscriptionsConfig

_logger = logging.getLogger(__name__)

# Outbound Stripe calls give up after this many seconds
STRIPE_HTTP_TIMEOUT_SECONDS = 10.0

_http_client: Optional[stripe.HTTPXClient] = None


def get_http_client() -> stripe.HTTPXClient:
    """Get the shared Stripe HTTP client, creating it on first use."""
    global _http_client
    if _http_client is None:
        _http_client = stripe.HTTPXClient(
            timeout=STRIPE_HTTP_TIMEOUT_SECONDS,
            allow_sync_methods=True,
        )
    return _http_client


def is_test_key(secret_key: str) -> bool:
    """Check if a secret key belongs to Stripe test mode."""
    return secret_key.startswith(("sk_test_", "rk_test_"))


def init_stripe(settings: SubscriptionsConfig) -> None:
    """
    Configure the Stripe SDK with the API key and shared HTTP client.

    Raises:
        ValueError: If no secret key is configured
    """
    if not settings.stripe_secret_key:
        raise ValueError("Stripe secret key not configured")

    stripe.api_key = settings.stripe_secret_key
    stripe.default_http_client = get_http_client()

    mode = "test" if is_test_key(settings.stripe_secret_key) else "live"
    _logger.info(f"Stripe initialized in {mode} mode (timeout {STRIPE_HTTP_TIMEOUT_SECONDS:.0f}s)")
