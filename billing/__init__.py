# billing/__init__.py
"""
Billing module for Stripe subscriptions.

Provides:
- Stripe Checkout session creation
- Customer lookup and Customer Portal sessions
- Webhook verification and subscription event dispatch
"""

from billing.service import (
    CheckoutRequest,
    create_checkout_session,
    find_customer_by_email,
    retrieve_customer,
    create_portal_session,
)
from billing.webhooks import (
    verify_webhook_signature,
    process_webhook_event,
)

__all__ = [
    "CheckoutRequest",
    "create_checkout_session",
    "find_customer_by_email",
    "retrieve_customer",
    "create_portal_session",
    "verify_webhook_signature",
    "process_webhook_event",
]
