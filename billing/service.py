# billing/service.py
"""
Billing service for Stripe subscription management.

Handles:
- Checkout session creation
- Customer lookup by e-mail
- Customer portal session creation

All functions are blocking Stripe calls. Stripe SDK errors are wrapped into
BillingError subclasses so callers never depend on SDK exception types.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import stripe

_logger = logging.getLogger(__name__)


class BillingError(Exception):
    """Base billing error."""
    pass


class CheckoutError(BillingError):
    """Checkout session creation failed."""
    pass


class PortalError(BillingError):
    """Billing portal session creation failed."""
    pass


class CustomerLookupError(BillingError):
    """Stripe customer search or retrieval failed."""
    pass


class CustomerNotFoundError(CustomerLookupError):
    """No Stripe customer matches the given criteria."""
    pass


@dataclass(frozen=True)
class CheckoutRequest:
    """Parameters of a subscription checkout for one customer e-mail."""
    email: str
    price_id: str
    success_url: str
    cancel_url: str

    def to_params(self) -> dict:
        """Keyword arguments for ``stripe.checkout.Session.create``."""
        return {
            "mode": "subscription",
            "line_items": [
                {
                    "price": self.price_id,
                    "quantity": 1,
                }
            ],
            "customer_email": self.email,
            "client_reference_id": self.email,
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }


def create_checkout_session(request: CheckoutRequest) -> stripe.checkout.Session:
    """
    Create a Stripe Checkout session for a subscription.

    Raises:
        CheckoutError: If the e-mail is empty or Stripe rejects the request
    """
    if not request.email:
        raise CheckoutError("Customer e-mail is required")

    try:
        session = stripe.checkout.Session.create(**request.to_params())
    except stripe.StripeError as e:
        raise CheckoutError(f"Failed to create checkout session: {e}") from e

    _logger.info(f"Created checkout session {session.id} for {request.email}")
    return session


def find_customer_by_email(email: str) -> stripe.Customer:
    """
    Find a Stripe customer by exact e-mail match.

    Returns the first search hit; duplicate customers sharing an e-mail are
    not disambiguated.

    Raises:
        CustomerNotFoundError: If no customer matches
        CustomerLookupError: If the search request fails
    """
    if not email:
        raise CustomerNotFoundError("No e-mail given")

    query = f'email:"{_escape_search_value(email)}"'
    try:
        result = stripe.Customer.search(query=query, limit=1)
    except stripe.StripeError as e:
        raise CustomerLookupError(f"Customer search failed: {e}") from e

    if not result.data:
        raise CustomerNotFoundError("no customer found with given criteria")

    return result.data[0]


def retrieve_customer(customer_id: str) -> stripe.Customer:
    """
    Fetch the full customer record.

    Raises:
        CustomerLookupError: If Stripe can't return the customer
    """
    try:
        return stripe.Customer.retrieve(customer_id)
    except stripe.StripeError as e:
        raise CustomerLookupError(f"Failed to fetch stripe customer ({customer_id}): {e}") from e


def create_portal_session(customer_id: str, return_url: str) -> stripe.billing_portal.Session:
    """
    Create a Stripe Customer Portal session.

    Raises:
        PortalError: If Stripe rejects the request
    """
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer_id,
            return_url=return_url,
        )
    except stripe.StripeError as e:
        raise PortalError(f"Failed to create portal session: {e}") from e

    _logger.info(f"Created portal session for customer {customer_id}")
    return session


def _escape_search_value(value: str) -> str:
    # Stripe search query strings escape quotes with a backslash
    return value.replace("\\", "\\\\").replace('"', '\\"')
