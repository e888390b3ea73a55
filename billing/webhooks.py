# billing/webhooks.py
"""
Stripe webhook handling with signature verification.

Security:
- Request bodies are capped before anything is parsed
- All events verified using the endpoint signing secret
- Never trust unverified payloads

Subscription events are resolved to their Stripe customer and logged. Local
subscription state is NOT updated from them yet: activating a user's
subscription period on 'active' and clearing it on 'canceled'/'unpaid' is an
open item, left out until the intended semantics are settled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import stripe

from billing.service import retrieve_customer

_logger = logging.getLogger(__name__)

MAX_WEBHOOK_BODY_BYTES = 65536

SUBSCRIPTION_EVENT_TYPES = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
})


class WebhookError(Exception):
    """Webhook processing error."""
    pass


class PayloadTooLargeError(WebhookError):
    """Webhook body exceeds the size cap."""
    pass


class SignatureVerificationError(WebhookError):
    """Webhook signature verification failed."""
    pass


class WebhookPayloadError(WebhookError):
    """Verified event carries an object we can't interpret."""
    pass


@dataclass(frozen=True)
class WebhookResult:
    """Outcome of processing one verified event."""
    event_type: str
    handled: bool
    subscription_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None


async def read_capped_body(
    chunks: AsyncIterator[bytes],
    limit: int = MAX_WEBHOOK_BODY_BYTES,
) -> bytes:
    """
    Collect a streamed request body, refusing anything over ``limit`` bytes.

    Raises:
        PayloadTooLargeError: As soon as the limit is exceeded
    """
    body = bytearray()
    async for chunk in chunks:
        body.extend(chunk)
        if len(body) > limit:
            raise PayloadTooLargeError(f"request body too large (limit {limit} bytes)")
    return bytes(body)


def verify_webhook_signature(payload: bytes, signature: Optional[str], secret: str) -> stripe.Event:
    """
    Verify a Stripe webhook signature and parse the event.

    The Python SDK does not compare the event's API version against its own,
    so events from endpoints pinned to other API versions are accepted.

    Raises:
        SignatureVerificationError: If the header is missing or the signature
            (or the JSON it covers) is invalid
    """
    if not secret:
        raise SignatureVerificationError("Webhook secret not configured")

    if not signature:
        raise SignatureVerificationError("Missing Stripe-Signature header")

    try:
        return stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as e:
        raise SignatureVerificationError(f"Invalid webhook signature: {e}") from e
    except ValueError as e:
        raise SignatureVerificationError(f"Invalid webhook payload: {e}") from e
    except (TypeError, AttributeError) as e:
        # Valid JSON that isn't an object, e.g. a top-level array
        raise SignatureVerificationError(f"Webhook payload is not an event object: {e}") from e


def process_webhook_event(event: stripe.Event) -> WebhookResult:
    """
    Dispatch a verified event on its type.

    Raises:
        WebhookPayloadError: If the event has no type, or a subscription event
            has no usable subscription
        CustomerLookupError: If the subscription's customer can't be fetched
    """
    event_type = getattr(event, "type", None)
    if not event_type:
        raise WebhookPayloadError(f"event {getattr(event, 'id', None) or 'unknown'} carries no type")

    if event_type in SUBSCRIPTION_EVENT_TYPES:
        return _handle_subscription_event(event)

    _logger.warning(f"got stripe event '{event_type}' with no handler defined")
    return WebhookResult(event_type=event_type, handled=False)


def _handle_subscription_event(event: stripe.Event) -> WebhookResult:
    subscription_id, customer_id = parse_subscription(event)

    customer = retrieve_customer(customer_id)
    email = getattr(customer, "email", None) or ""

    _logger.info(f"associated stripe customer {customer.id} with user {email}")
    _logger.info(
        f"received stripe subscription event of type '{event.type}' for subscription "
        f"'{subscription_id}' (customer '{customer.id}' with email '{email}')."
    )

    return WebhookResult(
        event_type=event.type,
        handled=True,
        subscription_id=subscription_id,
        customer_id=customer.id,
        customer_email=email,
    )


def parse_subscription(event: stripe.Event) -> tuple[str, str]:
    """
    Extract ``(subscription_id, customer_id)`` from a subscription event.

    The customer may be embedded as an ID string or as an expanded object.

    Raises:
        WebhookPayloadError: If either value is missing
    """
    event_id = getattr(event, "id", None) or "unknown"
    data = getattr(event, "data", None)
    subscription = getattr(data, "object", None)
    if subscription is None:
        raise WebhookPayloadError(f"event {event_id} carries no data object")

    subscription_id = getattr(subscription, "id", None)
    customer = getattr(subscription, "customer", None)
    customer_id = customer if isinstance(customer, str) else getattr(customer, "id", None)

    if not subscription_id or not customer_id:
        raise WebhookPayloadError(f"event {event_id} carries no subscription customer")

    return subscription_id, customer_id
