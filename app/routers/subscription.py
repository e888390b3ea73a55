"""
Subscription endpoints backed by Stripe.

Routes (mounted under ``{BASE_PATH}/subscription``):
- GET  /success   public, post-checkout confirmation redirect
- GET  /cancel    public, post-checkout cancel redirect
- POST /webhook   public, Stripe webhook receiver
- POST /checkout  authenticated, redirects to a hosted Checkout page
- POST /portal    authenticated, redirects to the hosted Customer Portal

Every user-facing failure degrades to a redirect to the settings page with an
``error`` query parameter. The webhook answers with bare status codes.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import ClientDisconnect

from app.config import AppConfig, ConfigurationError
from app.correlation import request_log_context
from auth.middleware import RedirectIfUnauthenticated
from auth.models import User
from billing.products import PriceLookupError, fetch_plan
from billing.service import (
    CheckoutError,
    CheckoutRequest,
    CustomerLookupError,
    PortalError,
    create_checkout_session,
    create_portal_session,
    find_customer_by_email,
)
from billing.stripe_client import init_stripe
from billing.webhooks import (
    MAX_WEBHOOK_BODY_BYTES,
    PayloadTooLargeError,
    SignatureVerificationError,
    WebhookPayloadError,
    process_webhook_event,
    read_capped_body,
    verify_webhook_signature,
)

_logger = logging.getLogger(__name__)

MSG_MISSING_EMAIL = "missing e-mail address"
MSG_MISSING_FORM = "missing form values"
MSG_NO_CUSTOMER = "no subscription found with your e-mail address, please contact us!"
MSG_GENERIC_ERROR = "something went wrong"
MSG_SUBSCRIBED = "you have successfully subscribed!"


def webhook_path(config: AppConfig) -> str:
    """Full path of the Stripe webhook route."""
    return f"{config.base_path}/subscription/webhook"


def init_subscriptions(config: AppConfig) -> None:
    """
    Configure Stripe and resolve the standard price.

    Raises:
        ConfigurationError: If the price can't be fetched; the application
            must not start with a broken billing setup.
    """
    settings = config.subscriptions
    init_stripe(settings)

    try:
        plan = fetch_plan(settings.standard_price_id)
    except PriceLookupError as e:
        _logger.critical(f"failed to fetch stripe plan details: {e}")
        raise ConfigurationError(f"failed to fetch stripe plan details: {e}") from e

    settings.standard_price = plan.display_price
    _logger.info(f"enabling subscriptions with stripe payment for {settings.standard_price} / {plan.interval}")


def build_subscription_router(config: AppConfig) -> APIRouter:
    """
    Create the subscription router for an enabled configuration.

    Call init_subscriptions() first; this function only wires routes.
    """
    settings = config.subscriptions
    router = APIRouter(prefix=f"{config.base_path}/subscription", tags=["subscription"])
    authenticate = RedirectIfUnauthenticated(f"{config.base_path}/?error=unauthorized")

    def settings_redirect(**query: str) -> RedirectResponse:
        return RedirectResponse(config.settings_url(**query), status_code=status.HTTP_302_FOUND)

    @router.get("/success")
    async def get_checkout_success():
        return settings_redirect(success=MSG_SUBSCRIBED)

    @router.get("/cancel")
    async def get_checkout_cancel():
        return settings_redirect()

    @router.post("/webhook")
    async def post_webhook(request: Request):
        context = request_log_context(request)

        try:
            declared = request.headers.get("content-length")
            if declared and int(declared) > MAX_WEBHOOK_BODY_BYTES:
                raise PayloadTooLargeError(f"declared body size {declared} exceeds {MAX_WEBHOOK_BODY_BYTES} bytes")
            payload = await read_capped_body(request.stream())
        except (PayloadTooLargeError, ClientDisconnect, ValueError) as e:
            _logger.error(f"{context} error in stripe webhook request: {e}")
            return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)

        try:
            event = verify_webhook_signature(
                payload,
                request.headers.get("stripe-signature"),
                settings.stripe_endpoint_secret,
            )
        except SignatureVerificationError as e:
            _logger.error(f"{context} stripe webhook signature verification failed: {e}")
            return Response(status_code=status.HTTP_400_BAD_REQUEST)

        try:
            await run_in_threadpool(process_webhook_event, event)
        except WebhookPayloadError as e:
            _logger.error(f"{context} failed to parse stripe webhook payload: {e}")
            return Response(status_code=status.HTTP_400_BAD_REQUEST)
        except CustomerLookupError as e:
            _logger.error(f"{context} {e}")
            return Response(status_code=status.HTTP_400_BAD_REQUEST)

        return Response(status_code=status.HTTP_200_OK)

    @router.post("/checkout")
    async def post_checkout(request: Request, user: User = Depends(authenticate)):
        if not user.email:
            return settings_redirect(error=MSG_MISSING_EMAIL)

        try:
            await request.form()
        except (StarletteHTTPException, MultiPartException) as e:
            _logger.warning(f"{request_log_context(request)} unreadable checkout form: {e}")
            return settings_redirect(error=MSG_MISSING_FORM)

        checkout = CheckoutRequest(
            email=user.email,
            price_id=settings.standard_price_id,
            success_url=config.public_route("/subscription/success"),
            cancel_url=config.public_route("/subscription/cancel"),
        )

        try:
            session = await run_in_threadpool(create_checkout_session, checkout)
        except CheckoutError as e:
            _logger.error(f"{request_log_context(request)} failed to create stripe checkout session: {e}")
            return settings_redirect(error=MSG_GENERIC_ERROR)

        return RedirectResponse(session.url, status_code=status.HTTP_303_SEE_OTHER)

    @router.post("/portal")
    async def post_portal(request: Request, user: User = Depends(authenticate)):
        if not user.email:
            return settings_redirect(error=MSG_NO_CUSTOMER)

        try:
            customer = await run_in_threadpool(find_customer_by_email, user.email)
        except CustomerLookupError as e:
            _logger.info(f"{request_log_context(request)} no stripe customer for {user.username}: {e}")
            return settings_redirect(error=MSG_NO_CUSTOMER)

        try:
            session = await run_in_threadpool(create_portal_session, customer.id, config.public_url)
        except PortalError as e:
            _logger.error(f"{request_log_context(request)} failed to create stripe portal session: {e}")
            return settings_redirect(error=MSG_GENERIC_ERROR)

        return RedirectResponse(session.url, status_code=status.HTTP_303_SEE_OTHER)

    return router
