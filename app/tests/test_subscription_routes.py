"""
Tests for the /subscription endpoints.

Stripe is mocked at the SDK boundary; webhook signatures are real HMACs over
the posted payload.
"""
import json
import logging
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest
import stripe
from fastapi.testclient import TestClient
from starlette.formparsers import MultiPartException

from app.config import AppConfig, ConfigurationError, SubscriptionsConfig
from app.main import create_app
from auth.middleware import get_optional_user
from auth.models import User
from billing.products import Plan, PriceLookupError

WEBHOOK_SECRET = "whsec_test_secret"
CHECKOUT_URL = "https://checkout.stripe.com/c/pay/cs_test_1"
PORTAL_URL = "https://billing.stripe.com/p/session/test_1"


def make_config(base_path: str = "") -> AppConfig:
    return AppConfig(
        environment="test",
        public_url="https://x.test",
        base_path=base_path,
        subscriptions=SubscriptionsConfig(
            enabled=True,
            stripe_secret_key="sk_test_123",
            stripe_endpoint_secret=WEBHOOK_SECRET,
            standard_price_id="price_123",
        ),
    )


def make_app(config: AppConfig):
    plan = Plan(price_id="price_123", unit_amount_decimal=Decimal("400"), currency="eur")
    with patch("app.routers.subscription.fetch_plan", return_value=plan):
        return create_app(config)


def login_as(application, user):
    application.dependency_overrides[get_optional_user] = lambda: user


def redirect_query(response) -> dict:
    parts = urlsplit(response.headers["location"])
    return {key: values[0] for key, values in parse_qs(parts.query).items()}


def event_payload(event_type: str, customer="cus_123") -> bytes:
    return json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": "sub_123",
                "object": "subscription",
                "status": "active",
                "customer": customer,
            }
        },
    }).encode("utf-8")


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def application(config):
    return make_app(config)


@pytest.fixture
def client(application):
    return TestClient(application, follow_redirects=False)


@pytest.fixture
def principal():
    return User.new(username="alice", password_hash="hash", email="a@b.com")


@pytest.fixture
def anonymous_email_principal():
    return User.new(username="bob", password_hash="hash")


# =============================================================================
# Startup
# =============================================================================


class TestStartup:
    """Tests for subscription initialization."""

    def test_standard_price_resolved(self, config, application):
        assert config.subscriptions.standard_price == "4 €"

    def test_stripe_key_configured(self, application):
        assert stripe.api_key == "sk_test_123"

    def test_price_lookup_failure_is_fatal(self, caplog):
        config = make_config()
        with patch("app.routers.subscription.fetch_plan", side_effect=PriceLookupError("No such price")):
            with caplog.at_level(logging.CRITICAL, logger="app.routers.subscription"):
                with pytest.raises(ConfigurationError, match="failed to fetch stripe plan details"):
                    create_app(config)

        assert "failed to fetch stripe plan details" in caplog.text


# =============================================================================
# Redirect endpoints
# =============================================================================


class TestRedirectEndpoints:
    """Tests for success/cancel redirects."""

    def test_success_redirect(self, client):
        response = client.get("/subscription/success")

        assert response.status_code == 302
        assert response.headers["location"].startswith("/settings?")
        assert response.headers["location"].endswith("#subscription")
        assert redirect_query(response) == {"success": "you have successfully subscribed!"}

    def test_cancel_redirect(self, client):
        response = client.get("/subscription/cancel")

        assert response.status_code == 302
        assert response.headers["location"] == "/settings#subscription"

    def test_base_path_prefix(self):
        client = TestClient(make_app(make_config(base_path="/wk")), follow_redirects=False)

        response = client.get("/wk/subscription/cancel")

        assert response.status_code == 302
        assert response.headers["location"] == "/wk/settings#subscription"
        assert client.get("/subscription/cancel").status_code == 404


# =============================================================================
# Checkout
# =============================================================================


class TestCheckout:
    """Tests for POST /subscription/checkout."""

    def test_requires_authentication(self, client):
        with patch("stripe.checkout.Session.create") as mock_create:
            response = client.post("/subscription/checkout")

        assert response.status_code == 302
        assert response.headers["location"] == "/?error=unauthorized"
        mock_create.assert_not_called()

    def test_redirects_to_checkout(self, application, client, principal):
        login_as(application, principal)
        session = SimpleNamespace(id="cs_test_1", url=CHECKOUT_URL)

        with patch("stripe.checkout.Session.create", return_value=session) as mock_create:
            response = client.post("/subscription/checkout", data={"plan": "standard"})

        assert response.status_code == 303
        assert response.headers["location"] == CHECKOUT_URL

        params = mock_create.call_args.kwargs
        assert params["mode"] == "subscription"
        assert params["line_items"] == [{"price": "price_123", "quantity": 1}]
        assert params["customer_email"] == "a@b.com"
        assert params["client_reference_id"] == "a@b.com"
        assert params["success_url"] == "https://x.test/subscription/success"
        assert params["cancel_url"] == "https://x.test/subscription/cancel"

    def test_callback_urls_include_base_path(self, principal):
        application = make_app(make_config(base_path="/wk"))
        login_as(application, principal)
        client = TestClient(application, follow_redirects=False)

        with patch("stripe.checkout.Session.create", return_value=SimpleNamespace(id="cs", url=CHECKOUT_URL)) as mock_create:
            client.post("/wk/subscription/checkout")

        assert mock_create.call_args.kwargs["success_url"] == "https://x.test/wk/subscription/success"
        assert mock_create.call_args.kwargs["cancel_url"] == "https://x.test/wk/subscription/cancel"

    def test_missing_email_never_calls_stripe(self, application, client, anonymous_email_principal):
        login_as(application, anonymous_email_principal)

        with patch("stripe.checkout.Session.create") as mock_create:
            response = client.post("/subscription/checkout")

        assert response.status_code == 302
        assert redirect_query(response) == {"error": "missing e-mail address"}
        mock_create.assert_not_called()

    def test_unreadable_form(self, application, client, principal):
        login_as(application, principal)

        with patch("starlette.requests.Request.form", side_effect=MultiPartException("bad form")):
            with patch("stripe.checkout.Session.create") as mock_create:
                response = client.post("/subscription/checkout")

        assert response.status_code == 302
        assert redirect_query(response) == {"error": "missing form values"}
        mock_create.assert_not_called()

    def test_stripe_failure(self, application, client, principal, caplog):
        login_as(application, principal)

        with patch("stripe.checkout.Session.create", side_effect=stripe.APIConnectionError("network down")) as mock_create:
            with caplog.at_level(logging.ERROR, logger="app.routers.subscription"):
                response = client.post("/subscription/checkout", headers={"X-Request-Id": "req-checkout"})

        assert mock_create.call_count == 1  # no retry
        assert response.status_code == 302
        assert redirect_query(response) == {"error": "something went wrong"}
        assert "failed to create stripe checkout session" in caplog.text
        assert "req-checkout" in caplog.text


# =============================================================================
# Portal
# =============================================================================


class TestPortal:
    """Tests for POST /subscription/portal."""

    def test_requires_authentication(self, client):
        response = client.post("/subscription/portal")

        assert response.status_code == 302
        assert response.headers["location"] == "/?error=unauthorized"

    def test_redirects_to_portal(self, application, client, principal):
        login_as(application, principal)
        customer = SimpleNamespace(id="cus_1", email="a@b.com")

        with patch("stripe.Customer.search", return_value=SimpleNamespace(data=[customer])) as mock_search:
            with patch("stripe.billing_portal.Session.create", return_value=SimpleNamespace(url=PORTAL_URL)) as mock_create:
                response = client.post("/subscription/portal")

        assert response.status_code == 303
        assert response.headers["location"] == PORTAL_URL
        mock_search.assert_called_once_with(query='email:"a@b.com"', limit=1)
        mock_create.assert_called_once_with(customer="cus_1", return_url="https://x.test")

    def test_missing_email_never_calls_stripe(self, application, client, anonymous_email_principal):
        login_as(application, anonymous_email_principal)

        with patch("stripe.Customer.search") as mock_search:
            with patch("stripe.billing_portal.Session.create") as mock_create:
                response = client.post("/subscription/portal")

        assert response.status_code == 302
        assert redirect_query(response) == {
            "error": "no subscription found with your e-mail address, please contact us!"
        }
        mock_search.assert_not_called()
        mock_create.assert_not_called()

    def test_no_customer_found(self, application, client, principal):
        login_as(application, principal)

        with patch("stripe.Customer.search", return_value=SimpleNamespace(data=[])):
            with patch("stripe.billing_portal.Session.create") as mock_create:
                response = client.post("/subscription/portal")

        assert response.status_code == 302
        assert redirect_query(response)["error"].startswith("no subscription found")
        mock_create.assert_not_called()

    def test_search_failure(self, application, client, principal):
        login_as(application, principal)

        with patch("stripe.Customer.search", side_effect=stripe.APIConnectionError("timeout")):
            response = client.post("/subscription/portal")

        assert response.status_code == 302
        assert redirect_query(response)["error"].startswith("no subscription found")

    def test_portal_session_failure(self, application, client, principal):
        login_as(application, principal)
        customer = SimpleNamespace(id="cus_1", email="a@b.com")

        with patch("stripe.Customer.search", return_value=SimpleNamespace(data=[customer])):
            with patch("stripe.billing_portal.Session.create", side_effect=stripe.APIConnectionError("down")):
                response = client.post("/subscription/portal")

        assert response.status_code == 302
        assert redirect_query(response) == {"error": "something went wrong"}


# =============================================================================
# Webhook
# =============================================================================


class TestWebhook:
    """Tests for POST /subscription/webhook."""

    def post_signed(self, client, sign_stripe_payload, payload: bytes):
        return client.post(
            "/subscription/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_stripe_payload(payload, WEBHOOK_SECRET)},
        )

    def test_oversized_body_rejected_before_verification(self, client, sign_stripe_payload):
        payload = b"x" * 65537

        with patch("app.routers.subscription.verify_webhook_signature") as mock_verify:
            response = client.post(
                "/subscription/webhook",
                content=payload,
                headers={"Stripe-Signature": sign_stripe_payload(payload, WEBHOOK_SECRET)},
            )

        assert response.status_code == 503
        mock_verify.assert_not_called()

    def test_body_over_global_request_limit(self, client, sign_stripe_payload):
        payload = b"x" * (2 * 1024 * 1024)

        with patch("app.routers.subscription.verify_webhook_signature") as mock_verify:
            response = client.post(
                "/subscription/webhook",
                content=payload,
                headers={"Stripe-Signature": sign_stripe_payload(payload, WEBHOOK_SECRET)},
            )

        assert response.status_code == 503
        mock_verify.assert_not_called()

    def test_global_request_limit_still_applies_elsewhere(self, client):
        response = client.post("/subscription/checkout", content=b"x" * (2 * 1024 * 1024))
        assert response.status_code == 413

    def test_body_over_global_request_limit_under_base_path(self):
        client = TestClient(make_app(make_config(base_path="/wk")), follow_redirects=False)

        with patch("app.routers.subscription.verify_webhook_signature") as mock_verify:
            response = client.post("/wk/subscription/webhook", content=b"x" * (2 * 1024 * 1024))

        assert response.status_code == 503
        mock_verify.assert_not_called()

    def test_oversized_streamed_body_rejected(self, client):
        def chunks():
            yield b"x" * 40000
            yield b"x" * 40000

        with patch("app.routers.subscription.verify_webhook_signature") as mock_verify:
            response = client.post("/subscription/webhook", content=chunks())

        assert response.status_code == 503
        mock_verify.assert_not_called()

    def test_body_at_limit_is_verified(self, client):
        payload = b"x" * 65536

        with patch("stripe.Customer.retrieve") as mock_retrieve:
            response = client.post(
                "/subscription/webhook",
                content=payload,
                headers={"Stripe-Signature": "t=1,v1=deadbeef"},
            )

        assert response.status_code == 400
        mock_retrieve.assert_not_called()

    def test_invalid_signature(self, client, sign_stripe_payload):
        payload = event_payload("customer.subscription.updated")

        with patch("stripe.Customer.retrieve") as mock_retrieve:
            response = client.post(
                "/subscription/webhook",
                content=payload,
                headers={"Stripe-Signature": sign_stripe_payload(payload, "whsec_wrong")},
            )

        assert response.status_code == 400
        mock_retrieve.assert_not_called()

    def test_missing_signature(self, client):
        with patch("stripe.Customer.retrieve") as mock_retrieve:
            response = client.post("/subscription/webhook", content=event_payload("customer.subscription.created"))

        assert response.status_code == 400
        mock_retrieve.assert_not_called()

    @pytest.mark.parametrize(
        "event_type",
        [
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
        ],
    )
    def test_subscription_event(self, client, sign_stripe_payload, caplog, event_type):
        customer = SimpleNamespace(id="cus_123", email="a@b.com")

        with patch("stripe.Customer.retrieve", return_value=customer) as mock_retrieve:
            with patch("auth.service.get_db") as mock_auth_db, patch("persistence.db.get_db") as mock_db:
                with caplog.at_level(logging.INFO):
                    response = self.post_signed(client, sign_stripe_payload, event_payload(event_type))

        assert response.status_code == 200
        assert response.content == b""
        mock_retrieve.assert_called_once_with("cus_123")

        associations = [r for r in caplog.records if r.getMessage().startswith("associated stripe customer")]
        assert len(associations) == 1
        assert associations[0].getMessage() == "associated stripe customer cus_123 with user a@b.com"

        # Subscription state is not written locally
        mock_auth_db.assert_not_called()
        mock_db.assert_not_called()

    def test_subscription_event_customer_fetch_fails(self, client, sign_stripe_payload):
        with patch("stripe.Customer.retrieve", side_effect=stripe.InvalidRequestError("No such customer", "id")):
            response = self.post_signed(client, sign_stripe_payload, event_payload("customer.subscription.updated"))

        assert response.status_code == 400

    def test_subscription_event_without_customer(self, client, sign_stripe_payload):
        with patch("stripe.Customer.retrieve") as mock_retrieve:
            response = self.post_signed(
                client, sign_stripe_payload, event_payload("customer.subscription.deleted", customer=None)
            )

        assert response.status_code == 400
        mock_retrieve.assert_not_called()

    @pytest.mark.parametrize(
        "payload",
        [
            b"[]",
            b'{"id": "evt_1", "object": "event", "data": {"object": {}}}',
        ],
    )
    def test_signed_payload_that_is_not_an_event(self, client, sign_stripe_payload, payload):
        with patch("stripe.Customer.retrieve") as mock_retrieve:
            response = self.post_signed(client, sign_stripe_payload, payload)

        assert response.status_code == 400
        mock_retrieve.assert_not_called()

    def test_unhandled_event(self, client, sign_stripe_payload, caplog):
        with patch("stripe.Customer.retrieve") as mock_retrieve:
            with caplog.at_level(logging.WARNING):
                response = self.post_signed(client, sign_stripe_payload, event_payload("invoice.paid"))

        assert response.status_code == 200
        mock_retrieve.assert_not_called()
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert any("got stripe event 'invoice.paid' with no handler defined" in r.getMessage() for r in warnings)
