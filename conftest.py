"""Configure pytest for the subscription gateway."""
import hashlib
import hmac
import os
import sys
import time
from pathlib import Path

import pytest

# =============================================================================
# Test Environment Configuration
# =============================================================================
# Set environment BEFORE any application imports: app.main builds the app at
# import time and must never reach Stripe from the test suite.
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("GATEWAY_DB_PATH", ":memory:")
os.environ.pop("SUBSCRIPTIONS_ENABLED", None)

# Project root on the path so app/, auth/, billing/ and persistence/ import
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def pytest_configure(config):
    """Ensure environment is set before test collection."""
    os.environ.setdefault("APP_ENVIRONMENT", "test")
    os.environ.setdefault("GATEWAY_DB_PATH", ":memory:")


@pytest.fixture
def sign_stripe_payload():
    """Return a function producing a valid Stripe-Signature header for a payload."""

    def _sign(payload: bytes, secret: str, timestamp: int = None) -> str:
        timestamp = int(time.time()) if timestamp is None else timestamp
        signed = f"{timestamp}.".encode("utf-8") + payload
        digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign
