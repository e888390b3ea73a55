# app/config.py
"""
Centralized configuration management with startup validation.

Loads a process-wide configuration snapshot from the environment. Secrets
are held in memory but never written to logs; the startup snapshot only
reports their presence.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlencode

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SERVICE_NAME = "subscription-gateway"
SERVICE_VERSION = "0.1.0"

DEFAULT_PUBLIC_URL = "http://localhost:8000"
DEFAULT_MAX_REQUEST_SIZE_BYTES = 1_048_576  # 1MB
MIN_REQUEST_SIZE_BYTES = 1024  # 1KB minimum

# Sensitive substrings that should never appear in logs
SENSITIVE_SUBSTRINGS = ("key", "token", "secret", "password", "credential", "auth")


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""

    pass


# =============================================================================
# Configuration Dataclasses
# =============================================================================


@dataclass
class SubscriptionsConfig:
    """Stripe subscription settings."""

    enabled: bool = False
    stripe_secret_key: str = field(default="", repr=False)
    stripe_endpoint_secret: str = field(default="", repr=False)
    standard_price_id: str = ""

    # Filled in at startup from the Stripe price object
    standard_price: str = ""

    def missing_settings(self) -> list:
        """Names of environment variables required when enabled but unset."""
        missing = []
        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.stripe_endpoint_secret:
            missing.append("STRIPE_ENDPOINT_SECRET")
        if not self.standard_price_id:
            missing.append("STRIPE_STANDARD_PRICE_ID")
        return missing


@dataclass
class AppConfig:
    """Application configuration loaded from environment."""

    # Service info
    service_name: str = SERVICE_NAME
    service_version: str = SERVICE_VERSION
    environment: str = "development"

    # Server
    public_url: str = DEFAULT_PUBLIC_URL
    base_path: str = ""

    # Security settings
    max_request_size_bytes: int = DEFAULT_MAX_REQUEST_SIZE_BYTES

    subscriptions: SubscriptionsConfig = field(default_factory=SubscriptionsConfig)

    # Warnings collected during config load
    warnings: list = field(default_factory=list)

    def is_dev(self) -> bool:
        return self.environment == "development"

    def is_production(self) -> bool:
        return self.environment == "production"

    def settings_url(self, **query: str) -> str:
        """Build the subscription section URL of the settings page."""
        url = f"{self.base_path}/settings"
        if query:
            url += "?" + urlencode(query)
        return url + "#subscription"

    def public_route(self, path: str) -> str:
        """Absolute public URL for an application path."""
        return f"{self.public_url}{self.base_path}{path}"


# =============================================================================
# Configuration Loading
# =============================================================================


def _parse_int_env(
    name: str, default: int, min_value: Optional[int] = None
) -> tuple[int, Optional[str]]:
    """
    Parse an integer environment variable with validation.

    Returns (value, warning_message).
    On invalid input, returns default with a warning.
    """
    raw = os.environ.get(name)
    if raw is None:
        return default, None

    try:
        value = int(raw)
    except ValueError:
        warning = f"{name}='{raw}' is not a valid integer; using default {default}"
        return default, warning

    if min_value is not None and value < min_value:
        warning = f"{name}={value} is below minimum {min_value}; using default {default}"
        return default, warning

    return value, None


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    raw = os.environ.get(name, "").lower()
    if raw in ("true", "1", "yes", "on"):
        return True
    if raw in ("false", "0", "no", "off", ""):
        return default
    return default


def _normalize_base_path(raw: str) -> str:
    """Turn '', '/', 'app', '/app/' into '' or '/app'."""
    path = raw.strip().strip("/")
    return f"/{path}" if path else ""


def load_config(fail_fast: bool = True) -> AppConfig:
    """
    Load and validate application configuration from environment.

    Args:
        fail_fast: If True, raise ConfigurationError on critical issues.
                   If False, collect warnings and continue.

    Returns:
        AppConfig instance with validated configuration.

    Raises:
        ConfigurationError: If subscriptions are enabled without the Stripe
                           settings they need and fail_fast is True.
    """
    warnings = []

    environment = os.environ.get("APP_ENVIRONMENT", "development")

    public_url = os.environ.get("PUBLIC_URL", DEFAULT_PUBLIC_URL).strip().rstrip("/")
    base_path = _normalize_base_path(os.environ.get("BASE_PATH", ""))

    max_request_size, size_warning = _parse_int_env(
        "MAX_REQUEST_SIZE_BYTES",
        DEFAULT_MAX_REQUEST_SIZE_BYTES,
        min_value=MIN_REQUEST_SIZE_BYTES,
    )
    if size_warning:
        warnings.append(size_warning)

    subscriptions = SubscriptionsConfig(
        enabled=_parse_bool_env("SUBSCRIPTIONS_ENABLED", False),
        stripe_secret_key=os.environ.get("STRIPE_SECRET_KEY", "").strip(),
        stripe_endpoint_secret=os.environ.get("STRIPE_ENDPOINT_SECRET", "").strip(),
        standard_price_id=os.environ.get("STRIPE_STANDARD_PRICE_ID", "").strip(),
    )

    if subscriptions.enabled:
        missing = subscriptions.missing_settings()
        if missing:
            message = f"SUBSCRIPTIONS_ENABLED is true but {', '.join(missing)} not set"
            if fail_fast:
                raise ConfigurationError(message)
            warnings.append(f"{message}; disabling subscriptions")
            subscriptions.enabled = False

    for warning in warnings:
        logger.warning(f"[CONFIG] {warning}")

    return AppConfig(
        environment=environment,
        public_url=public_url,
        base_path=base_path,
        max_request_size_bytes=max_request_size,
        subscriptions=subscriptions,
        warnings=warnings,
    )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration snapshot, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide snapshot (None forces a reload on next access)."""
    global _config
    _config = config


def log_config_snapshot(config: AppConfig) -> str:
    """
    Generate and log a safe configuration snapshot.

    Returns the snapshot string for testing purposes.
    Never logs actual secret values - only boolean presence flags.
    """
    subscriptions = config.subscriptions
    snapshot = (
        f"[STARTUP] service={config.service_name} "
        f"version={config.service_version} "
        f"environment={config.environment} "
        f"public_url={config.public_url} "
        f"base_path={config.base_path or '/'} "
        f"max_request_size_bytes={config.max_request_size_bytes} "
        f"subscriptions_enabled={subscriptions.enabled} "
        f"stripe_price_id={subscriptions.standard_price_id or '-'} "
        f"stripe_secret_key_present={bool(subscriptions.stripe_secret_key)} "
        f"stripe_endpoint_secret_present={bool(subscriptions.stripe_endpoint_secret)}"
    )
    logger.info(snapshot)
    return snapshot


def validate_config_snapshot_safety(snapshot: str) -> bool:
    """
    Validate that a config snapshot doesn't contain sensitive values.

    Returns True if safe, False if potentially unsafe.
    """
    snapshot_lower = snapshot.lower()

    # "key_present=true" is fine, "key=sk_live_..." is not
    for sensitive in SENSITIVE_SUBSTRINGS:
        pattern = rf"{sensitive}=(?!true|false)"
        if re.search(pattern, snapshot_lower):
            return False

    return True
