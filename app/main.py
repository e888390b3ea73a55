"""Subscription Gateway - FastAPI application entrypoint."""
import logging
from datetime import datetime, timezone
from typing import Iterable

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import AppConfig, get_config, log_config_snapshot
from app.correlation import CorrelationIdMiddleware
from app.routers.auth import build_auth_router
from app.routers.subscription import build_subscription_router, init_subscriptions, webhook_path
from persistence.db import init_db

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Reject requests exceeding size limit to prevent payload bombs.

    Paths in ``exempt_paths`` enforce their own, smaller cap and answer
    with their own status code.
    """

    def __init__(self, app, max_request_size_bytes: int, exempt_paths: Iterable[str] = ()):
        super().__init__(app)
        self.max_request_size_bytes = max_request_size_bytes
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_request_size_bytes:
            return JSONResponse(
                status_code=413,
                content={"detail": "Request entity too large"},
            )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        return response


def create_app(config: AppConfig) -> FastAPI:
    """
    Build the application for a configuration snapshot.

    With subscriptions enabled this contacts Stripe to resolve the standard
    price and raises ConfigurationError if that fails.
    """
    log_config_snapshot(config)

    started_at = datetime.now(timezone.utc)

    application = FastAPI(
        title="Subscription Gateway",
        description="Stripe checkout, billing portal and webhook endpoints",
        version=config.service_version,
    )

    # The webhook caps its own body and answers 503 past the cap
    size_exempt_paths = [webhook_path(config)] if config.subscriptions.enabled else []

    # Added in reverse execution order: CorrelationId runs first
    application.add_middleware(SecurityHeadersMiddleware)
    application.add_middleware(
        RequestSizeLimitMiddleware,
        max_request_size_bytes=config.max_request_size_bytes,
        exempt_paths=size_exempt_paths,
    )
    application.add_middleware(CorrelationIdMiddleware)

    application.include_router(build_auth_router(config))

    if config.subscriptions.enabled:
        init_subscriptions(config)
        application.include_router(build_subscription_router(config))
    else:
        logger.info("subscriptions disabled; /subscription routes not registered")

    @application.on_event("startup")
    async def startup_event():
        init_db()

    @application.get("/health")
    async def health():
        return {
            "status": "healthy",
            "service": config.service_name,
            "version": config.service_version,
            "environment": config.environment,
            "subscriptions_enabled": config.subscriptions.enabled,
            "started_at": started_at.isoformat(),
        }

    return application


app = create_app(get_config())
