"""
Request correlation: every request carries an X-Request-Id.

A well-formed client id is echoed back; anything else is replaced by a fresh
UUID4. Log lines about a request use request_log_context() so they can be
matched with the response the client saw.
"""
from __future__ import annotations

import re
import uuid
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-Id"
MAX_REQUEST_ID_LENGTH = 64
# Safe to interpolate into log lines
SAFE_REQUEST_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


def validate_request_id(request_id: Optional[str]) -> Optional[str]:
    """Return ``request_id`` if it is short and log-safe, else None."""
    if request_id and len(request_id) <= MAX_REQUEST_ID_LENGTH and SAFE_REQUEST_ID_PATTERN.match(request_id):
        return request_id
    return None


def generate_request_id() -> str:
    return str(uuid.uuid4())


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def request_log_context(request: Request) -> str:
    """
    Describe a request for log lines, e.g. ``[req=ab12 POST /subscription/portal]``.

    Query strings and headers are left out; they may carry secrets.
    """
    return f"[req={get_request_id(request) or '-'} {request.method} {request.url.path}]"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Assign ``request.state.request_id`` and echo it in the response header."""

    async def dispatch(self, request: Request, call_next):
        request_id = validate_request_id(request.headers.get(REQUEST_ID_HEADER)) or generate_request_id()
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
