# auth/middleware.py
"""
FastAPI authentication dependencies.

Provides:
- Session cookie handling
- Principal lookup for route handlers
- Redirecting guard for browser-facing routes
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, Response, status

from auth.models import User
from auth.service import get_current_user

SESSION_COOKIE_NAME = "gateway_session"
SESSION_COOKIE_MAX_AGE = 7 * 24 * 60 * 60  # 7 days in seconds


def get_session_id(request: Request) -> Optional[str]:
    """Extract session ID from request cookies."""
    return request.cookies.get(SESSION_COOKIE_NAME)


def set_session_cookie(response: Response, session_id: str, secure: bool = False) -> None:
    """Set the HTTP-only session cookie on a response."""
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_id,
        max_age=SESSION_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_session_cookie(response: Response) -> None:
    """Clear session cookie from response."""
    response.delete_cookie(
        key=SESSION_COOKIE_NAME,
        httponly=True,
        samesite="lax",
    )


async def get_optional_user(request: Request) -> Optional[User]:
    """
    FastAPI dependency: Get current user if logged in.

    Returns None for anonymous users (no error).
    """
    return get_current_user(get_session_id(request))


class RedirectIfUnauthenticated:
    """
    FastAPI dependency that resolves the principal or redirects the browser.

    Usage:
        authenticate = RedirectIfUnauthenticated("/?error=unauthorized")

        @router.post("/private")
        async def private(user: User = Depends(authenticate)):
            ...
    """

    def __init__(self, redirect_target: str):
        self.redirect_target = redirect_target

    async def __call__(self, user: Optional[User] = Depends(get_optional_user)) -> User:
        if not user:
            raise HTTPException(
                status_code=status.HTTP_302_FOUND,
                headers={"Location": self.redirect_target},
            )
        return user
