"""
Session login/logout endpoints.

Browser-facing: both answer with redirects and manage the session cookie.
"""
from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, Request, status
from fastapi.responses import RedirectResponse

from app.config import AppConfig
from auth.middleware import clear_session_cookie, get_session_id, set_session_cookie
from auth.service import InvalidCredentialsError, authenticate_user, create_session, invalidate_session


def build_auth_router(config: AppConfig) -> APIRouter:
    """Create the login/logout router under the configured base path."""
    router = APIRouter(prefix=config.base_path, tags=["auth"])

    @router.post("/login")
    async def login(
        request: Request,
        username: str = Form(...),
        password: str = Form(...),
    ):
        try:
            user = authenticate_user(username, password)
        except InvalidCredentialsError:
            return RedirectResponse(
                f"{config.base_path}/?" + urlencode({"error": "invalid credentials"}),
                status_code=status.HTTP_302_FOUND,
            )

        client_host: Optional[str] = request.client.host if request.client else None
        session = create_session(
            user.id,
            ip_address=client_host,
            user_agent=request.headers.get("user-agent"),
        )

        response = RedirectResponse(f"{config.base_path}/settings", status_code=status.HTTP_302_FOUND)
        set_session_cookie(response, session.id, secure=config.is_production())
        return response

    @router.post("/logout")
    async def logout(request: Request):
        session_id = get_session_id(request)
        if session_id:
            invalidate_session(session_id)

        response = RedirectResponse(f"{config.base_path}/", status_code=status.HTTP_302_FOUND)
        clear_session_cookie(response)
        return response

    return router
