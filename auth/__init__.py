# auth/__init__.py
"""
Local accounts and cookie sessions.

The logged-in User is the principal the subscription routes bill; its
e-mail is what links it to a Stripe customer.
"""

from auth.models import Session, User
from auth.service import (
    AuthError,
    InvalidCredentialsError,
    authenticate_user,
    create_session,
    create_user,
    get_current_user,
    invalidate_session,
    update_user_email,
)

__all__ = [
    "User",
    "Session",
    "AuthError",
    "InvalidCredentialsError",
    "create_user",
    "update_user_email",
    "authenticate_user",
    "create_session",
    "invalidate_session",
    "get_current_user",
]
