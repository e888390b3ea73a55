# auth/service.py
"""
Account and session storage for the request principal.

Accounts are created out of band (an admin shell or a seed script); the web
surface only logs in and out. All functions open their own short transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from auth.models import SESSION_COLUMNS, SESSION_TTL_DAYS, USER_COLUMNS, Session, User, normalize_email
from auth.password import hash_password, is_password_strong, verify_password
from persistence.db import get_db, init_db

_logger = logging.getLogger(__name__)

_INSERT_USER = (
    f"INSERT INTO users ({', '.join(USER_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in USER_COLUMNS)})"
)
_INSERT_SESSION = (
    f"INSERT INTO sessions ({', '.join(SESSION_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in SESSION_COLUMNS)})"
)


class AuthError(Exception):
    """Base authentication error."""
    pass


class UserExistsError(AuthError):
    """Username already taken."""
    pass


class WeakPasswordError(AuthError):
    """Password rejected by is_password_strong."""
    pass


class InvalidCredentialsError(AuthError):
    """Unknown username or wrong password."""
    pass


# =============================================================================
# Users
# =============================================================================


def create_user(username: str, password: str, email: str = "") -> User:
    """
    Register an account.

    Raises:
        AuthError: If the username is blank
        WeakPasswordError: If the password is too weak
        UserExistsError: If the username is taken
    """
    init_db()

    username = username.strip()
    if not username:
        raise AuthError("Username cannot be empty")

    strong, reason = is_password_strong(password)
    if not strong:
        raise WeakPasswordError(reason)

    if get_user_by_username(username) is not None:
        raise UserExistsError(f"User {username} already exists")

    user = User.new(username=username, password_hash=hash_password(password), email=email)
    with get_db() as conn:
        conn.execute(_INSERT_USER, user.as_row())

    _logger.info(f"Created user {username} (email set: {user.has_email})")
    return user


def _fetch_user(column: str, value: str) -> Optional[User]:
    init_db()
    with get_db() as conn:
        row = conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
    return User.from_row(row) if row else None


def get_user_by_username(username: str) -> Optional[User]:
    return _fetch_user("username", username.strip())


def get_user_by_id(user_id: str) -> Optional[User]:
    return _fetch_user("id", user_id)


def update_user_email(user_id: str, email: str) -> bool:
    """Set (or clear, with "") the e-mail used for Stripe lookups. False if no such user."""
    init_db()
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE users SET email = ?, updated_at = ? WHERE id = ?",
            (normalize_email(email), datetime.utcnow().isoformat(), user_id),
        )
    return cursor.rowcount > 0


def authenticate_user(username: str, password: str) -> User:
    """
    Check a username/password pair.

    Unknown users and wrong passwords raise the same error so the login form
    can't be used to probe for usernames.

    Raises:
        InvalidCredentialsError: On any mismatch
    """
    user = get_user_by_username(username)

    if user is None or not verify_password(password, user.password_hash):
        _logger.warning(f"Failed login for {username!r}")
        raise InvalidCredentialsError("Invalid username or password")

    _logger.info(f"User {username} logged in")
    return user


# =============================================================================
# Sessions
# =============================================================================


def create_session(
    user_id: str,
    duration_days: int = SESSION_TTL_DAYS,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Session:
    init_db()

    session = Session.new(user_id, duration_days=duration_days, ip_address=ip_address, user_agent=user_agent)
    with get_db() as conn:
        conn.execute(_INSERT_SESSION, session.as_row())

    _logger.debug(f"Opened session for user {user_id}, expires {session.expires_at.isoformat()}")
    return session


def get_session(session_id: str) -> Optional[Session]:
    """Live session by ID. An expired one is deleted and reported as missing."""
    init_db()
    with get_db() as conn:
        row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()

    if row is None:
        return None

    session = Session.from_row(row)
    if session.is_valid:
        return session

    invalidate_session(session_id)
    return None


def invalidate_session(session_id: str) -> bool:
    """Delete a session. False if it did not exist."""
    init_db()
    with get_db() as conn:
        cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
    return cursor.rowcount > 0


def get_current_user(session_id: Optional[str]) -> Optional[User]:
    """Resolve a session cookie value to its user; anonymous requests give None."""
    if not session_id:
        return None

    session = get_session(session_id)
    return get_user_by_id(session.user_id) if session else None


def cleanup_expired_sessions() -> int:
    """Purge expired sessions, returning how many were removed."""
    init_db()
    with get_db() as conn:
        removed = conn.execute(
            "DELETE FROM sessions WHERE expires_at < ?",
            (datetime.utcnow().isoformat(),),
        ).rowcount

    if removed:
        _logger.info(f"Purged {removed} expired sessions")
    return removed
