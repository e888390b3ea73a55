# auth/password.py
"""
Password hashing using bcrypt.
"""

from __future__ import annotations

import bcrypt
import logging

_logger = logging.getLogger(__name__)

BCRYPT_ROUNDS = 12

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password
        rounds: Work factor

    Returns:
        Bcrypt hash string (includes salt)
    """
    if not password:
        raise ValueError("Password cannot be empty")

    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)

    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    Returns:
        True if password matches, False otherwise (including malformed hashes)
    """
    if not password or not password_hash:
        return False

    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError as e:
        _logger.warning(f"Password verification error: {e}")
        return False


def is_password_strong(password: str) -> tuple[bool, str]:
    """
    Check if a password meets minimum strength requirements.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not password:
        return False, "Password cannot be empty"

    if len(password) < MIN_PASSWORD_LENGTH:
        return False, f"Password must be at least {MIN_PASSWORD_LENGTH} characters"

    if not any(c.isalpha() for c in password):
        return False, "Password must contain at least one letter"

    if not any(c.isdigit() for c in password):
        return False, "Password must contain at least one digit"

    return True, ""
