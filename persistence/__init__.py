"""
Persistence layer.

Provides SQLite-backed storage for local user accounts and sessions.
"""

from persistence.db import get_db, init_db, close_db, reset_db

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "reset_db",
]
