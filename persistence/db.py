# persistence/db.py
"""
SQLite storage for local accounts and browser sessions.

Billing data is never persisted here; Stripe owns customers and
subscriptions. Set GATEWAY_DB_PATH to ":memory:" for throwaway databases.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path

_logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "gateway.db"
DB_PATH = Path(os.environ.get("GATEWAY_DB_PATH", str(DEFAULT_DB_PATH)))

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL DEFAULT '',
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        ip_address TEXT,
        user_agent TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_sessions_expiry ON sessions(expires_at)",
)

# Children first so foreign keys never block a drop
TABLES = ("sessions", "users")

_local = threading.local()
_init_lock = threading.Lock()
_initialized = False


def _connect() -> sqlite3.Connection:
    if str(DB_PATH) != ":memory:":
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(DB_PATH), timeout=30.0, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _get_connection() -> sqlite3.Connection:
    """This thread's connection, opened on first use."""
    conn = getattr(_local, "connection", None)
    if conn is None:
        conn = _local.connection = _connect()
    return conn


@contextmanager
def get_db():
    """
    Transaction scope: commits on exit, rolls back and re-raises on error.

    Usage:
        with get_db() as conn:
            conn.execute("SELECT ...")
    """
    conn = _get_connection()
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    else:
        conn.commit()


def init_db() -> None:
    """Create missing tables and indexes. Runs once per process."""
    global _initialized

    with _init_lock:
        if _initialized:
            return

        with get_db() as conn:
            for statement in SCHEMA:
                conn.execute(statement)

        _initialized = True
        _logger.info(f"Database ready at {DB_PATH}")


def close_db() -> None:
    """Close this thread's connection, if any."""
    conn = getattr(_local, "connection", None)
    if conn is not None:
        conn.close()
        _local.connection = None


def reset_db() -> None:
    """Drop every table; the next init_db() recreates them."""
    global _initialized

    with _init_lock:
        with get_db() as conn:
            for table in TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        _initialized = False


def get_db_path() -> Path:
    return DB_PATH
