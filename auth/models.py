# auth/models.py
"""
Principal and browser session records.

Both map 1:1 onto rows of the ``users`` and ``sessions`` tables; timestamps
are stored as ISO-8601 text.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Optional

SESSION_TTL_DAYS = 7

USER_COLUMNS = ("id", "username", "email", "password_hash", "created_at", "updated_at")
SESSION_COLUMNS = ("id", "user_id", "created_at", "expires_at", "ip_address", "user_agent")


def normalize_email(email: Optional[str]) -> str:
    """Lower-case and strip an e-mail address. None becomes empty."""
    return (email or "").lower().strip()


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


@dataclass
class User:
    """
    The authenticated principal.

    ``email`` may be empty; when set it is the key used to find the
    matching Stripe customer.
    """
    id: str
    username: str
    password_hash: str
    email: str = ""
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def new(cls, username: str, password_hash: str, email: str = "") -> User:
        created = datetime.utcnow()
        return cls(
            id=str(uuid.uuid4()),
            username=username.strip(),
            password_hash=password_hash,
            email=normalize_email(email),
            created_at=created,
            updated_at=created,
        )

    @classmethod
    def from_row(cls, row) -> User:
        return cls(
            id=row["id"],
            username=row["username"],
            password_hash=row["password_hash"],
            email=row["email"] or "",
            created_at=_parse_timestamp(row["created_at"]),
            updated_at=_parse_timestamp(row["updated_at"]),
        )

    def as_row(self) -> tuple:
        """Values in USER_COLUMNS order."""
        return (
            self.id,
            self.username,
            self.email,
            self.password_hash,
            self.created_at.isoformat(),
            self.updated_at.isoformat(),
        )

    @property
    def has_email(self) -> bool:
        return bool(self.email)

    def to_dict(self) -> dict:
        """Public view of the account; the password hash never leaves."""
        data = asdict(self)
        del data["password_hash"]
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


@dataclass
class Session:
    """A browser login; ``id`` is the cookie value."""
    id: str
    user_id: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    expires_at: datetime = field(
        default_factory=lambda: datetime.utcnow() + timedelta(days=SESSION_TTL_DAYS)
    )
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def new(
        cls,
        user_id: str,
        duration_days: int = SESSION_TTL_DAYS,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Session:
        created = datetime.utcnow()
        return cls(
            id=str(uuid.uuid4()),
            user_id=user_id,
            created_at=created,
            expires_at=created + timedelta(days=duration_days),
            ip_address=ip_address,
            user_agent=user_agent,
        )

    @classmethod
    def from_row(cls, row) -> Session:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            created_at=_parse_timestamp(row["created_at"]),
            expires_at=_parse_timestamp(row["expires_at"]),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
        )

    def as_row(self) -> tuple:
        """Values in SESSION_COLUMNS order."""
        return (
            self.id,
            self.user_id,
            self.created_at.isoformat(),
            self.expires_at.isoformat(),
            self.ip_address,
            self.user_agent,
        )

    @property
    def is_valid(self) -> bool:
        return datetime.utcnow() < self.expires_at
