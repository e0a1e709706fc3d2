"""
StoreEntry model backing the ephemeral state store.

A single table shared by every replica holds all short-lived records
(authorization states, authorization codes, sessions, refresh tokens and
the access-token revocation list). Each row carries its own expiry so a
reader can treat an expired row as absent before it is purged.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from broker.core.clock import as_utc, utcnow


class StoreEntry(SQLModel, table=True):
    """
    One key/value pair with a time-to-live.

    Attributes:
        key: Namespaced key, e.g. "state:<token>" or "code:<sha256>"
        value: JSON document owned by the caller
        expires_at: Instant after which the entry is treated as absent
        created_at: When the entry was written
    """

    __tablename__ = "store_entries"

    key: str = Field(primary_key=True, max_length=255)
    value: dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    expires_at: datetime = Field(sa_type=DateTime(timezone=True), index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )

    def is_expired(self, now: datetime | None = None) -> bool:
        """
        Check if this entry has expired.

        Args:
            now: Reference time (defaults to the current UTC time)
        """
        now = now or utcnow()
        return as_utc(now) >= as_utc(self.expires_at)
