"""
CRUD operations for the ephemeral state store.

Every replica reads and writes the same store_entries table, so this is the
single source of truth for authorization states, codes, sessions, refresh
tokens and revoked access tokens.

Guarantees:
- Lazy expiry: an entry past its expires_at is reported absent by every
  read, whether or not it has been purged yet.
- consume_entry is an atomic read-and-delete. When two requests race for
  the same key, only the one whose DELETE removed the row gets the value.
- put_entry is last-writer-wins. A deleted key only comes back if somebody
  creates it again with put_entry.
- update_entry never inserts: rewriting a key that was consumed or expired
  in the meantime reports failure instead of bringing the key back.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import Session

from broker.core.clock import as_utc, utcnow
from broker.core.security import digest
from broker.models import StoreEntry

logger = logging.getLogger(__name__)


def put_entry(
    *,
    session: Session,
    key: str,
    value: dict[str, Any],
    ttl_seconds: int,
    now: datetime | None = None,
) -> StoreEntry:
    """
    Write a value under a key with a time-to-live.

    Args:
        session: Database session
        key: Namespaced key
        value: JSON-serializable document
        ttl_seconds: Lifetime of the entry
        now: Reference time (defaults to the current UTC time)

    Returns:
        The stored StoreEntry
    """
    if ttl_seconds <= 0:
        raise ValueError("ttl_seconds must be positive")

    now = as_utc(now or utcnow())
    expires_at = now + timedelta(seconds=ttl_seconds)

    entry = session.get(StoreEntry, key)
    if entry is None:
        entry = StoreEntry(key=key, value=value, expires_at=expires_at, created_at=now)
        session.add(entry)
    else:
        entry.value = value
        entry.expires_at = expires_at
        entry.created_at = now
        session.add(entry)

    try:
        session.commit()
    except IntegrityError:
        # Another request inserted the same key between our read and write
        session.rollback()
        entry = session.merge(
            StoreEntry(key=key, value=value, expires_at=expires_at, created_at=now)
        )
        session.commit()

    session.refresh(entry)
    return entry


def get_entry(
    *,
    session: Session,
    key: str,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """
    Read a value without removing it.

    Returns:
        The stored document, or None if absent or expired
    """
    entry = session.get(StoreEntry, key)
    if entry is None or entry.is_expired(now):
        return None
    return dict(entry.value)


def update_entry(
    *,
    session: Session,
    key: str,
    value: dict[str, Any],
    now: datetime | None = None,
) -> bool:
    """
    Replace the value of a live entry, keeping its expiry.

    Unlike put_entry this never inserts, so a key deleted by a concurrent
    request stays deleted.

    Returns:
        True if a live entry was rewritten
    """
    now = as_utc(now or utcnow())

    statement = (
        update(StoreEntry)
        .where(StoreEntry.key == key)
        .where(StoreEntry.expires_at > now)
        .values(value=value)
    )
    result = session.exec(statement.execution_options(synchronize_session=False))
    session.commit()

    if result.rowcount != 1:
        logger.info("Store entry gone before update: %s", key.split(":", 1)[0])
        return False
    return True


def delete_entry(*, session: Session, key: str) -> bool:
    """
    Remove a key. Deleting a missing key is not an error.

    Returns:
        True if a row was removed by this call
    """
    entry = session.get(StoreEntry, key)
    if entry is None:
        return False

    session.delete(entry)
    try:
        session.commit()
    except StaleDataError:
        # Deleted concurrently by another request
        session.rollback()
        return False
    return True


def consume_entry(
    *,
    session: Session,
    key: str,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    """
    Atomically read and remove an unexpired entry.

    This is the single-use primitive: of several concurrent callers, at most
    one receives the value. Expired entries are removed and reported absent.

    Returns:
        The stored document, or None if absent, expired or consumed concurrently
    """
    now = as_utc(now or utcnow())

    entry = session.get(StoreEntry, key)
    if entry is None:
        return None

    value = dict(entry.value)
    expired = entry.is_expired(now)
    session.expunge(entry)

    statement = delete(StoreEntry).where(StoreEntry.key == key)
    if not expired:
        statement = statement.where(StoreEntry.expires_at > now)
    result = session.exec(statement.execution_options(synchronize_session=False))
    session.commit()

    if expired:
        return None

    if result.rowcount != 1:
        logger.info("Store entry consumed concurrently: %s", key.split(":", 1)[0])
        return None

    return value


def purge_expired_entries(*, session: Session, now: datetime | None = None) -> int:
    """
    Physically remove all expired entries.

    Readers never depend on this; it only keeps the table small.

    Returns:
        Number of entries removed
    """
    now = as_utc(now or utcnow())

    statement = delete(StoreEntry).where(StoreEntry.expires_at <= now)
    result = session.exec(statement.execution_options(synchronize_session=False))
    session.commit()

    return result.rowcount


def secret_key(namespace: str, secret: str) -> str:
    """
    Store key for an opaque secret.

    Codes, refresh tokens, session identifiers and state tokens are stored
    under their SHA-256 digest so a leaked table does not leak credentials.
    """
    return f"{namespace}:{digest(secret)}"
