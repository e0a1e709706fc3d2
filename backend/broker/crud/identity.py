"""
CRUD operations for FederatedIdentity model.
"""

import secrets

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from broker.core.clock import utcnow
from broker.models import FederatedIdentity, UpstreamProfile


def _new_subject() -> str:
    return f"usr_{secrets.token_hex(16)}"


def get_identity(
    *,
    session: Session,
    provider: str,
    provider_user_id: str,
) -> FederatedIdentity | None:
    """
    Get the identity for an upstream account.

    Args:
        session: Database session
        provider: Upstream provider name
        provider_user_id: Account id at the provider

    Returns:
        FederatedIdentity if found, None otherwise
    """
    statement = select(FederatedIdentity).where(
        FederatedIdentity.provider == provider,
        FederatedIdentity.provider_user_id == provider_user_id,
    )
    return session.exec(statement).first()


def get_or_create_identity(*, session: Session, profile: UpstreamProfile) -> FederatedIdentity:
    """
    Map an upstream profile to a stable internal subject.

    The first login for (provider, provider user id) mints a new subject;
    later logins reuse it and refresh the stored profile fields.

    Args:
        session: Database session
        profile: Profile fetched from the provider

    Returns:
        The FederatedIdentity for this account
    """
    identity = get_identity(
        session=session,
        provider=profile.provider,
        provider_user_id=profile.id,
    )

    if identity is None:
        identity = FederatedIdentity(
            subject=_new_subject(),
            provider=profile.provider,
            provider_user_id=profile.id,
        )

    identity.email = profile.email
    identity.name = profile.name
    identity.picture = profile.picture
    identity.last_login = utcnow()
    session.add(identity)

    try:
        session.commit()
    except IntegrityError:
        # Concurrent first login for the same account - use the winner's row
        session.rollback()
        identity = get_identity(
            session=session,
            provider=profile.provider,
            provider_user_id=profile.id,
        )
        if identity is None:
            raise

    session.refresh(identity)
    return identity
