"""
FederatedIdentity model mapping upstream accounts to internal subjects.

The internal subject is minted once per (provider, provider_user_id) and
stays stable across logins, so tokens never expose provider account ids.
"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel, UniqueConstraint

from broker.core.clock import utcnow


class FederatedIdentity(SQLModel, table=True):
    """
    A user account at an upstream identity provider.

    Attributes:
        subject: Internal subject identifier used as the `sub` claim
        provider: Upstream provider name (github, google)
        provider_user_id: Account id at the provider
        email, name, picture: Last known profile data
        last_login: Last completed federation login
    """

    __tablename__ = "federated_identities"
    __table_args__ = (
        UniqueConstraint("provider", "provider_user_id", name="uq_identity_provider_user"),
    )

    id: int | None = Field(default=None, primary_key=True)
    subject: str = Field(max_length=64, unique=True, index=True)
    provider: str = Field(max_length=50)
    provider_user_id: str = Field(max_length=255)
    email: str | None = Field(default=None, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    picture: str | None = Field(default=None, max_length=1000)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )
    last_login: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
