"""
OAuthClient model for pre-provisioned relying parties.

Clients are created by the provisioning script (or seeded at startup) and
never modified by request handlers. Every token-issuing request looks the
client up by id and checks the redirect URI and scopes against it.
"""

from datetime import datetime

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from broker.core.clock import utcnow


class OAuthClient(SQLModel, table=True):
    """
    A registered OAuth client.

    Attributes:
        id: Public client identifier
        name: Display name
        secret_hash: bcrypt hash of the client secret; None for public clients
        redirect_uris: Exact redirect URIs the client may use
        allowed_scopes: Scopes the client may request
    """

    __tablename__ = "oauth_clients"

    id: str = Field(primary_key=True, max_length=100)
    name: str = Field(max_length=255)
    secret_hash: str | None = Field(default=None, max_length=255)
    redirect_uris: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    allowed_scopes: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
    )

    @property
    def is_public(self) -> bool:
        """Public clients have no secret and must use PKCE."""
        return self.secret_hash is None

    def allows_redirect_uri(self, redirect_uri: str) -> bool:
        """Exact-match comparison against the registered redirect URIs."""
        return redirect_uri in self.redirect_uris

    def allows_scopes(self, scopes: list[str]) -> bool:
        return set(scopes) <= set(self.allowed_scopes)
