"""
Records kept in the ephemeral state store.

These are plain SQLModel schemas (no table); they are serialized to JSON
with `model_dump(mode="json")` before being written to a StoreEntry and
validated back on read. Opaque secrets (codes, refresh tokens, session
identifiers) are not part of the records: they are the store keys.
"""

from datetime import datetime

from sqlmodel import Field, SQLModel


class UpstreamProfile(SQLModel):
    """Profile fetched from an upstream identity provider."""

    provider: str
    id: str
    email: str | None = None
    name: str | None = None
    picture: str | None = None


class AuthorizationState(SQLModel):
    """
    A federation login in flight, keyed by its state token.

    When the login was started by a client's /oauth/authorize request, the
    client_* fields carry that request so the callback can issue the
    authorization code and send the browser back to the client.
    """

    state_token: str
    provider: str
    created_at: datetime
    redirect_uri: str
    pkce_challenge: str | None = None
    pkce_method: str | None = None
    client_id: str | None = None
    client_redirect_uri: str | None = None
    client_state: str | None = None
    scope: str | None = None

    @property
    def has_client_request(self) -> bool:
        return self.client_id is not None and self.client_redirect_uri is not None


class AuthorizationCode(SQLModel):
    """Single-use authorization code, keyed by the digest of the code."""

    client_id: str
    user_id: str
    scope: str
    redirect_uri: str
    pkce_challenge: str | None = None
    pkce_method: str | None = None
    provider: str | None = None
    expires_at: datetime


class RefreshTokenRecord(SQLModel):
    """Server-side record of an opaque refresh token."""

    client_id: str
    subject: str
    scope: str
    provider: str | None = None
    session_key: str | None = None
    issued_at: datetime
    expires_at: datetime


class SessionRecord(SQLModel):
    """
    First-party session created by a completed federation login.

    token_id is the `jti` of the current session access token.
    issued_token_ids maps the `jti` of every access token minted with the
    session refresh token to its expiry, so logout can revoke them.
    """

    token_id: str
    subject: str
    scope: str
    provider: str
    issued_at: datetime
    expires_at: datetime
    access_token: str
    access_token_expires_at: datetime
    refresh_token_key: str | None = None
    refresh_token_encrypted: str | None = None
    upstream_token_encrypted: str | None = None
    profile: UpstreamProfile
    issued_token_ids: dict[str, datetime] = Field(default_factory=dict)


class RevokedToken(SQLModel):
    """Revocation list entry for a signed access token."""

    jti: str
    revoked_at: datetime
