"""
Request and response schemas for the OAuth endpoints.
"""

from datetime import datetime

from sqlmodel import SQLModel

from broker.models.records import UpstreamProfile


class TokenResponse(SQLModel):
    """Successful /oauth/token response (RFC 6749 section 5.1)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    scope: str


class IntrospectionResponse(SQLModel):
    """RFC 7662 introspection response. Only `active` is set when inactive."""

    active: bool
    scope: str | None = None
    sub: str | None = None
    exp: int | None = None
    iat: int | None = None
    client_id: str | None = None
    token_type: str | None = None


class AuthorizationServerMetadata(SQLModel):
    """RFC 8414 discovery document."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    introspection_endpoint: str
    revocation_endpoint: str
    response_types_supported: list[str]
    grant_types_supported: list[str]
    code_challenge_methods_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    scopes_supported: list[str] | None = None


class SessionInfo(SQLModel):
    """Session lookup response for first-party clients."""

    active: bool = True
    subject: str
    provider: str
    scope: str
    expires_at: datetime
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    profile: UpstreamProfile


class ProviderStatus(SQLModel):
    name: str
    configured: bool
    login_url: str


class ProvidersResponse(SQLModel):
    """Response for the supported providers list."""

    providers: list[ProviderStatus]
