"""
Error taxonomy for the authorization server.

Every failure that reaches a client is an OAuthError carrying the
RFC 6749 error code, an optional human readable description and the
HTTP status it maps to. Anything that cannot be verified is rejected
with one of these; nothing falls back to a degraded session.
"""

from fastapi import status


class OAuthError(Exception):
    """Base class for errors rendered as an OAuth error response."""

    error: str = "server_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        description: str | None = None,
        *,
        error: str | None = None,
        status_code: int | None = None,
    ):
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.description = description
        super().__init__(f"{self.error}: {description}" if description else self.error)

    def to_dict(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class ClientError(OAuthError):
    """Bad or missing client_id, redirect_uri mismatch, malformed request."""

    error = "invalid_request"


class InvalidClientError(ClientError):
    """Client authentication failed."""

    error = "invalid_client"
    status_code = status.HTTP_401_UNAUTHORIZED


class GrantError(OAuthError):
    """Expired, consumed or unknown authorization code or refresh token."""

    error = "invalid_grant"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"


class ProviderError(OAuthError):
    """
    The upstream identity provider rejected the exchange, could not be
    reached, or answered with something unusable.
    """

    error = "provider_auth_failed"
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        provider: str,
        description: str | None = None,
        *,
        upstream_error: str | None = None,
    ):
        self.provider = provider
        self.upstream_error = upstream_error
        super().__init__(description)


class ConfigurationError(OAuthError):
    """Server-side configuration is missing (e.g. provider secret)."""

    error = "server_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
