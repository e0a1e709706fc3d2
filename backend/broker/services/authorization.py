"""
Authorization endpoint logic: /authorize validation, /token grants and
discovery metadata.

Route handlers parse requests and shape responses; every protocol decision
(client lookup, redirect URI ownership, scope and PKCE checks, single-use
code redemption, refresh token rotation) is made here.
"""

import base64
import binascii
import logging
from urllib.parse import unquote

from sqlmodel import Session

from broker.core.config import Settings, settings as default_settings
from broker.core.errors import (
    ClientError,
    GrantError,
    InvalidClientError,
    UnsupportedGrantTypeError,
)
from broker.core.security import PKCE_METHODS, verify_client_secret, verify_pkce
from broker.crud.client import get_client
from broker.models import AuthorizationServerMetadata, OAuthClient, TokenResponse
from broker.services.session_broker import rebind_session_refresh_token
from broker.services.token_issuer import (
    REFRESH_TOKEN_TYPE_HINT,
    IssuedAccessToken,
    TokenIssuer,
)

logger = logging.getLogger(__name__)

AUTHORIZATION_CODE_GRANT = "authorization_code"
REFRESH_TOKEN_GRANT = "refresh_token"
SUPPORTED_GRANT_TYPES = [AUTHORIZATION_CODE_GRANT, REFRESH_TOKEN_GRANT]
SUPPORTED_RESPONSE_TYPES = ["code"]
TOKEN_ENDPOINT_AUTH_METHODS = ["client_secret_basic", "client_secret_post", "none"]


def split_scope(scope: str | None) -> list[str]:
    """Split a space-delimited scope string, dropping duplicates but keeping order."""
    if not scope:
        return []
    return list(dict.fromkeys(scope.split()))


# ----------------------------------------------------------------------
# /authorize
# ----------------------------------------------------------------------


def validate_client_redirect(
    *,
    session: Session,
    client_id: str | None,
    redirect_uri: str | None,
) -> OAuthClient:
    """
    Look up the client and check that it owns the redirect URI.

    Failures here must never redirect: the redirect URI is not trusted yet.

    Raises:
        ClientError: Missing parameters, unknown client or unregistered redirect URI
    """
    if not client_id:
        raise ClientError("Missing client_id")
    if not redirect_uri:
        raise ClientError("Missing redirect_uri")

    client = get_client(session=session, client_id=client_id)
    if client is None:
        logger.warning("Authorization request for unknown client %s", client_id)
        raise ClientError(f"Unknown client: {client_id}", error="invalid_client")

    if not client.allows_redirect_uri(redirect_uri):
        logger.warning("Rejected unregistered redirect_uri for client %s", client_id)
        raise ClientError("redirect_uri is not registered for this client")

    return client


def resolve_scope(client: OAuthClient, requested: str | None) -> str:
    """
    Requested scopes must be a subset of the client's allowed scopes.
    An empty request grants everything the client is allowed.

    Raises:
        ClientError: invalid_scope
    """
    scopes = split_scope(requested)
    if not scopes:
        return " ".join(client.allowed_scopes)
    if not client.allows_scopes(scopes):
        raise ClientError("Requested scope exceeds what the client may request", error="invalid_scope")
    return " ".join(scopes)


def validate_authorization_request(
    *,
    client: OAuthClient,
    response_type: str | None,
    scope: str | None,
    code_challenge: str | None,
    code_challenge_method: str | None,
) -> tuple[str, str | None]:
    """
    Validate the rest of an authorization request once the client and its
    redirect URI are trusted. Errors from here are reported to the client
    by redirect.

    Returns:
        (granted scope, PKCE method or None)

    Raises:
        ClientError: unsupported_response_type, invalid_scope or invalid_request
    """
    if response_type not in SUPPORTED_RESPONSE_TYPES:
        raise ClientError("Only response_type=code is supported", error="unsupported_response_type")

    granted_scope = resolve_scope(client, scope)

    method = None
    if code_challenge:
        method = code_challenge_method or "plain"
        if method not in PKCE_METHODS:
            raise ClientError(f"Unsupported code_challenge_method: {method}")
    elif code_challenge_method:
        raise ClientError("code_challenge_method without code_challenge")
    elif client.is_public:
        raise ClientError("Public clients must use PKCE (code_challenge)")

    return granted_scope, method


# ----------------------------------------------------------------------
# /token
# ----------------------------------------------------------------------


def _parse_basic_auth(authorization: str | None) -> tuple[str, str] | None:
    if not authorization or not authorization.lower().startswith("basic "):
        return None
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        raise InvalidClientError("Malformed Basic authorization header")
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        raise InvalidClientError("Malformed Basic authorization header")
    # RFC 6749 section 2.3.1: credentials are form-urlencoded before encoding
    return unquote(client_id), unquote(client_secret)


def authenticate_client(
    *,
    session: Session,
    client_id: str | None,
    client_secret: str | None,
    authorization: str | None = None,
) -> OAuthClient:
    """
    Authenticate the client at the token endpoint.

    Confidential clients use HTTP Basic or client_secret in the form body;
    public clients send client_id only.

    Raises:
        ClientError: Conflicting or missing client_id
        InvalidClientError: Unknown client or bad secret
    """
    basic = _parse_basic_auth(authorization)
    if basic is not None:
        basic_id, basic_secret = basic
        if client_id and client_id != basic_id:
            raise ClientError("client_id does not match the authorization header")
        if client_secret:
            raise ClientError("Use only one client authentication method")
        client_id, client_secret = basic_id, basic_secret

    if not client_id:
        raise ClientError("Missing client_id")

    client = get_client(session=session, client_id=client_id)
    if client is None:
        raise InvalidClientError("Unknown client")

    if client.is_public:
        if client_secret:
            raise InvalidClientError("Public clients do not authenticate with a secret")
        return client

    if not client_secret or not verify_client_secret(client_secret, client.secret_hash):
        logger.warning("Client authentication failed for %s", client_id)
        raise InvalidClientError("Client authentication failed")

    return client


def _token_response(
    *,
    issuer: TokenIssuer,
    client_id: str,
    subject: str,
    scope: str,
    provider: str | None,
    session_key: str | None = None,
) -> tuple[TokenResponse, IssuedAccessToken, str]:
    access = issuer.issue_access_token(
        subject,
        scope,
        client_id=client_id,
        provider=provider,
    )
    refresh_token = issuer.issue_refresh_token(
        client_id,
        subject,
        scope,
        provider=provider,
        session_key=session_key,
    )
    response = TokenResponse(
        access_token=access.token,
        token_type="Bearer",
        expires_in=access.expires_in,
        refresh_token=refresh_token,
        scope=scope,
    )
    return response, access, refresh_token


def exchange_authorization_code(
    *,
    issuer: TokenIssuer,
    client: OAuthClient,
    code: str | None,
    redirect_uri: str | None,
    code_verifier: str | None,
) -> TokenResponse:
    """
    grant_type=authorization_code.

    The code is consumed before any other check, so a code presented with
    the wrong client, redirect URI or verifier is burned as well.

    Raises:
        ClientError: Missing code
        GrantError: Unknown, expired or redeemed code, or any mismatch
    """
    if not code:
        raise ClientError("Missing code")

    record = issuer.redeem_authorization_code(code)
    if record is None:
        logger.info("Rejected unknown, expired or reused authorization code (client %s)", client.id)
        raise GrantError("Authorization code is invalid, expired or already used")

    if record.client_id != client.id:
        logger.warning("Client %s presented a code issued to %s", client.id, record.client_id)
        raise GrantError("Authorization code was issued to another client")

    if record.redirect_uri != redirect_uri:
        raise GrantError("redirect_uri does not match the authorization request")

    if record.pkce_challenge:
        if not verify_pkce(code_verifier, record.pkce_challenge, record.pkce_method or "plain"):
            raise GrantError("PKCE verification failed")
    elif code_verifier:
        raise GrantError("code_verifier sent for a code issued without PKCE")

    response, _, _ = _token_response(
        issuer=issuer,
        client_id=client.id,
        subject=record.user_id,
        scope=record.scope,
        provider=record.provider,
    )
    logger.info("Issued tokens to client %s for %s", client.id, record.user_id)
    return response


def exchange_refresh_token(
    *,
    issuer: TokenIssuer,
    client: OAuthClient,
    refresh_token: str | None,
    scope: str | None = None,
) -> TokenResponse:
    """
    grant_type=refresh_token with rotation.

    The presented refresh token is consumed and replaced; presenting it
    again fails. An optional scope may narrow, never widen, the grant.

    Raises:
        ClientError: Missing refresh_token or scope widening
        GrantError: Unknown, expired, revoked or replayed refresh token
    """
    if not refresh_token:
        raise ClientError("Missing refresh_token")

    record = issuer.get_refresh_token(refresh_token)
    if record is None:
        raise GrantError("Refresh token is invalid or expired")
    if record.client_id != client.id:
        logger.warning("Client %s presented a refresh token issued to %s", client.id, record.client_id)
        raise GrantError("Refresh token was issued to another client")

    granted = split_scope(record.scope)
    requested = split_scope(scope)
    if requested and not set(requested) <= set(granted):
        raise ClientError("Requested scope exceeds the original grant", error="invalid_scope")
    new_scope = " ".join(requested) if requested else record.scope

    if record.session_key and issuer.get_session_record_by_key(record.session_key) is None:
        # Session ended (logout or expiry); its refresh tokens die with it
        issuer.consume_refresh_token(refresh_token)
        raise GrantError("Session has ended")

    if issuer.consume_refresh_token(refresh_token) is None:
        logger.warning("Refresh token replayed or rotated concurrently (client %s)", client.id)
        raise GrantError("Refresh token is invalid or expired")

    response, access, new_refresh_token = _token_response(
        issuer=issuer,
        client_id=client.id,
        subject=record.subject,
        scope=new_scope,
        provider=record.provider,
        session_key=record.session_key,
    )
    if record.session_key and not rebind_session_refresh_token(
        issuer=issuer,
        session_key=record.session_key,
        refresh_token=new_refresh_token,
        access=access,
    ):
        # Logged out while rotating; nothing minted here may outlive the session
        issuer.revoke(new_refresh_token, REFRESH_TOKEN_TYPE_HINT)
        issuer.revoke_access_token(access.jti, access.expires_at.timestamp())
        raise GrantError("Session has ended")
    return response


def exchange_token(
    *,
    session: Session,
    issuer: TokenIssuer,
    grant_type: str | None,
    client_id: str | None,
    client_secret: str | None,
    authorization: str | None,
    code: str | None = None,
    redirect_uri: str | None = None,
    code_verifier: str | None = None,
    refresh_token: str | None = None,
    scope: str | None = None,
) -> TokenResponse:
    """
    Dispatch a /token request by grant type.

    Raises:
        UnsupportedGrantTypeError: grant_type other than authorization_code or refresh_token
        OAuthError: Anything the grant handlers raise
    """
    if not grant_type:
        raise ClientError("Missing grant_type")
    if grant_type not in SUPPORTED_GRANT_TYPES:
        raise UnsupportedGrantTypeError(f"Unsupported grant_type: {grant_type}")

    client = authenticate_client(
        session=session,
        client_id=client_id,
        client_secret=client_secret,
        authorization=authorization,
    )

    if grant_type == AUTHORIZATION_CODE_GRANT:
        return exchange_authorization_code(
            issuer=issuer,
            client=client,
            code=code,
            redirect_uri=redirect_uri,
            code_verifier=code_verifier,
        )
    return exchange_refresh_token(
        issuer=issuer,
        client=client,
        refresh_token=refresh_token,
        scope=scope,
    )


# ----------------------------------------------------------------------
# Discovery
# ----------------------------------------------------------------------


def build_metadata(config: Settings | None = None) -> AuthorizationServerMetadata:
    """RFC 8414 metadata. Derived from settings only; no mutable state."""
    config = config or default_settings
    base = config.issuer
    return AuthorizationServerMetadata(
        issuer=base,
        authorization_endpoint=f"{base}/oauth/authorize",
        token_endpoint=f"{base}/oauth/token",
        introspection_endpoint=f"{base}/oauth/introspect",
        revocation_endpoint=f"{base}/oauth/revoke",
        response_types_supported=SUPPORTED_RESPONSE_TYPES,
        grant_types_supported=SUPPORTED_GRANT_TYPES,
        code_challenge_methods_supported=list(PKCE_METHODS),
        token_endpoint_auth_methods_supported=TOKEN_ENDPOINT_AUTH_METHODS,
    )
