"""
Session broker: turns a completed federation login into a first-party
session.

Flow:
1. start_federation stores an AuthorizationState (10 minute TTL) and
   returns the upstream authorization URL.
2. complete_federation consumes the state (single use), exchanges the
   upstream code, fetches the profile, maps it to an internal subject,
   mints the session token and persists the SessionRecord.
3. The browser is redirected with an opaque session identifier only;
   the provider's token stays server-side, encrypted.

Store writes are the last step of each phase, so a request that dies
while waiting on the provider leaves nothing half-written.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlmodel import Session

from broker.core.clock import as_utc
from broker.core.encryption import TokenEncryption, get_encryption
from broker.core.errors import ClientError
from broker.core.security import generate_opaque_token
from broker.core.urls import build_redirect_url
from broker.crud.identity import get_or_create_identity
from broker.crud.store import consume_entry, put_entry, secret_key, update_entry
from broker.models import AuthorizationState, SessionInfo, SessionRecord, UpstreamProfile
from broker.services.federation import FederationProvider
from broker.services.token_issuer import (
    REFRESH_NAMESPACE,
    SESSION_NAMESPACE,
    IssuedAccessToken,
    TokenIssuer,
)

logger = logging.getLogger(__name__)

STATE_NAMESPACE = "state"

# Scope carried by first-party session tokens
SESSION_SCOPE = "openid profile email"


@dataclass
class ClientAuthorizationRequest:
    """A client's /oauth/authorize request parked while the user logs in upstream."""

    client_id: str
    redirect_uri: str
    scope: str
    state: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None


@dataclass
class FederationResult:
    """Outcome of a completed federation callback."""

    session_id: str
    subject: str
    redirect_url: str


def start_federation(
    *,
    issuer: TokenIssuer,
    provider: FederationProvider,
    client_request: ClientAuthorizationRequest | None = None,
) -> str:
    """
    Begin a federation login.

    Args:
        issuer: Token issuer (provides the store session and clock)
        provider: Upstream provider to send the user to
        client_request: Pending /oauth/authorize request, if any

    Returns:
        Upstream authorization URL to redirect the browser to
    """
    now = issuer.now()
    state_token = generate_opaque_token()
    state = AuthorizationState(
        state_token=state_token,
        provider=provider.name,
        created_at=now,
        redirect_uri=provider.redirect_uri,
    )
    if client_request is not None:
        state.client_id = client_request.client_id
        state.client_redirect_uri = client_request.redirect_uri
        state.client_state = client_request.state
        state.scope = client_request.scope
        state.pkce_challenge = client_request.code_challenge
        state.pkce_method = client_request.code_challenge_method

    url = provider.build_authorization_url(state_token)

    put_entry(
        session=issuer.session,
        key=secret_key(STATE_NAMESPACE, state_token),
        value=state.model_dump(mode="json"),
        ttl_seconds=issuer.config.STATE_TTL_SECONDS,
        now=now,
    )
    logger.info(
        "Started %s login%s",
        provider.name,
        f" for client {client_request.client_id}" if client_request else "",
    )
    return url


def consume_authorization_state(*, issuer: TokenIssuer, state_token: str) -> AuthorizationState | None:
    """
    Read and delete an AuthorizationState. Valid for exactly one callback.

    Returns:
        The state, or None if unknown, expired or already used
    """
    if not state_token:
        return None
    value = consume_entry(
        session=issuer.session,
        key=secret_key(STATE_NAMESPACE, state_token),
        now=issuer.now(),
    )
    if value is None:
        return None
    return AuthorizationState.model_validate(value)


def create_session(
    *,
    issuer: TokenIssuer,
    subject: str,
    provider: str,
    profile: UpstreamProfile,
    upstream_access_token: str | None = None,
    encryption: TokenEncryption | None = None,
) -> tuple[str, SessionRecord]:
    """
    Mint a first-party session for a subject.

    The session refresh token is bound to FIRST_PARTY_CLIENT_ID and dies
    with the session. The SessionRecord is written last.

    Returns:
        (opaque session identifier, SessionRecord)
    """
    encryption = encryption or get_encryption()
    config = issuer.config
    now = issuer.now()

    session_id = generate_opaque_token()
    session_key = secret_key(SESSION_NAMESPACE, session_id)

    access = issuer.issue_access_token(
        subject,
        SESSION_SCOPE,
        client_id=config.FIRST_PARTY_CLIENT_ID,
        provider=provider,
        token_use="session",
    )
    refresh_token = issuer.issue_refresh_token(
        config.FIRST_PARTY_CLIENT_ID,
        subject,
        SESSION_SCOPE,
        provider=provider,
        session_key=session_key,
        ttl=config.SESSION_TTL_SECONDS,
    )

    record = SessionRecord(
        token_id=access.jti,
        subject=subject,
        scope=SESSION_SCOPE,
        provider=provider,
        issued_at=now,
        expires_at=now + timedelta(seconds=config.SESSION_TTL_SECONDS),
        access_token=access.token,
        access_token_expires_at=access.expires_at,
        refresh_token_key=secret_key(REFRESH_NAMESPACE, refresh_token),
        refresh_token_encrypted=encryption.encrypt(refresh_token),
        upstream_token_encrypted=(
            encryption.encrypt(upstream_access_token) if upstream_access_token else None
        ),
        profile=profile,
    )
    put_entry(
        session=issuer.session,
        key=session_key,
        value=record.model_dump(mode="json"),
        ttl_seconds=config.SESSION_TTL_SECONDS,
        now=now,
    )
    return session_id, record


def _save_session(*, issuer: TokenIssuer, key: str, record: SessionRecord) -> bool:
    """Rewrite a live session record, keeping its expiry. False once it has ended."""
    return update_entry(
        session=issuer.session,
        key=key,
        value=record.model_dump(mode="json"),
        now=issuer.now(),
    )


async def complete_federation(
    *,
    session: Session,
    issuer: TokenIssuer,
    provider: FederationProvider,
    code: str | None,
    state_token: str | None,
    encryption: TokenEncryption | None = None,
) -> FederationResult:
    """
    Handle the upstream callback.

    Raises:
        ClientError: Missing code/state, or state unknown, expired, replayed
            or issued for another provider ("Invalid state")
        ProviderError: Upstream exchange or profile fetch failed
    """
    if not code or not state_token:
        raise ClientError("Missing code or state")

    state = consume_authorization_state(issuer=issuer, state_token=state_token)
    if state is None:
        logger.warning("%s callback with unknown, expired or replayed state", provider.name)
        raise ClientError("Invalid state")
    if state.provider != provider.name:
        logger.warning("State issued for %s presented to %s callback", state.provider, provider.name)
        raise ClientError("Invalid state")

    tokens = await provider.exchange_code(code, state.redirect_uri)
    profile = await provider.fetch_profile(tokens["access_token"])

    identity = get_or_create_identity(session=session, profile=profile)

    session_id, _ = create_session(
        issuer=issuer,
        subject=identity.subject,
        provider=provider.name,
        profile=profile,
        upstream_access_token=tokens["access_token"],
        encryption=encryption,
    )
    logger.info("%s login completed for %s", provider.name, identity.subject)

    if state.has_client_request:
        code_for_client = issuer.issue_authorization_code(
            state.client_id,
            identity.subject,
            state.scope or "",
            state.client_redirect_uri,
            state.pkce_challenge,
            state.pkce_method,
            provider=provider.name,
        )
        redirect_url = build_redirect_url(
            state.client_redirect_uri,
            {"code": code_for_client, "state": state.client_state},
        )
    else:
        redirect_url = build_redirect_url(
            issuer.config.SESSION_REDIRECT_URL,
            {"session": session_id},
        )

    return FederationResult(
        session_id=session_id,
        subject=identity.subject,
        redirect_url=redirect_url,
    )


def get_session_info(
    *,
    issuer: TokenIssuer,
    session_id: str,
    encryption: TokenEncryption | None = None,
) -> SessionInfo | None:
    """
    Look up a session for a first-party client.

    A new session token is minted when the stored one has expired or was
    revoked while the session itself is still alive.

    Returns:
        SessionInfo, or None if the session is unknown or expired
    """
    record = issuer.get_session_record(session_id)
    if record is None:
        return None

    encryption = encryption or get_encryption()
    key = secret_key(SESSION_NAMESPACE, session_id)

    if not issuer.verify(record.access_token).valid:
        access = issuer.issue_access_token(
            record.subject,
            record.scope,
            client_id=issuer.config.FIRST_PARTY_CLIENT_ID,
            provider=record.provider,
            token_use="session",
        )
        record.token_id = access.jti
        record.access_token = access.token
        record.access_token_expires_at = access.expires_at
        if not _save_session(issuer=issuer, key=key, record=record):
            return None

    now = int(issuer.now().timestamp())
    refresh_token = (
        encryption.decrypt(record.refresh_token_encrypted)
        if record.refresh_token_encrypted
        else None
    )
    return SessionInfo(
        subject=record.subject,
        provider=record.provider,
        scope=record.scope,
        expires_at=record.expires_at,
        access_token=record.access_token,
        expires_in=max(0, int(as_utc(record.access_token_expires_at).timestamp()) - now),
        refresh_token=refresh_token,
        profile=record.profile,
    )


def rebind_session_refresh_token(
    *,
    issuer: TokenIssuer,
    session_key: str,
    refresh_token: str,
    access: IssuedAccessToken,
    encryption: TokenEncryption | None = None,
) -> bool:
    """
    Point a session at its rotated refresh token and remember the access
    token minted with it, so that logout revokes both.

    Returns:
        False if the session ended before it could be updated
    """
    record = issuer.get_session_record_by_key(session_key)
    if record is None:
        return False
    encryption = encryption or get_encryption()
    now = issuer.now()
    record.refresh_token_key = secret_key(REFRESH_NAMESPACE, refresh_token)
    record.refresh_token_encrypted = encryption.encrypt(refresh_token)
    record.issued_token_ids = {
        jti: expires_at
        for jti, expires_at in record.issued_token_ids.items()
        if as_utc(expires_at) > now
    }
    record.issued_token_ids[access.jti] = access.expires_at
    return _save_session(issuer=issuer, key=session_key, record=record)


def end_session(*, issuer: TokenIssuer, session_id: str) -> None:
    """Log out. Idempotent."""
    issuer.revoke_session(session_id)


__all__ = [
    "ClientAuthorizationRequest",
    "FederationResult",
    "complete_federation",
    "consume_authorization_state",
    "create_session",
    "end_session",
    "get_session_info",
    "rebind_session_refresh_token",
    "start_federation",
]
