"""
Token issuer: the only producer and verifier of token material.

Issues three kinds of credentials:
- Access tokens: HMAC-signed JWTs (PyJWT) with sub, scope, iat, nbf, exp
  and jti claims. Verification checks the signature, issuer, exp and nbf
  against the injected clock, then the revocation list in the store.
- Authorization codes: opaque, single-use, stored by digest.
- Refresh tokens: opaque, long-lived, stored by digest, revocable.

All verification fails closed: any token that cannot be decoded, checked
or found is reported invalid/inactive, never accepted optimistically.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import jwt
from pydantic import ValidationError
from sqlmodel import Session

from broker.core.clock import Clock, as_utc, utcnow
from broker.core.config import Settings, settings as default_settings
from broker.core.security import generate_opaque_token
from broker.crud.store import (
    consume_entry,
    delete_entry,
    get_entry,
    put_entry,
    secret_key,
)
from broker.models import (
    AuthorizationCode,
    RefreshTokenRecord,
    RevokedToken,
    SessionRecord,
)

logger = logging.getLogger(__name__)

# Store namespaces
CODE_NAMESPACE = "code"
REFRESH_NAMESPACE = "refresh"
SESSION_NAMESPACE = "session"
REVOKED_NAMESPACE = "revoked"

ACCESS_TOKEN_TYPE_HINT = "access_token"
REFRESH_TOKEN_TYPE_HINT = "refresh_token"

# Claims every access token must carry
_REQUIRED_CLAIMS = ["sub", "scope", "iat", "exp", "jti"]


@dataclass
class IssuedAccessToken:
    """A freshly signed access token and its metadata."""

    token: str
    jti: str
    issued_at: datetime
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())


@dataclass
class TokenVerification:
    """Result of verify(). claims is only set when valid."""

    valid: bool
    claims: dict[str, Any] = field(default_factory=dict)
    reason: str | None = None


def _invalid(reason: str) -> TokenVerification:
    return TokenVerification(valid=False, reason=reason)


class TokenIssuer:
    """
    Creates, verifies, introspects and revokes tokens.

    Args:
        session: Database session for the ephemeral state store
        clock: Time source; tests pass a controllable clock
        config: Settings providing secrets and lifetimes
    """

    def __init__(
        self,
        session: Session,
        clock: Clock = utcnow,
        config: Settings | None = None,
    ):
        self.session = session
        self.clock = clock
        self.config = config or default_settings

    def now(self) -> datetime:
        return as_utc(self.clock())

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(
        self,
        subject: str,
        scope: str,
        ttl: int | None = None,
        *,
        client_id: str | None = None,
        provider: str | None = None,
        token_use: str = "access",
    ) -> IssuedAccessToken:
        """
        Sign a new access token.

        Args:
            subject: Internal subject identifier (`sub`)
            scope: Space-separated scopes
            ttl: Lifetime in seconds (defaults to ACCESS_TOKEN_TTL_SECONDS)
            client_id: Client the token was issued to, also used as `aud`
            provider: Upstream provider of the login, for session tokens
            token_use: "access" for client tokens, "session" for first-party sessions

        Returns:
            IssuedAccessToken with the compact JWT
        """
        ttl = ttl if ttl is not None else self.config.ACCESS_TOKEN_TTL_SECONDS
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self.now()
        issued_at = int(now.timestamp())
        expires_at = issued_at + ttl
        jti = uuid.uuid4().hex

        claims: dict[str, Any] = {
            "iss": self.config.issuer,
            "sub": subject,
            "scope": scope,
            "iat": issued_at,
            "nbf": issued_at,
            "exp": expires_at,
            "jti": jti,
            "token_use": token_use,
        }
        if client_id:
            claims["client_id"] = client_id
            claims["aud"] = client_id
        if provider:
            claims["provider"] = provider

        token = jwt.encode(
            claims,
            self.config.TOKEN_SIGNING_SECRET,
            algorithm=self.config.TOKEN_SIGNING_ALGORITHM,
            headers={"typ": "JWT"},
        )
        return IssuedAccessToken(
            token=token,
            jti=jti,
            issued_at=datetime.fromtimestamp(issued_at, tz=now.tzinfo),
            expires_at=datetime.fromtimestamp(expires_at, tz=now.tzinfo),
        )

    def verify(self, token: str) -> TokenVerification:
        """
        Verify an access token.

        Checks, in order: structure and header, signature and issuer, exp and
        nbf against the clock, then the revocation list. Never raises for a
        bad token.
        """
        if not token or token.count(".") != 2:
            return _invalid("malformed")

        try:
            header = jwt.get_unverified_header(token)
            if header.get("alg") != self.config.TOKEN_SIGNING_ALGORITHM:
                return _invalid("unexpected algorithm")
            if header.get("typ") != "JWT":
                return _invalid("unexpected type")

            claims = jwt.decode(
                token,
                self.config.TOKEN_SIGNING_SECRET,
                algorithms=[self.config.TOKEN_SIGNING_ALGORITHM],
                issuer=self.config.issuer,
                # Time-based claims are checked below against the injected clock
                options={
                    "require": _REQUIRED_CLAIMS,
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_aud": False,
                },
            )
        except jwt.PyJWTError as e:
            logger.debug("Access token rejected: %s", type(e).__name__)
            return _invalid("signature or claims")

        now = self.now().timestamp()
        try:
            if now >= float(claims["exp"]):
                return _invalid("expired")
            if "nbf" in claims and now < float(claims["nbf"]):
                return _invalid("not yet valid")
        except (TypeError, ValueError):
            return _invalid("malformed time claims")

        if self.is_revoked(claims["jti"]):
            return _invalid("revoked")

        return TokenVerification(valid=True, claims=claims)

    def is_revoked(self, jti: str) -> bool:
        return (
            get_entry(
                session=self.session,
                key=f"{REVOKED_NAMESPACE}:{jti}",
                now=self.now(),
            )
            is not None
        )

    def revoke_access_token(self, jti: str, exp: int | float) -> None:
        """Add a token id to the revocation list until the token would expire."""
        now = self.now()
        remaining = int(float(exp) - now.timestamp()) + 1
        if remaining <= 0:
            # Already expired; verify() rejects it anyway
            return
        record = RevokedToken(jti=jti, revoked_at=now)
        put_entry(
            session=self.session,
            key=f"{REVOKED_NAMESPACE}:{jti}",
            value=record.model_dump(mode="json"),
            ttl_seconds=remaining,
            now=now,
        )
        logger.info("Access token %s revoked", jti)

    # ------------------------------------------------------------------
    # Authorization codes
    # ------------------------------------------------------------------

    def issue_authorization_code(
        self,
        client_id: str,
        user_id: str,
        scope: str,
        redirect_uri: str,
        pkce_challenge: str | None = None,
        pkce_method: str | None = None,
        *,
        provider: str | None = None,
    ) -> str:
        """
        Create a single-use authorization code.

        The code is only written to the store once everything else for the
        request has succeeded; the caller redirects right after.

        Returns:
            The opaque code (256 bits of entropy)
        """
        now = self.now()
        ttl = self.config.CODE_TTL_SECONDS
        code = generate_opaque_token()
        record = AuthorizationCode(
            client_id=client_id,
            user_id=user_id,
            scope=scope,
            redirect_uri=redirect_uri,
            pkce_challenge=pkce_challenge,
            pkce_method=(pkce_method or "plain") if pkce_challenge else None,
            provider=provider,
            expires_at=now + timedelta(seconds=ttl),
        )
        put_entry(
            session=self.session,
            key=secret_key(CODE_NAMESPACE, code),
            value=record.model_dump(mode="json"),
            ttl_seconds=ttl,
            now=now,
        )
        return code

    def redeem_authorization_code(self, code: str) -> AuthorizationCode | None:
        """
        Consume an authorization code.

        Succeeds at most once per code. Returns None for unknown, expired,
        already redeemed or unreadable codes.
        """
        if not code:
            return None
        now = self.now()
        value = consume_entry(
            session=self.session,
            key=secret_key(CODE_NAMESPACE, code),
            now=now,
        )
        if value is None:
            return None
        try:
            record = AuthorizationCode.model_validate(value)
        except ValidationError:
            logger.warning("Discarding unreadable authorization code record")
            return None
        if now >= as_utc(record.expires_at):
            return None
        return record

    def peek_authorization_code(self, code: str) -> AuthorizationCode | None:
        """Read an authorization code without consuming it."""
        now = self.now()
        value = get_entry(
            session=self.session,
            key=secret_key(CODE_NAMESPACE, code),
            now=now,
        )
        if value is None:
            return None
        try:
            return AuthorizationCode.model_validate(value)
        except ValidationError:
            return None

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def issue_refresh_token(
        self,
        client_id: str,
        subject: str,
        scope: str,
        *,
        provider: str | None = None,
        session_key: str | None = None,
        ttl: int | None = None,
    ) -> str:
        """
        Create an opaque refresh token and its server-side record.

        Returns:
            The refresh token
        """
        now = self.now()
        ttl = ttl if ttl is not None else self.config.REFRESH_TOKEN_TTL_SECONDS
        refresh_token = generate_opaque_token()
        record = RefreshTokenRecord(
            client_id=client_id,
            subject=subject,
            scope=scope,
            provider=provider,
            session_key=session_key,
            issued_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        put_entry(
            session=self.session,
            key=secret_key(REFRESH_NAMESPACE, refresh_token),
            value=record.model_dump(mode="json"),
            ttl_seconds=ttl,
            now=now,
        )
        return refresh_token

    def get_refresh_token(self, refresh_token: str) -> RefreshTokenRecord | None:
        """Read a refresh token record without consuming it."""
        if not refresh_token:
            return None
        value = get_entry(
            session=self.session,
            key=secret_key(REFRESH_NAMESPACE, refresh_token),
            now=self.now(),
        )
        if value is None:
            return None
        try:
            return RefreshTokenRecord.model_validate(value)
        except ValidationError:
            return None

    def consume_refresh_token(self, refresh_token: str) -> RefreshTokenRecord | None:
        """
        Consume a refresh token for rotation.

        Succeeds at most once per token; a replayed token returns None.
        """
        if not refresh_token:
            return None
        value = consume_entry(
            session=self.session,
            key=secret_key(REFRESH_NAMESPACE, refresh_token),
            now=self.now(),
        )
        if value is None:
            return None
        try:
            return RefreshTokenRecord.model_validate(value)
        except ValidationError:
            logger.warning("Discarding unreadable refresh token record")
            return None

    # ------------------------------------------------------------------
    # Sessions (records are written by the session broker)
    # ------------------------------------------------------------------

    def get_session_record(self, session_id: str) -> SessionRecord | None:
        if not session_id:
            return None
        return self.get_session_record_by_key(secret_key(SESSION_NAMESPACE, session_id))

    def get_session_record_by_key(self, key: str) -> SessionRecord | None:
        value = get_entry(session=self.session, key=key, now=self.now())
        if value is None:
            return None
        try:
            return SessionRecord.model_validate(value)
        except ValidationError:
            return None

    def revoke_session(self, session_id: str) -> bool:
        """
        End a first-party session: delete it and its refresh token, and put
        its access tokens on the revocation list. That covers the session
        token and every token minted with the session refresh token.

        Returns:
            True if a live session was found
        """
        key = secret_key(SESSION_NAMESPACE, session_id)
        value = consume_entry(session=self.session, key=key, now=self.now())
        if value is None:
            return False
        try:
            record = SessionRecord.model_validate(value)
        except ValidationError:
            return True

        if record.refresh_token_key:
            delete_entry(session=self.session, key=record.refresh_token_key)
        self.revoke_access_token(record.token_id, as_utc(record.access_token_expires_at).timestamp())
        for jti, expires_at in record.issued_token_ids.items():
            self.revoke_access_token(jti, as_utc(expires_at).timestamp())
        logger.info("Session for %s via %s revoked", record.subject, record.provider)
        return True

    # ------------------------------------------------------------------
    # Introspection and revocation (RFC 7662 / RFC 7009)
    # ------------------------------------------------------------------

    def introspect(self, token: str, token_type_hint: str | None = None) -> dict[str, Any]:
        """
        Describe a token, code or session identifier.

        Active iff it is a valid, unrevoked access token, or a refresh token,
        authorization code or session present and unexpired in the store.
        Anything else, including garbage input, is {"active": False}.
        """
        if not token:
            return {"active": False}

        lookups = [self._introspect_access_token, self._introspect_refresh_token]
        if token_type_hint == REFRESH_TOKEN_TYPE_HINT:
            lookups.reverse()
        lookups += [self._introspect_session, self._introspect_code]

        for lookup in lookups:
            result = lookup(token)
            if result is not None:
                return result
        return {"active": False}

    def _introspect_access_token(self, token: str) -> dict[str, Any] | None:
        verification = self.verify(token)
        if not verification.valid:
            return None
        claims = verification.claims
        return {
            "active": True,
            "scope": claims["scope"],
            "sub": claims["sub"],
            "exp": int(claims["exp"]),
            "iat": int(claims["iat"]),
            "client_id": claims.get("client_id"),
            "token_type": "Bearer",
        }

    def _introspect_refresh_token(self, token: str) -> dict[str, Any] | None:
        record = self.get_refresh_token(token)
        if record is None:
            return None
        return {
            "active": True,
            "scope": record.scope,
            "sub": record.subject,
            "exp": int(as_utc(record.expires_at).timestamp()),
            "iat": int(as_utc(record.issued_at).timestamp()),
            "client_id": record.client_id,
            "token_type": REFRESH_TOKEN_TYPE_HINT,
        }

    def _introspect_session(self, token: str) -> dict[str, Any] | None:
        record = self.get_session_record(token)
        if record is None:
            return None
        return {
            "active": True,
            "scope": record.scope,
            "sub": record.subject,
            "exp": int(as_utc(record.expires_at).timestamp()),
            "iat": int(as_utc(record.issued_at).timestamp()),
            "token_type": "session",
        }

    def _introspect_code(self, token: str) -> dict[str, Any] | None:
        record = self.peek_authorization_code(token)
        if record is None or self.now() >= as_utc(record.expires_at):
            return None
        return {
            "active": True,
            "scope": record.scope,
            "sub": record.user_id,
            "exp": int(as_utc(record.expires_at).timestamp()),
            "client_id": record.client_id,
            "token_type": "authorization_code",
        }

    def revoke(self, token: str, token_type_hint: str | None = None) -> None:
        """
        Revoke any kind of token. Idempotent; unknown tokens are a no-op.

        Signed access tokens go on the revocation list (checked by verify()
        on top of the signature); refresh tokens, sessions and codes are
        deleted from the store.
        """
        if not token:
            return

        lookups = [self._revoke_access_token, self._revoke_refresh_token]
        if token_type_hint == REFRESH_TOKEN_TYPE_HINT:
            lookups.reverse()
        lookups += [self.revoke_session, self._revoke_code]

        for lookup in lookups:
            if lookup(token):
                return

    def _revoke_access_token(self, token: str) -> bool:
        verification = self.verify(token)
        if not verification.valid:
            return False
        self.revoke_access_token(verification.claims["jti"], verification.claims["exp"])
        return True

    def _revoke_refresh_token(self, token: str) -> bool:
        if delete_entry(session=self.session, key=secret_key(REFRESH_NAMESPACE, token)):
            logger.info("Refresh token revoked")
            return True
        return False

    def _revoke_code(self, token: str) -> bool:
        if delete_entry(session=self.session, key=secret_key(CODE_NAMESPACE, token)):
            logger.info("Authorization code revoked")
            return True
        return False
