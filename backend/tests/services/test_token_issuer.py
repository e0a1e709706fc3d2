"""
Tests for the token issuer.

Expiry is driven by the FakeClock fixture from conftest.py, never by
sleeping.
"""

import jwt
import pytest

from broker.core.config import settings
from broker.crud.store import get_entry, secret_key
from broker.services.token_issuer import CODE_NAMESPACE, TokenIssuer


class TestAccessTokens:
    """Tests for issue_access_token and verify."""

    def test_verify_immediately_after_issue(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read write", 3600, client_id="app")

        result = issuer.verify(issued.token)

        assert result.valid is True
        assert result.claims["sub"] == "usr_1"
        assert result.claims["scope"] == "read write"
        assert result.claims["client_id"] == "app"
        assert result.claims["iss"] == settings.issuer
        assert result.claims["jti"] == issued.jti

    def test_fails_after_ttl(self, issuer: TokenIssuer, clock):
        issued = issuer.issue_access_token("usr_1", "read", 60)

        clock.advance(59)
        assert issuer.verify(issued.token).valid is True

        clock.advance(1)
        result = issuer.verify(issued.token)
        assert result.valid is False
        assert result.reason == "expired"

    def test_not_valid_before_issue_time(self, issuer: TokenIssuer, clock):
        issued = issuer.issue_access_token("usr_1", "read", 60)

        clock.advance(-30)
        assert issuer.verify(issued.token).valid is False

    def test_default_ttl_is_one_hour(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read")
        assert issued.expires_in == 3600

    def test_rejects_non_positive_ttl(self, issuer: TokenIssuer):
        with pytest.raises(ValueError):
            issuer.issue_access_token("usr_1", "read", 0)

    def test_tampered_payload_is_rejected(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read")
        header, payload, signature = issued.token.split(".")
        forged = jwt.encode(
            {"sub": "usr_admin", "scope": "admin", "iat": 0, "exp": 9999999999, "jti": "x"},
            "another-secret",
            algorithm="HS256",
        )
        forged_payload = forged.split(".")[1]

        assert issuer.verify(f"{header}.{forged_payload}.{signature}").valid is False

    def test_wrong_secret_is_rejected(self, issuer: TokenIssuer, clock):
        now = int(clock().timestamp())
        token = jwt.encode(
            {
                "iss": settings.issuer,
                "sub": "usr_1",
                "scope": "read",
                "iat": now,
                "exp": now + 60,
                "jti": "abc",
            },
            "not-the-signing-secret",
            algorithm="HS256",
            headers={"typ": "JWT"},
        )
        assert issuer.verify(token).valid is False

    def test_unsigned_token_is_rejected(self, issuer: TokenIssuer, clock):
        now = int(clock().timestamp())
        token = jwt.encode(
            {"iss": settings.issuer, "sub": "usr_1", "scope": "read", "iat": now, "exp": now + 60, "jti": "a"},
            None,
            algorithm="none",
        )
        assert issuer.verify(token).valid is False

    def test_wrong_issuer_is_rejected(self, issuer: TokenIssuer, clock):
        now = int(clock().timestamp())
        token = jwt.encode(
            {"iss": "https://evil.example.org", "sub": "usr_1", "scope": "read", "iat": now, "exp": now + 60, "jti": "a"},
            settings.TOKEN_SIGNING_SECRET,
            algorithm="HS256",
            headers={"typ": "JWT"},
        )
        assert issuer.verify(token).valid is False

    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c", "a.b"])
    def test_garbage_is_invalid(self, issuer: TokenIssuer, token):
        assert issuer.verify(token).valid is False


class TestAuthorizationCodes:
    """Tests for issue_authorization_code and redeem_authorization_code."""

    def test_redeem_once(self, issuer: TokenIssuer):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb")

        record = issuer.redeem_authorization_code(code)
        assert record is not None
        assert record.client_id == "app"
        assert record.user_id == "usr_1"

        assert issuer.redeem_authorization_code(code) is None

    def test_expires_after_ten_minutes(self, issuer: TokenIssuer, clock):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb")

        clock.advance(600)
        assert issuer.redeem_authorization_code(code) is None

    def test_code_is_stored_by_digest(self, issuer: TokenIssuer, session):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb")

        assert get_entry(session=session, key=f"{CODE_NAMESPACE}:{code}") is None
        assert get_entry(session=session, key=secret_key(CODE_NAMESPACE, code)) is not None

    def test_pkce_method_defaults_to_plain(self, issuer: TokenIssuer):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb", "challenge")

        assert issuer.redeem_authorization_code(code).pkce_method == "plain"


class TestRefreshTokens:
    """Tests for refresh token records."""

    def test_consume_once(self, issuer: TokenIssuer):
        token = issuer.issue_refresh_token("app", "usr_1", "read")

        assert issuer.get_refresh_token(token).subject == "usr_1"
        assert issuer.consume_refresh_token(token) is not None
        assert issuer.consume_refresh_token(token) is None
        assert issuer.get_refresh_token(token) is None

    def test_default_lifetime(self, issuer: TokenIssuer, clock):
        token = issuer.issue_refresh_token("app", "usr_1", "read")

        clock.advance(settings.REFRESH_TOKEN_TTL_SECONDS - 1)
        assert issuer.get_refresh_token(token) is not None
        clock.advance(1)
        assert issuer.get_refresh_token(token) is None


class TestIntrospect:
    """Tests for introspect."""

    def test_active_access_token(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read", client_id="app")

        result = issuer.introspect(issued.token)

        assert result["active"] is True
        assert result["sub"] == "usr_1"
        assert result["scope"] == "read"
        assert result["client_id"] == "app"
        assert result["exp"] == int(issued.expires_at.timestamp())

    def test_active_refresh_token(self, issuer: TokenIssuer):
        token = issuer.issue_refresh_token("app", "usr_1", "read")

        result = issuer.introspect(token, "refresh_token")

        assert result["active"] is True
        assert result["token_type"] == "refresh_token"

    def test_active_authorization_code(self, issuer: TokenIssuer):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb")

        result = issuer.introspect(code)

        assert result["active"] is True
        assert result["token_type"] == "authorization_code"
        # Introspection does not consume the code
        assert issuer.redeem_authorization_code(code) is not None

    def test_unknown_token_is_inactive(self, issuer: TokenIssuer):
        assert issuer.introspect("unknown-token") == {"active": False}

    def test_expired_access_token_is_inactive(self, issuer: TokenIssuer, clock):
        issued = issuer.issue_access_token("usr_1", "read", 60)
        clock.advance(61)

        assert issuer.introspect(issued.token) == {"active": False}


class TestRevoke:
    """Tests for revoke."""

    def test_revoke_then_introspect_access_token(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read")

        issuer.revoke(issued.token)

        assert issuer.introspect(issued.token) == {"active": False}
        assert issuer.verify(issued.token).reason == "revoked"

    def test_revoke_then_introspect_refresh_token(self, issuer: TokenIssuer):
        token = issuer.issue_refresh_token("app", "usr_1", "read")

        issuer.revoke(token, "refresh_token")

        assert issuer.introspect(token) == {"active": False}

    def test_refresh_hint_still_revokes_access_token(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read")

        issuer.revoke(issued.token, "refresh_token")

        assert issuer.introspect(issued.token) == {"active": False}

    def test_revoke_authorization_code(self, issuer: TokenIssuer):
        code = issuer.issue_authorization_code("app", "usr_1", "read", "https://app/cb")

        issuer.revoke(code)

        assert issuer.redeem_authorization_code(code) is None

    def test_revoke_is_idempotent(self, issuer: TokenIssuer):
        issued = issuer.issue_access_token("usr_1", "read")

        issuer.revoke(issued.token)
        issuer.revoke(issued.token)
        issuer.revoke("never-issued")
        issuer.revoke("")

        assert issuer.introspect(issued.token) == {"active": False}

    def test_revocation_entry_expires_with_token(self, issuer: TokenIssuer, clock, session):
        issued = issuer.issue_access_token("usr_1", "read", 60)
        issuer.revoke(issued.token)

        assert get_entry(session=session, key=f"revoked:{issued.jti}", now=clock()) is not None
        clock.advance(120)
        assert get_entry(session=session, key=f"revoked:{issued.jti}", now=clock()) is None
