"""
Primitives for opaque credentials, PKCE and client secrets.
"""

import base64
import hashlib
import hmac
import secrets

import bcrypt

# PKCE methods accepted at /oauth/authorize (RFC 7636)
PKCE_METHODS = ("S256", "plain")

# RFC 7636 section 4.1 verifier length bounds
_VERIFIER_MIN_LENGTH = 43
_VERIFIER_MAX_LENGTH = 128


def generate_opaque_token() -> str:
    """
    Generate an unguessable opaque credential.

    Used for authorization codes, refresh tokens, session identifiers and
    state parameters. 32 random bytes give 256 bits of entropy.
    """
    return secrets.token_urlsafe(32)


def digest(value: str) -> str:
    """SHA-256 hex digest, used to key opaque secrets in the store."""
    return hashlib.sha256(value.encode()).hexdigest()


def s256_challenge(code_verifier: str) -> str:
    """Base64url(SHA256(code_verifier)) without padding."""
    raw = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def verify_pkce(code_verifier: str | None, code_challenge: str, method: str) -> bool:
    """
    Check a PKCE verifier against the challenge stored with the code.

    Returns False for a missing or malformed verifier and for unknown methods.
    """
    if not code_verifier:
        return False
    if not _VERIFIER_MIN_LENGTH <= len(code_verifier) <= _VERIFIER_MAX_LENGTH:
        return False
    try:
        if method == "S256":
            expected = s256_challenge(code_verifier)
        elif method == "plain":
            expected = code_verifier
        else:
            return False
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected, code_challenge)


def hash_client_secret(secret: str) -> str:
    """Hash a client secret with bcrypt for storage."""
    return bcrypt.hashpw(secret.encode("utf-8")[:72], bcrypt.gensalt(rounds=12)).decode("utf-8")


def verify_client_secret(secret: str, secret_hash: str) -> bool:
    """Constant-time check of a presented client secret against its bcrypt hash."""
    try:
        return bcrypt.checkpw(secret.encode("utf-8")[:72], secret_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        return False
