"""
Services package for token issuance and federation.

Usage:
    from broker.services import TokenIssuer, get_provider

Available services:
    - token_issuer: access tokens, codes, refresh tokens, introspection
    - federation: GitHub and Google identity providers
    - authorization: /authorize validation and /token grants
    - session_broker: federation login to first-party session
    - store_cleanup: background purge of expired store entries
"""

from .federation import (
    FederationProvider,
    GitHubProvider,
    GoogleProvider,
    get_provider,
    get_supported_providers,
    is_provider_configured,
)
from .token_issuer import TokenIssuer

__all__ = [
    # Federation
    "FederationProvider",
    "GitHubProvider",
    "GoogleProvider",
    "get_provider",
    "get_supported_providers",
    "is_provider_configured",
    # Tokens
    "TokenIssuer",
]
