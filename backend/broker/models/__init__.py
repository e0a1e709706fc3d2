"""
Models package for database models and schemas.

This package contains SQLModel database models and schemas:
- StoreEntry: ephemeral key/value rows with expiry
- OAuthClient: pre-provisioned OAuth clients
- FederatedIdentity: upstream account to internal subject mapping
- Store records (states, codes, refresh tokens, sessions)
- OAuth request/response schemas

Import from this module for convenience:

    from broker.models import StoreEntry, OAuthClient, SessionRecord
"""

# Re-export SQLModel for table creation
from sqlmodel import SQLModel

from broker.models.client import OAuthClient
from broker.models.identity import FederatedIdentity
from broker.models.oauth import (
    AuthorizationServerMetadata,
    IntrospectionResponse,
    ProviderStatus,
    ProvidersResponse,
    SessionInfo,
    TokenResponse,
)
from broker.models.records import (
    AuthorizationCode,
    AuthorizationState,
    RefreshTokenRecord,
    RevokedToken,
    SessionRecord,
    UpstreamProfile,
)
from broker.models.store_entry import StoreEntry

__all__ = [
    "SQLModel",
    # Tables
    "FederatedIdentity",
    "OAuthClient",
    "StoreEntry",
    # Store records
    "AuthorizationCode",
    "AuthorizationState",
    "RefreshTokenRecord",
    "RevokedToken",
    "SessionRecord",
    "UpstreamProfile",
    # API schemas
    "AuthorizationServerMetadata",
    "IntrospectionResponse",
    "ProviderStatus",
    "ProvidersResponse",
    "SessionInfo",
    "TokenResponse",
]
