"""
Application configuration with environment-based settings.

This module uses Pydantic Settings for automatic environment variable loading
and validation following FastAPI best practices.
"""

import os
import secrets
import tomllib
from base64 import urlsafe_b64encode
from pathlib import Path
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    PostgresDsn,
    computed_field,
    field_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors(v: Any) -> list[str] | str:
    """Parse CORS origins from string or list"""
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


def _load_app_version_from_pyproject() -> str:
    """Load application version from pyproject.toml"""
    try:
        pyproject_path = Path(__file__).parent.parent.parent.parent / "pyproject.toml"

        if not pyproject_path.exists():
            return "0.0.0"

        with open(pyproject_path, "rb") as f:
            config = tomllib.load(f)
            return config.get("project", {}).get("version") or "0.0.0"

    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"


# Upper bound for access token lifetime
MAX_ACCESS_TOKEN_TTL_SECONDS = 3600

# Upper bound for blocking calls to upstream identity providers
MAX_UPSTREAM_TIMEOUT_SECONDS = 10.0


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings have sensible defaults for local development,
    allowing zero-config startup. Provider credentials have no defaults:
    a provider without a client id and secret is reported as unconfigured
    and refuses to start a login flow.
    """

    model_config = SettingsConfigDict(
        # Disable .env loading when TESTING=1 (set by conftest.py)
        env_file=None if os.getenv("TESTING") else ".env",
        env_ignore_empty=True,
        extra="ignore",
        case_sensitive=True,
    )

    PROJECT_NAME: str = "OAuth Broker"
    APP_VERSION: str = _load_app_version_from_pyproject()
    PORT: int = 8000
    ENVIRONMENT: Literal["local", "development", "staging", "production"] = "local"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Issuer
    # Public base URL of this server. Used as the `iss` claim, as the base of
    # every URL in the discovery document, and to build provider callback URLs.
    ISSUER_URL: str = "http://localhost:8000"

    # Token signing
    # Auto-generated for local/dev (issued tokens won't survive restarts).
    # For multi-replica deployments every replica must share the same secret.
    TOKEN_SIGNING_SECRET: str = secrets.token_urlsafe(48)
    TOKEN_SIGNING_ALGORITHM: Literal["HS256", "HS384", "HS512"] = "HS256"

    # Fernet key for upstream provider tokens kept in session records
    #   python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
    TOKEN_ENCRYPTION_KEY: str = urlsafe_b64encode(secrets.token_bytes(32)).decode()

    # GitHub federation
    # Register at: https://github.com/settings/developers
    # Callback URL: {ISSUER_URL}/auth/github/callback
    GITHUB_CLIENT_ID: str | None = None
    GITHUB_CLIENT_SECRET: str | None = None

    # Google federation
    # Register at: https://console.cloud.google.com/apis/credentials
    # Callback URL: {ISSUER_URL}/auth/google/callback
    GOOGLE_CLIENT_ID: str | None = None
    GOOGLE_CLIENT_SECRET: str | None = None

    DEFAULT_PROVIDER: str = "github"

    # Where the browser lands after a federation login that was not started
    # by a client's /oauth/authorize request (dashboard, CLI helper page).
    SESSION_REDIRECT_URL: str = "http://localhost:3000/"
    SESSION_COOKIE_NAME: str = "broker_session"

    # Refresh tokens handed out with first-party sessions are bound to this client
    FIRST_PARTY_CLIENT_ID: str = "dashboard"

    # Lifetimes (seconds)
    STATE_TTL_SECONDS: int = 600
    CODE_TTL_SECONDS: int = 600
    SESSION_TTL_SECONDS: int = 86400
    ACCESS_TOKEN_TTL_SECONDS: int = MAX_ACCESS_TOKEN_TTL_SECONDS
    REFRESH_TOKEN_TTL_SECONDS: int = 30 * 86400

    UPSTREAM_TIMEOUT_SECONDS: float = MAX_UPSTREAM_TIMEOUT_SECONDS
    STORE_PURGE_INTERVAL_SECONDS: int = 300

    # YAML file with pre-provisioned clients, seeded at startup
    OAUTH_CLIENTS_FILE: str | None = None

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        """Get all CORS origins"""
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    # Database Configuration (PostgreSQL)
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "broker"
    POSTGRES_PASSWORD: str = "changethis"
    POSTGRES_DB: str = "broker"

    # Overrides the computed PostgreSQL URI, e.g. sqlite:///./broker.db
    DATABASE_URL: str | None = None

    @field_validator("ACCESS_TOKEN_TTL_SECONDS")
    @classmethod
    def _cap_access_token_ttl(cls, v: int) -> int:
        if v <= 0 or v > MAX_ACCESS_TOKEN_TTL_SECONDS:
            raise ValueError(
                f"ACCESS_TOKEN_TTL_SECONDS must be between 1 and {MAX_ACCESS_TOKEN_TTL_SECONDS}"
            )
        return v

    @field_validator("UPSTREAM_TIMEOUT_SECONDS")
    @classmethod
    def _cap_upstream_timeout(cls, v: float) -> float:
        if v <= 0 or v > MAX_UPSTREAM_TIMEOUT_SECONDS:
            raise ValueError(
                f"UPSTREAM_TIMEOUT_SECONDS must be between 0 and {MAX_UPSTREAM_TIMEOUT_SECONDS}"
            )
        return v

    @computed_field  # type: ignore[prop-decorator]
    @property
    def issuer(self) -> str:
        """Issuer identifier without trailing slash"""
        return self.ISSUER_URL.rstrip("/")

    def provider_callback_url(self, provider: str) -> str:
        """Callback URL registered with an upstream identity provider."""
        return f"{self.issuer}/auth/{provider}/callback"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        """Build database connection string"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(
            PostgresDsn.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )


# Create settings instance
settings = Settings()
