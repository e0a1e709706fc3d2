"""
Federation client for upstream identity providers.

Each provider is a FederationProvider with the same three operations:
- build_authorization_url: where to send the browser
- exchange_code: server-to-server authorization code exchange
- fetch_profile: userinfo lookup with the upstream access token

Provider differences (JSON vs form-encoded exchange, profile field names,
extra headers) live in the subclasses, never in the route handlers.

Upstream calls are blocking I/O with a bounded timeout and are never
retried; a failed login is recovered by starting a fresh flow.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any
from urllib.parse import urlencode

import httpx

from broker.core.config import Settings, settings as default_settings
from broker.core.errors import ClientError, ConfigurationError, ProviderError
from broker.models import UpstreamProfile

logger = logging.getLogger(__name__)


class FederationProvider(ABC):
    """
    An upstream OAuth2 identity provider.

    Subclasses set the endpoint URLs and scopes and describe how the token
    request is encoded and how the profile maps to an UpstreamProfile.
    """

    name: str
    authorize_url: str
    token_url: str
    userinfo_url: str
    scopes: list[str]
    extra_authorize_params: dict[str, str] = {}

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout

    def build_authorization_url(self, state: str, redirect_uri: str | None = None) -> str:
        """
        Build the upstream authorization URL.

        Args:
            state: Opaque state token, echoed back on the callback
            redirect_uri: Callback URL (defaults to the configured one)
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri or self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        params.update(self.extra_authorize_params)
        return f"{self.authorize_url}?{urlencode(params)}"

    @abstractmethod
    def _token_request(self, code: str, redirect_uri: str) -> dict[str, Any]:
        """Keyword arguments for httpx.AsyncClient.post to the token endpoint."""

    @abstractmethod
    def _map_profile(self, data: dict[str, Any]) -> UpstreamProfile:
        """Convert the provider's userinfo payload into an UpstreamProfile."""

    def _profile_headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    async def exchange_code(self, code: str, redirect_uri: str | None = None) -> dict[str, Any]:
        """
        Exchange an upstream authorization code for an access token.

        Returns:
            The provider's token response; always contains access_token

        Raises:
            ProviderError: On network failure, non-JSON body, an `error`
                field, a non-2xx status or a missing access_token
        """
        request_kwargs = self._token_request(code, redirect_uri or self.redirect_uri)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.token_url, **request_kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s token exchange failed: %s", self.name, type(e).__name__)
            raise ProviderError(self.name, f"{self.name} token endpoint unreachable") from e

        try:
            result = response.json()
        except ValueError as e:
            logger.warning(
                "%s token endpoint returned non-JSON body (status %s)",
                self.name,
                response.status_code,
            )
            raise ProviderError(self.name, f"{self.name} returned a malformed token response") from e

        if not isinstance(result, dict):
            raise ProviderError(self.name, f"{self.name} returned a malformed token response")

        # GitHub reports errors with HTTP 200 and an error field
        if result.get("error"):
            error = str(result["error"])
            description = result.get("error_description") or error
            logger.warning("%s rejected code exchange: %s", self.name, error)
            raise ProviderError(
                self.name,
                f"{self.name} OAuth error: {description}",
                upstream_error=error,
            )

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning("%s token endpoint returned %s", self.name, response.status_code)
            raise ProviderError(
                self.name, f"{self.name} token endpoint returned {response.status_code}"
            )

        if not result.get("access_token"):
            raise ProviderError(self.name, f"{self.name} did not return an access token")

        return result

    async def fetch_profile(self, access_token: str) -> UpstreamProfile:
        """
        Fetch the user's profile with the upstream access token.

        Raises:
            ProviderError: On network failure, non-2xx status or malformed body
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.userinfo_url,
                    headers=self._profile_headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.warning("%s userinfo request failed: %s", self.name, type(e).__name__)
            raise ProviderError(self.name, f"{self.name} userinfo endpoint unreachable") from e

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning("%s userinfo returned %s", self.name, response.status_code)
            raise ProviderError(self.name, f"Failed to get user info from {self.name}")

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(self.name, f"{self.name} returned a malformed profile") from e

        if not isinstance(data, dict) or data.get("id") in (None, ""):
            raise ProviderError(self.name, f"{self.name} profile has no user id")

        return self._map_profile(data)


class GitHubProvider(FederationProvider):
    """GitHub OAuth App. The code exchange is a JSON POST."""

    name = "github"
    authorize_url = "https://github.com/login/oauth/authorize"
    token_url = "https://github.com/login/oauth/access_token"
    userinfo_url = "https://api.github.com/user"
    scopes = ["read:user", "user:email"]

    def _token_request(self, code: str, redirect_uri: str) -> dict[str, Any]:
        return {
            "json": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
            "headers": {"Accept": "application/json"},
        }

    def _profile_headers(self, access_token: str) -> dict[str, str]:
        headers = super()._profile_headers(access_token)
        # GitHub's API rejects requests without a User-Agent
        headers["User-Agent"] = "oauth-broker"
        return headers

    def _map_profile(self, data: dict[str, Any]) -> UpstreamProfile:
        return UpstreamProfile(
            provider=self.name,
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name") or data.get("login"),
            picture=data.get("avatar_url"),
        )


class GoogleProvider(FederationProvider):
    """Google OAuth 2.0. The code exchange is form-encoded."""

    name = "google"
    authorize_url = "https://accounts.google.com/o/oauth2/v2/auth"
    token_url = "https://oauth2.googleapis.com/token"
    userinfo_url = "https://www.googleapis.com/oauth2/v2/userinfo"
    scopes = ["openid", "email", "profile"]

    def _token_request(self, code: str, redirect_uri: str) -> dict[str, Any]:
        return {
            "data": {
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
        }

    def _map_profile(self, data: dict[str, Any]) -> UpstreamProfile:
        return UpstreamProfile(
            provider=self.name,
            id=str(data["id"]),
            email=data.get("email"),
            name=data.get("name"),
            picture=data.get("picture"),
        )


# Provider classes and the settings that hold their credentials
_PROVIDERS: dict[str, tuple[type[FederationProvider], str, str]] = {
    "github": (GitHubProvider, "GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET"),
    "google": (GoogleProvider, "GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_SECRET"),
}


def get_supported_providers() -> list[str]:
    """Names of all providers this server knows how to talk to."""
    return list(_PROVIDERS.keys())


def is_provider_configured(name: str, config: Settings | None = None) -> bool:
    """True if the provider is known and has both a client id and secret."""
    config = config or default_settings
    entry = _PROVIDERS.get(name)
    if entry is None:
        return False
    _, id_setting, secret_setting = entry
    return bool(getattr(config, id_setting) and getattr(config, secret_setting))


def get_unconfigured_providers(config: Settings | None = None) -> list[str]:
    return [name for name in _PROVIDERS if not is_provider_configured(name, config)]


def get_provider(name: str, config: Settings | None = None) -> FederationProvider:
    """
    Build the provider for a name from settings.

    Raises:
        ClientError: Unknown provider (404)
        ConfigurationError: Provider known but missing client id or secret
    """
    config = config or default_settings
    entry = _PROVIDERS.get(name)
    if entry is None:
        raise ClientError(f"Unknown provider: {name}", status_code=404)

    provider_class, id_setting, secret_setting = entry
    client_id = getattr(config, id_setting)
    client_secret = getattr(config, secret_setting)
    if not client_id or not client_secret:
        logger.error("%s login requested but %s/%s are not set", name, id_setting, secret_setting)
        raise ConfigurationError(
            f"{name} OAuth not configured. Please set {id_setting} and {secret_setting}."
        )

    return provider_class(
        client_id=client_id,
        client_secret=client_secret,
        redirect_uri=config.provider_callback_url(name),
        timeout=config.UPSTREAM_TIMEOUT_SECONDS,
    )
