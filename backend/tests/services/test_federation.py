"""
Tests for the federation providers.

Test values are set in conftest.py:
- GITHUB_CLIENT_ID=test-github-client-id
- GOOGLE_CLIENT_ID=test-google-client-id

Upstream HTTP is mocked by patching httpx.AsyncClient.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from broker.core.config import Settings
from broker.core.errors import ClientError, ConfigurationError, ProviderError
from broker.services.federation import (
    GitHubProvider,
    GoogleProvider,
    get_provider,
    get_supported_providers,
    get_unconfigured_providers,
    is_provider_configured,
)


def _response(status_code: int = 200, json_data=None, json_error: bool = False) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = json_data
    return response


def _mock_client(mock_client, *, post=None, get=None) -> AsyncMock:
    mock_instance = AsyncMock()
    if post is not None:
        mock_instance.post.return_value = post
    if get is not None:
        mock_instance.get.return_value = get
    mock_instance.__aenter__.return_value = mock_instance
    mock_instance.__aexit__.return_value = None
    mock_client.return_value = mock_instance
    return mock_instance


class TestProviderRegistry:
    """Tests for get_provider and friends."""

    def test_supported_providers(self):
        assert get_supported_providers() == ["github", "google"]

    def test_builds_configured_provider(self):
        provider = get_provider("github")

        assert isinstance(provider, GitHubProvider)
        assert provider.client_id == "test-github-client-id"
        assert provider.redirect_uri == "http://localhost:8000/auth/github/callback"
        assert provider.timeout <= 10

    def test_unknown_provider_is_404(self):
        with pytest.raises(ClientError) as exc_info:
            get_provider("myspace")
        assert exc_info.value.status_code == 404

    def test_unconfigured_provider_fails_loudly(self):
        config = Settings()
        config.GOOGLE_CLIENT_SECRET = None

        assert is_provider_configured("google", config) is False
        assert "google" in get_unconfigured_providers(config)
        with pytest.raises(ConfigurationError) as exc_info:
            get_provider("google", config)
        assert exc_info.value.status_code == 500


class TestAuthorizationUrl:
    """Tests for build_authorization_url."""

    def test_github_url(self):
        url = get_provider("github").build_authorization_url("state-123")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://github.com/login/oauth/authorize"
        assert params["client_id"] == ["test-github-client-id"]
        assert params["state"] == ["state-123"]
        assert params["scope"] == ["read:user user:email"]
        assert params["redirect_uri"] == ["http://localhost:8000/auth/github/callback"]

    def test_google_url(self):
        url = get_provider("google").build_authorization_url("state-456")
        params = parse_qs(urlparse(url).query)

        assert url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert params["scope"] == ["openid email profile"]
        assert params["response_type"] == ["code"]


class TestGitHubExchange:
    """Tests for GitHub code exchange and profile."""

    @pytest.mark.asyncio
    async def test_exchange_posts_json(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(
                mock_client,
                post=_response(json_data={"access_token": "gho_abc", "token_type": "bearer"}),
            )

            tokens = await provider.exchange_code("upstream-code")

            assert tokens["access_token"] == "gho_abc"
            call = instance.post.call_args
            assert call.args[0] == "https://github.com/login/oauth/access_token"
            assert call.kwargs["json"]["code"] == "upstream-code"
            assert call.kwargs["json"]["client_secret"] == "test-github-client-secret"
            assert call.kwargs["headers"]["Accept"] == "application/json"
            mock_client.assert_called_once_with(timeout=provider.timeout)

    @pytest.mark.asyncio
    async def test_error_field_with_200_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(
                mock_client,
                post=_response(
                    json_data={
                        "error": "bad_verification_code",
                        "error_description": "The code passed is incorrect or expired.",
                    }
                ),
            )

            with pytest.raises(ProviderError) as exc_info:
                await provider.exchange_code("stale-code")

        assert exc_info.value.upstream_error == "bad_verification_code"
        assert exc_info.value.description == "github OAuth error: The code passed is incorrect or expired."
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_network_failure_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(mock_client)
            instance.post.side_effect = httpx.ConnectTimeout("timed out")

            with pytest.raises(ProviderError):
                await provider.exchange_code("code")

    @pytest.mark.asyncio
    async def test_non_json_body_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post=_response(status_code=502, json_error=True))

            with pytest.raises(ProviderError):
                await provider.exchange_code("code")

    @pytest.mark.asyncio
    async def test_missing_access_token_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, post=_response(json_data={"token_type": "bearer"}))

            with pytest.raises(ProviderError):
                await provider.exchange_code("code")

    @pytest.mark.asyncio
    async def test_profile_mapping(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(
                mock_client,
                get=_response(
                    json_data={
                        "id": 583231,
                        "login": "octocat",
                        "name": None,
                        "email": "octocat@example.com",
                        "avatar_url": "https://avatars.example.com/u/583231",
                    }
                ),
            )

            profile = await provider.fetch_profile("gho_abc")

            headers = instance.get.call_args.kwargs["headers"]
            assert headers["Authorization"] == "Bearer gho_abc"
            assert headers["User-Agent"]

        assert profile.provider == "github"
        assert profile.id == "583231"
        assert profile.name == "octocat"
        assert profile.picture == "https://avatars.example.com/u/583231"

    @pytest.mark.asyncio
    async def test_profile_non_2xx_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=_response(status_code=401, json_data={"message": "Bad credentials"}))

            with pytest.raises(ProviderError):
                await provider.fetch_profile("revoked-token")

    @pytest.mark.asyncio
    async def test_profile_without_id_is_provider_error(self):
        provider = get_provider("github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(mock_client, get=_response(json_data={"login": "ghost"}))

            with pytest.raises(ProviderError):
                await provider.fetch_profile("gho_abc")


class TestGoogleExchange:
    """Tests for Google code exchange and profile."""

    @pytest.mark.asyncio
    async def test_exchange_is_form_encoded(self):
        provider = get_provider("google")

        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_client(
                mock_client,
                post=_response(json_data={"access_token": "ya29.abc", "expires_in": 3599}),
            )

            tokens = await provider.exchange_code("google-code")

            assert tokens["access_token"] == "ya29.abc"
            call = instance.post.call_args
            assert call.args[0] == "https://oauth2.googleapis.com/token"
            assert "json" not in call.kwargs
            assert call.kwargs["data"]["grant_type"] == "authorization_code"
            assert call.kwargs["data"]["redirect_uri"] == "http://localhost:8000/auth/google/callback"

    @pytest.mark.asyncio
    async def test_error_status_is_provider_error(self):
        provider = get_provider("google")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(
                mock_client,
                post=_response(status_code=400, json_data={"error": "invalid_grant"}),
            )

            with pytest.raises(ProviderError) as exc_info:
                await provider.exchange_code("used-code")

        assert exc_info.value.upstream_error == "invalid_grant"

    @pytest.mark.asyncio
    async def test_profile_mapping(self):
        provider = get_provider("google")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_client(
                mock_client,
                get=_response(
                    json_data={
                        "id": "1077",
                        "email": "user@example.com",
                        "name": "Test User",
                        "picture": "https://lh3.example.com/photo.jpg",
                    }
                ),
            )

            profile = await provider.fetch_profile("ya29.abc")

        assert isinstance(provider, GoogleProvider)
        assert profile.id == "1077"
        assert profile.email == "user@example.com"
        assert profile.picture == "https://lh3.example.com/photo.jpg"
