"""
Tests for federation login and session endpoints (/auth/*).

Test values are set in conftest.py:
- GITHUB_CLIENT_ID=test-github-client-id
- GOOGLE_CLIENT_ID=test-google-client-id
- SESSION_REDIRECT_URL=http://localhost:3000/
"""

from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlparse

from fastapi.testclient import TestClient
from sqlmodel import Session, select

from broker.core.config import settings
from broker.models import FederatedIdentity, StoreEntry


def _state_from(location: str) -> str:
    return parse_qs(urlparse(location).query)["state"][0]


def _mock_github(mock_client, *, token_json=None, profile_json=None) -> AsyncMock:
    token_response = MagicMock()
    token_response.status_code = 200
    token_response.json.return_value = token_json or {"access_token": "gho_upstream"}
    profile_response = MagicMock()
    profile_response.status_code = 200
    profile_response.json.return_value = profile_json or {
        "id": 583231,
        "login": "octocat",
        "name": "The Octocat",
        "email": "octocat@example.com",
        "avatar_url": "https://avatars.example.com/u/583231",
    }

    mock_instance = AsyncMock()
    mock_instance.post.return_value = token_response
    mock_instance.get.return_value = profile_response
    mock_instance.__aenter__.return_value = mock_instance
    mock_instance.__aexit__.return_value = None
    mock_client.return_value = mock_instance
    return mock_instance


def _login(client: TestClient) -> tuple[str, object]:
    start = client.get("/auth/github")
    state = _state_from(start.headers["location"])
    with patch("httpx.AsyncClient") as mock_client:
        _mock_github(mock_client)
        callback = client.get("/auth/github/callback", params={"code": "upstream-code", "state": state})
    session_id = parse_qs(urlparse(callback.headers["location"]).query)["session"][0]
    return session_id, callback


class TestProviders:
    """Tests for GET /auth/providers"""

    def test_lists_providers(self, client: TestClient):
        response = client.get("/auth/providers")

        assert response.status_code == 200
        providers = {p["name"]: p for p in response.json()["providers"]}
        assert set(providers) == {"github", "google"}
        assert providers["github"]["configured"] is True
        assert providers["github"]["login_url"] == "http://localhost:8000/auth/github"
        assert "test-github-client-secret" not in response.text


class TestStartLogin:
    """Tests for GET /auth/{provider}"""

    def test_redirects_to_github(self, client: TestClient, session: Session):
        response = client.get("/auth/github")

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://github.com/login/oauth/authorize?")
        assert len(session.exec(select(StoreEntry)).all()) == 1

    def test_redirects_to_google(self, client: TestClient):
        response = client.get("/auth/google")

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")

    def test_unknown_provider(self, client: TestClient):
        response = client.get("/auth/myspace")

        assert response.status_code == 404
        assert "location" not in response.headers

    def test_unconfigured_provider_is_500(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(settings, "GOOGLE_CLIENT_SECRET", None)

        response = client.get("/auth/google")

        assert response.status_code == 500
        assert "GOOGLE_CLIENT_SECRET" in response.text

    def test_api_alias(self, client: TestClient):
        response = client.get("/api/auth/github")

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://github.com/")


class TestCallback:
    """Tests for GET /auth/{provider}/callback"""

    def test_successful_login(self, client: TestClient, session: Session):
        session_id, callback = _login(client)

        assert callback.status_code == 302
        assert callback.headers["location"].startswith(settings.SESSION_REDIRECT_URL)
        assert "gho_upstream" not in callback.headers["location"]
        cookie = callback.headers["set-cookie"]
        assert cookie.startswith(f"broker_session={session_id}")
        assert "HttpOnly" in cookie
        identity = session.exec(select(FederatedIdentity)).one()
        assert identity.provider_user_id == "583231"

    def test_unknown_state_is_400_and_creates_no_session(self, client: TestClient, session: Session):
        with patch("httpx.AsyncClient") as mock_client:
            instance = _mock_github(mock_client)

            response = client.get(
                "/auth/github/callback",
                params={"code": "upstream-code", "state": "not-a-state-we-issued"},
            )

            instance.post.assert_not_called()

        assert response.status_code == 400
        assert response.text == "Invalid state"
        assert "set-cookie" not in response.headers
        assert session.exec(select(StoreEntry)).all() == []
        assert session.exec(select(FederatedIdentity)).all() == []

    def test_replayed_callback_is_rejected(self, client: TestClient):
        start = client.get("/auth/github")
        params = {"code": "upstream-code", "state": _state_from(start.headers["location"])}

        with patch("httpx.AsyncClient") as mock_client:
            _mock_github(mock_client)
            first = client.get("/auth/github/callback", params=params)
            replay = client.get("/auth/github/callback", params=params)

        assert first.status_code == 302
        assert replay.status_code == 400
        assert replay.text == "Invalid state"

    def test_expired_state(self, client: TestClient, clock):
        start = client.get("/auth/github")
        clock.advance(settings.STATE_TTL_SECONDS + 1)

        response = client.get(
            "/auth/github/callback",
            params={"code": "upstream-code", "state": _state_from(start.headers["location"])},
        )

        assert response.status_code == 400

    def test_user_denied_consent(self, client: TestClient):
        start = client.get("/auth/github")

        response = client.get(
            "/auth/github/callback",
            params={
                "error": "access_denied",
                "error_description": "The user has denied your application access.",
                "state": _state_from(start.headers["location"]),
            },
        )

        assert response.status_code == 502
        assert "denied your application access" in response.text

    def test_upstream_rejects_code(self, client: TestClient, session: Session):
        start = client.get("/auth/github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_github(
                mock_client,
                token_json={"error": "bad_verification_code", "error_description": "The code passed is incorrect or expired."},
            )
            response = client.get(
                "/auth/github/callback",
                params={"code": "stale", "state": _state_from(start.headers["location"])},
            )

        assert response.status_code == 502
        assert "incorrect or expired" in response.text
        assert session.exec(select(FederatedIdentity)).all() == []

    def test_api_alias_callback(self, client: TestClient):
        start = client.get("/api/auth/github")

        with patch("httpx.AsyncClient") as mock_client:
            _mock_github(mock_client)
            response = client.get(
                "/api/auth/github/callback",
                params={"code": "upstream-code", "state": _state_from(start.headers["location"])},
            )

        assert response.status_code == 302


class TestSession:
    """Tests for /auth/session/{session_id}"""

    def test_read_session(self, client: TestClient):
        session_id, _ = _login(client)

        response = client.get(f"/auth/session/{session_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["active"] is True
        assert data["provider"] == "github"
        assert data["token_type"] == "Bearer"
        assert data["profile"]["name"] == "The Octocat"
        assert "gho_upstream" not in response.text
        assert response.headers["cache-control"] == "no-store"

        introspection = client.post("/oauth/introspect", data={"token": data["access_token"]}).json()
        assert introspection["active"] is True
        assert introspection["sub"] == data["subject"]

    def test_unknown_session(self, client: TestClient):
        response = client.get("/auth/session/does-not-exist")

        assert response.status_code == 404

    def test_session_identifier_introspects_active(self, client: TestClient):
        session_id, _ = _login(client)

        data = client.post("/oauth/introspect", data={"token": session_id}).json()

        assert data["active"] is True
        assert data["token_type"] == "session"

    def test_logout(self, client: TestClient):
        session_id, _ = _login(client)
        access_token = client.get(f"/auth/session/{session_id}").json()["access_token"]

        response = client.delete(f"/auth/session/{session_id}")

        assert response.status_code == 204
        assert client.get(f"/auth/session/{session_id}").status_code == 404
        assert client.post("/oauth/introspect", data={"token": access_token}).json() == {"active": False}
        assert client.delete(f"/auth/session/{session_id}").status_code == 204

    def test_revoking_session_identifier(self, client: TestClient):
        session_id, _ = _login(client)

        assert client.post("/oauth/revoke", data={"token": session_id}).status_code == 200
        assert client.get(f"/auth/session/{session_id}").status_code == 404
