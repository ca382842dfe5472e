from datetime import timedelta

import pytest
from httpx import AsyncClient

from rideway.config import get_settings
from rideway.main import app
from rideway.services.auth_client import AuthTimeoutError
from rideway.services.presence_service import PresenceChannelUnavailableError
from rideway.utils.auth import create_session_token, decode_session_token

settings = get_settings()


def _client_session(client: AsyncClient):
    session_id = decode_session_token(client.cookies[settings.session_cookie_name])
    return app.state.session_registry.get(session_id)


class TestSessionCookie:
    """Tests for the signed BFF session cookie."""

    def test_round_trip(self):
        token = create_session_token("abc")
        assert decode_session_token(token) == "abc"

    def test_expired_cookie_rejected(self):
        token = create_session_token("abc", expires_delta=timedelta(hours=-1))
        assert decode_session_token(token) is None

    def test_garbage_rejected(self):
        assert decode_session_token("not-a-jwt") is None


class TestLogin:
    """Tests for the login endpoints."""

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, login_payload):
        """Test that login establishes a session and sets the cookie."""
        response = await client.post("/api/v1/auth/login", json=login_payload)

        assert response.status_code == 200
        data = response.json()
        assert data["state"] == "authenticated"
        assert data["user"]["id"] == "user-1"
        assert data["error"] is None
        assert settings.session_cookie_name in client.cookies

    @pytest.mark.asyncio
    async def test_login_starts_presence(self, client: AsyncClient, login_payload, api_requests):
        """Test that login loads the follow-list and seeds presence."""
        await client.post("/api/v1/auth/login", json=login_payload)

        assert api_requests[0].url.path == "/api/v1/users/user-1/following"
        assert api_requests[0].headers["Authorization"] == "Bearer access-0"

        response = await client.get("/api/v1/presence/online")
        assert response.status_code == 200
        assert response.json() == {
            "active": True,
            "unavailable": False,
            "online": ["peer-a", "peer-c"],
            "watching": 3,
        }

    @pytest.mark.asyncio
    async def test_malformed_follow_list_does_not_fail_login(
        self, client: AsyncClient, login_payload, following
    ):
        """Test that a follow-list entry without an id degrades presence only."""
        following[:] = [{"username": "no-id"}]

        response = await client.post("/api/v1/auth/login", json=login_payload)

        assert response.status_code == 200
        assert response.json()["state"] == "authenticated"

        presence = await client.get("/api/v1/presence/online")
        assert presence.status_code == 200
        assert presence.json()["unavailable"] is True
        assert presence.json()["online"] == []

    @pytest.mark.asyncio
    async def test_channel_failure_does_not_fail_login(self, client: AsyncClient, login_payload):
        """Test that a presence channel that cannot be opened degrades presence only."""

        def unavailable_channel(client_session):
            raise PresenceChannelUnavailableError("socket down")

        app.state.session_registry.channel_factory = unavailable_channel

        response = await client.post("/api/v1/auth/login", json=login_payload)

        assert response.status_code == 200
        assert response.json()["state"] == "authenticated"

        presence = await client.get("/api/v1/presence/online")
        assert presence.status_code == 200
        assert presence.json() == {
            "active": False,
            "unavailable": True,
            "online": [],
            "watching": 0,
        }

    @pytest.mark.asyncio
    async def test_login_invalid_credentials(self, client: AsyncClient):
        """Test that the backend's rejection message reaches the caller."""
        response = await client.post(
            "/api/v1/auth/login",
            json={"emailOrPhone": "rider@example.com", "password": "wrong"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid email or password"

    @pytest.mark.asyncio
    async def test_login_timeout_is_retryable(self, client: AsyncClient, auth_backend, login_payload):
        auth_backend.login_error = AuthTimeoutError("timed out")

        response = await client.post("/api/v1/auth/login", json=login_payload)

        assert response.status_code == 504
        assert response.json()["detail"] == "The request timed out. Please try again."

    @pytest.mark.asyncio
    async def test_login_missing_fields(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/login", json={"emailOrPhone": "x"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_token_login(self, client: AsyncClient):
        """Test establishing a session from tokens issued after OTP verification."""
        response = await client.post(
            "/api/v1/auth/login/token",
            json={
                "accessToken": "otp-access",
                "refreshToken": "otp-refresh",
                "user": {"id": "user-7", "fullName": "Verified Rider"},
            },
        )

        assert response.status_code == 200
        assert response.json()["user"]["fullName"] == "Verified Rider"
        assert _client_session(client).token_store.access_token == "otp-access"


class TestSessionEndpoints:
    """Tests for reading, syncing and ending the session."""

    @pytest.mark.asyncio
    async def test_session_without_login(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/session")

        assert response.status_code == 200
        assert response.json()["state"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_sync_subject(self, client: AsyncClient, login_payload):
        """Test that a subject sync changes only the given field."""
        await client.post("/api/v1/auth/login", json=login_payload)
        before = _client_session(client).session.record

        response = await client.patch("/api/v1/auth/session/subject", json={"fullName": "X"})

        assert response.status_code == 200
        assert response.json()["user"]["fullName"] == "X"
        after = _client_session(client).session.record
        assert after.tokens == before.tokens
        assert after.access_token_expiry == before.access_token_expiry

    @pytest.mark.asyncio
    async def test_sync_subject_requires_session(self, client: AsyncClient):
        response = await client.patch("/api/v1/auth/session/subject", json={"fullName": "X"})
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_refresh_failure_reports_session_expired(
        self, client: AsyncClient, auth_backend, login_payload, rejected_refresh
    ):
        """Test that a failed refresh answers 401 session_expired."""
        await client.post("/api/v1/auth/login", json=login_payload)
        auth_backend.refresh_error = rejected_refresh
        session = _client_session(client).session
        session._record = session.record.model_copy(
            update={"access_token_expiry": session.record.access_token_expiry - timedelta(hours=1)}
        )

        response = await client.get("/api/v1/auth/session")

        assert response.status_code == 401
        assert response.json()["detail"] == "session_expired"
        presence = await client.get("/api/v1/presence/online")
        assert presence.status_code == 401

    @pytest.mark.asyncio
    async def test_logout(self, client: AsyncClient, login_payload):
        """Test that logout clears the token store and presence."""
        await client.post("/api/v1/auth/login", json=login_payload)
        client_session = _client_session(client)

        response = await client.post("/api/v1/auth/logout")

        assert response.status_code == 204
        assert client_session.token_store.get() is None
        assert client_session.presence.online == frozenset()
        session = await client.get("/api/v1/auth/session")
        assert session.json()["state"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, client: AsyncClient):
        assert (await client.post("/api/v1/auth/logout")).status_code == 204
        assert (await client.post("/api/v1/auth/logout")).status_code == 204


class TestRouteGate:
    """Tests for navigation gating over HTTP."""

    @pytest.mark.asyncio
    async def test_protected_page_redirects_to_login(self, client: AsyncClient):
        response = await client.get("/settings/profile")

        assert response.status_code == 307
        assert response.headers["location"] == "/login?callbackUrl=%2Fsettings%2Fprofile"

    @pytest.mark.asyncio
    async def test_guest_page_redirects_signed_in_user(self, client: AsyncClient, login_payload):
        await client.post("/api/v1/auth/login", json=login_payload)

        response = await client.get("/login")

        assert response.status_code == 307
        assert response.headers["location"] == "/"

    @pytest.mark.asyncio
    async def test_protected_page_allowed_when_signed_in(self, client: AsyncClient, login_payload):
        """Test that the gate lets the navigation through (no page is served here)."""
        await client.post("/api/v1/auth/login", json=login_payload)

        response = await client.get("/messages")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_decision_endpoint(self, client: AsyncClient):
        response = await client.get("/api/v1/navigation/decision", params={"path": "/forum/create"})

        assert response.status_code == 200
        assert response.json() == {
            "path": "/forum/create",
            "routeClass": "protected",
            "allowed": False,
            "redirectTo": "/login?callbackUrl=%2Fforum%2Fcreate",
        }
