import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ["SECRET_KEY"] = "change-me-in-production"
os.environ["API_URL"] = "http://backend.test/api/v1"

import asyncio
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rideway.main import app
from rideway.schemas.auth import (
    LoginCredentials,
    LoginResult,
    RefreshResult,
    Subject,
    TokenPair,
)
from rideway.services.auth_client import AuthRejectedError, InvalidCredentialsError
from rideway.services.client_session import SessionRegistry
from rideway.services.session_service import SessionManager
from rideway.services.token_store import TokenStore

TEST_PASSWORD = "correct-horse"


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class FakeAuthBackend:
    """In-memory auth backend with call counters and an optional refresh gate."""

    def __init__(self) -> None:
        self.user = Subject(id="user-1", username="rider", full_name="Test Rider", is_verified=True)
        self.login_calls = 0
        self.refresh_calls = 0
        self.refresh_tokens_seen: list[str] = []
        self.login_error: Optional[Exception] = None
        self.refresh_error: Optional[Exception] = None
        self.rotate_refresh_token = True
        self.login_delay: float = 0
        self.refresh_gate: Optional[asyncio.Event] = None

    async def login(self, credentials: LoginCredentials) -> LoginResult:
        self.login_calls += 1
        if self.login_delay:
            await asyncio.sleep(self.login_delay)
        if self.login_error is not None:
            raise self.login_error
        if credentials.password != TEST_PASSWORD:
            raise InvalidCredentialsError(
                "Invalid email or password", code="INVALID_CREDENTIALS", status_code=401
            )
        return LoginResult(
            user=self.user,
            tokens=TokenPair(access_token="access-0", refresh_token="refresh-0"),
        )

    async def refresh(self, refresh_token: str) -> RefreshResult:
        self.refresh_calls += 1
        self.refresh_tokens_seen.append(refresh_token)
        if self.refresh_gate is not None:
            await self.refresh_gate.wait()
        if self.refresh_error is not None:
            raise self.refresh_error
        n = self.refresh_calls
        return RefreshResult(
            access_token=f"access-{n}",
            refresh_token=f"refresh-{n}" if self.rotate_refresh_token else None,
        )


class FakePresenceChannel:
    """Presence channel double: handlers are stored and events fired by hand."""

    def __init__(self, online: Optional[list[str]] = None, connected: bool = True) -> None:
        self.connected = connected
        self.server_online: set[str] = set(online or [])
        self.handlers: dict[str, list] = {}
        self.bulk_calls: list[list[str]] = []
        self.bulk_error: Optional[Exception] = None
        self.bulk_gate: Optional[asyncio.Event] = None

    def on(self, event: str, handler) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler) -> None:
        if handler in self.handlers.get(event, []):
            self.handlers[event].remove(handler)

    def emit(self, event: str, payload: Any = None) -> None:
        for handler in list(self.handlers.get(event, [])):
            handler(payload)

    def subscribers(self, event: str) -> int:
        return len(self.handlers.get(event, []))

    async def get_online_users(self, user_ids: list[str]) -> list[str]:
        self.bulk_calls.append(list(user_ids))
        if self.bulk_gate is not None:
            await self.bulk_gate.wait()
        if self.bulk_error is not None:
            raise self.bulk_error
        return [user_id for user_id in user_ids if user_id in self.server_online]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def auth_backend() -> FakeAuthBackend:
    return FakeAuthBackend()


@pytest.fixture
def token_store() -> TokenStore:
    return TokenStore()


@pytest.fixture
def session_manager(auth_backend, token_store, clock) -> SessionManager:
    return SessionManager(auth_backend, token_store, clock=clock)


@pytest.fixture
def credentials() -> LoginCredentials:
    return LoginCredentials(email_or_phone="rider@example.com", password=TEST_PASSWORD)


@pytest_asyncio.fixture
async def logged_in(session_manager: SessionManager, credentials: LoginCredentials) -> SessionManager:
    await session_manager.login(credentials)
    return session_manager


@pytest.fixture
def presence_channel() -> FakePresenceChannel:
    return FakePresenceChannel(online=["peer-a", "peer-c"])


@pytest.fixture
def following() -> list[dict[str, Any]]:
    return [
        {"id": "peer-a", "username": "alice", "fullName": "Alice"},
        {"id": "peer-b", "username": "bob", "fullName": "Bob"},
        {"id": "peer-c", "username": "carol", "fullName": "Carol"},
    ]


@pytest.fixture
def api_requests() -> list[httpx.Request]:
    return []


@pytest.fixture
def api_transport(following, api_requests) -> httpx.MockTransport:
    """Backend REST API double serving the follow-list."""

    def handler(request: httpx.Request) -> httpx.Response:
        api_requests.append(request)
        if request.url.path.endswith("/following"):
            return httpx.Response(200, json={"success": True, "data": following})
        return httpx.Response(404, json={"success": False, "error": {"message": "Not found"}})

    return httpx.MockTransport(handler)


@pytest_asyncio.fixture(scope="function")
async def client(
    auth_backend, presence_channel, api_transport
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with an isolated session registry."""
    original = app.state.session_registry
    app.state.session_registry = SessionRegistry(
        backend_factory=lambda: auth_backend,
        channel_factory=lambda client_session: presence_channel,
        api_transport=api_transport,
    )

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.state.session_registry.clear()
    app.state.session_registry = original


@pytest.fixture
def login_payload() -> dict[str, str]:
    return {"emailOrPhone": "rider@example.com", "password": TEST_PASSWORD}


@pytest.fixture
def rejected_refresh() -> AuthRejectedError:
    return AuthRejectedError("Refresh token revoked", code="INVALID_TOKEN", status_code=401)
