import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from rideway.config import get_settings
from rideway.schemas.auth import SessionState
from rideway.services.api_client import ApiClient, ApiError, NotAuthenticatedError
from rideway.services.auth_client import AuthBackendClient
from rideway.services.presence_service import PresenceChannel, PresenceReconciler
from rideway.services.session_service import AuthBackend, SessionManager
from rideway.services.token_store import TokenStore
from rideway.services.user_service import UserService

logger = logging.getLogger(__name__)
settings = get_settings()

ChannelFactory = Callable[["ClientSession"], Optional[PresenceChannel]]


class ClientSession:
    """
    Session, token store, outbound API and presence for one browser session.

    Logout tears the pieces down in reverse order of activation: presence
    first, then the session record and token store.
    """

    def __init__(
        self,
        session_id: str,
        backend: AuthBackend,
        channel_factory: Optional[ChannelFactory] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.id = session_id
        self.token_store = TokenStore()
        self.session = SessionManager(backend, self.token_store)
        self.api = ApiClient(self.session, self.token_store, transport=api_transport)
        self.users = UserService(self.api)
        self.presence: Optional[PresenceReconciler] = None
        self._channel_factory = channel_factory
        self.last_seen = datetime.now(timezone.utc)
        self.session.subscribe(self._on_state_change)

    def touch(self) -> None:
        self.last_seen = datetime.now(timezone.utc)

    def _on_state_change(self, previous: SessionState, current: SessionState) -> None:
        if current in (SessionState.unauthenticated, SessionState.error) and self.presence:
            self.presence.close()

    async def start_presence(self) -> bool:
        """Load the watch list and activate presence; degrades quietly on failure."""
        record = self.session.record
        if record is None:
            return False

        if self.presence is None:
            try:
                channel = self._channel_factory(self) if self._channel_factory else None
            except Exception as e:
                logger.warning(f"Presence channel unavailable: {e}")
                return False
            if channel is None:
                logger.info("No presence channel configured; online indicators disabled")
                return False
            self.presence = PresenceReconciler(channel, self.session)

        try:
            watch_list = await self.users.get_watch_list(record.subject.id)
        except NotAuthenticatedError:
            return False
        except ApiError as e:
            logger.warning(f"Could not load watch list for presence: {e}")
            self.presence.mark_unavailable()
            return False

        self.presence.attach()
        return await self.presence.activate(watch_list)

    def logout(self) -> None:
        if self.presence:
            self.presence.close()
        self.session.logout()


class SessionRegistry:
    """In-memory store of client sessions keyed by the BFF session cookie id."""

    def __init__(
        self,
        backend_factory: Callable[[], AuthBackend] = AuthBackendClient,
        channel_factory: Optional[ChannelFactory] = None,
        api_transport: Optional[httpx.AsyncBaseTransport] = None,
        max_idle: Optional[timedelta] = None,
    ):
        self._sessions: dict[str, ClientSession] = {}
        self._backend_factory = backend_factory
        self.channel_factory = channel_factory
        self._api_transport = api_transport
        self._max_idle = max_idle or timedelta(seconds=settings.session_max_age)

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> ClientSession:
        self._cleanup_expired()
        session_id = str(uuid.uuid4())
        client = ClientSession(
            session_id,
            self._backend_factory(),
            channel_factory=self.channel_factory,
            api_transport=self._api_transport,
        )
        self._sessions[session_id] = client
        return client

    def get(self, session_id: Optional[str]) -> Optional[ClientSession]:
        if not session_id:
            return None
        client = self._sessions.get(session_id)
        if client is None:
            return None
        if datetime.now(timezone.utc) - client.last_seen >= self._max_idle:
            self.discard(session_id)
            return None
        client.touch()
        return client

    def discard(self, session_id: str) -> None:
        client = self._sessions.pop(session_id, None)
        if client is not None:
            client.logout()

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.discard(session_id)

    def _cleanup_expired(self) -> None:
        now = datetime.now(timezone.utc)
        expired = [
            key for key, client in self._sessions.items() if now - client.last_seen >= self._max_idle
        ]
        for key in expired:
            self.discard(key)


# Singleton instance
_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get or create the process-wide session registry."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry()
    return _registry
