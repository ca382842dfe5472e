"""Service layer: session lifecycle, token store, presence and backend clients."""

from rideway.services.api_client import ApiClient
from rideway.services.auth_client import AuthBackendClient
from rideway.services.client_session import ClientSession, SessionRegistry, get_session_registry
from rideway.services.presence_service import PresenceReconciler
from rideway.services.session_service import SessionManager
from rideway.services.token_store import TokenStore
from rideway.services.user_service import UserService

__all__ = [
    "ApiClient",
    "AuthBackendClient",
    "ClientSession",
    "SessionRegistry",
    "get_session_registry",
    "PresenceReconciler",
    "SessionManager",
    "TokenStore",
    "UserService",
]
