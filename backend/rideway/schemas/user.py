from datetime import datetime

from pydantic import ConfigDict

from rideway.schemas.auth import CamelModel, SessionError, SessionState, Subject


class PeerCard(CamelModel):
    id: str
    username: str | None = None
    full_name: str | None = None
    avatar_url: str | None = None
    bio: str | None = None
    is_following: bool | None = None


class SessionResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    state: SessionState
    user: Subject | None = None
    access_token_expires_at: datetime | None = None
    error: SessionError | None = None


class TokenLoginRequest(CamelModel):
    """Token-based sign-in after OTP verification."""

    access_token: str
    refresh_token: str
    user: Subject


class NavigationDecisionResponse(CamelModel):
    path: str
    route_class: str
    allowed: bool
    redirect_to: str | None = None


class OnlinePeersResponse(CamelModel):
    active: bool
    unavailable: bool
    online: list[str]
    watching: int
