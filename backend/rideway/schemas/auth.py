import enum
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for payloads exchanged with the backend API (camelCase on the wire)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class SessionState(enum.StrEnum):
    unauthenticated = "unauthenticated"
    authenticating = "authenticating"
    authenticated = "authenticated"
    refreshing = "refreshing"
    error = "error"


class SessionError(enum.StrEnum):
    refresh_failed = "refresh-failed"


class TokenPair(CamelModel):
    model_config = ConfigDict(frozen=True)

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)


class Subject(CamelModel):
    """Denormalized snapshot of the signed-in user."""

    id: str
    email: str | None = None
    phone: str | None = None
    username: str | None = None
    full_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    cover_url: str | None = None
    location: str | None = None
    role: str | None = None
    is_verified: bool = False
    followers_count: int | None = None
    following_count: int | None = None
    posts_count: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SubjectUpdate(CamelModel):
    # id is intentionally absent: identity never changes through a sync
    email: str | None = None
    phone: str | None = None
    username: str | None = None
    full_name: str | None = None
    bio: str | None = None
    avatar_url: str | None = None
    cover_url: str | None = None
    location: str | None = None
    role: str | None = None
    is_verified: bool | None = None
    followers_count: int | None = None
    following_count: int | None = None
    posts_count: int | None = None
    updated_at: datetime | None = None


class SessionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    subject: Subject
    tokens: TokenPair
    access_token_expiry: datetime
    error: SessionError | None = None

    @property
    def access_token(self) -> str:
        return self.tokens.access_token

    @property
    def refresh_token(self) -> str:
        return self.tokens.refresh_token


class LoginCredentials(CamelModel):
    email_or_phone: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


# Auth backend responses. The backend either returns the flat form
# {user, accessToken, refreshToken} or wraps it as
# {success, data: {user, tokens: {accessToken, refreshToken}}}.


class LoginResult(CamelModel):
    user: Subject
    tokens: TokenPair


class RefreshResult(CamelModel):
    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None


class BackendErrorBody(CamelModel):
    code: str | None = None
    message: str | None = None
