import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, Response, status
from jose import JWTError, jwt

from rideway.config import get_settings
from rideway.schemas.auth import SessionState
from rideway.services.client_session import ClientSession, SessionRegistry

logger = logging.getLogger(__name__)
settings = get_settings()

SESSION_EXPIRED_DETAIL = "session_expired"


def create_session_token(session_id: str, expires_delta: timedelta | None = None) -> str:
    """Sign the BFF session id for the browser cookie."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(seconds=settings.session_max_age))
    to_encode = {
        "sub": session_id,
        "exp": expire,
        "iat": now,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm="HS256")


def decode_session_token(token: str) -> Optional[str]:
    """Return the session id from a signed cookie, or None if invalid or expired."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            options={"verify_exp": True},
        )
    except JWTError as e:
        logger.debug("Rejected session cookie: %s", e)
        return None
    return payload.get("sub")


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.session_registry


def lookup_client_session(request: Request) -> Optional[ClientSession]:
    """Existing client session for this request, without creating one."""
    cookie = request.cookies.get(settings.session_cookie_name)
    if not cookie:
        return None
    session_id = decode_session_token(cookie)
    return get_session_registry(request).get(session_id)


def set_session_cookie(response: Response, client: ClientSession) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        create_session_token(client.id),
        max_age=settings.session_max_age,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


async def get_client_session(request: Request, response: Response) -> ClientSession:
    """Client session for the request; a new one is created and cookied if missing."""
    client = lookup_client_session(request)
    if client is None:
        client = get_session_registry(request).create()
        set_session_cookie(response, client)
    return client


async def get_authenticated_session(
    client: Annotated[ClientSession, Depends(get_client_session)],
) -> ClientSession:
    """
    Client session with a usable, fresh token pair.

    Staleness is resolved here, before the handler touches the token store.
    A refresh failure answers 401 with detail "session_expired" so the
    frontend can tell it apart from a first visit.
    """
    state = await client.session.ensure_fresh()
    if state == SessionState.error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=SESSION_EXPIRED_DETAIL,
        )
    if not client.session.is_usable:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return client


# Type aliases for dependency injection
CurrentClient = Annotated[ClientSession, Depends(get_client_session)]
AuthenticatedClient = Annotated[ClientSession, Depends(get_authenticated_session)]
