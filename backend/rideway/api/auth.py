import logging

from fastapi import APIRouter, HTTPException, Response, status

from rideway.schemas.auth import LoginCredentials, SubjectUpdate, TokenPair
from rideway.schemas.user import SessionResponse, TokenLoginRequest
from rideway.services.auth_client import (
    AuthBackendError,
    AuthNetworkError,
    AuthTimeoutError,
    InvalidCredentialsError,
)
from rideway.services.client_session import ClientSession
from rideway.utils.auth import (
    SESSION_EXPIRED_DETAIL,
    AuthenticatedClient,
    CurrentClient,
)
from rideway.utils.errors import describe_auth_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


def _session_response(client: ClientSession) -> SessionResponse:
    record = client.session.record
    return SessionResponse(
        state=client.session.state,
        user=record.subject if record else None,
        access_token_expires_at=record.access_token_expiry if record else None,
        error=record.error if record else None,
    )


@router.post("/login", response_model=SessionResponse)
async def login(credentials: LoginCredentials, client: CurrentClient) -> SessionResponse:
    try:
        await client.session.login(credentials)
    except InvalidCredentialsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=describe_auth_error(e),
        ) from None
    except AuthTimeoutError as e:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=describe_auth_error(e),
        ) from None
    except AuthNetworkError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=describe_auth_error(e),
        ) from None
    except AuthBackendError as e:
        logger.error("Login failed with unexpected backend response: %s", e)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=describe_auth_error(e),
        ) from None

    await client.start_presence()
    return _session_response(client)


@router.post("/login/token", response_model=SessionResponse)
async def login_with_tokens(data: TokenLoginRequest, client: CurrentClient) -> SessionResponse:
    client.session.login_with_tokens(
        data.user,
        TokenPair(access_token=data.access_token, refresh_token=data.refresh_token),
    )
    await client.start_presence()
    return _session_response(client)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(client: CurrentClient) -> Response:
    client.logout()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/session", response_model=SessionResponse)
async def get_session(client: CurrentClient) -> SessionResponse:
    await client.session.ensure_fresh()
    if client.session.session_error:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=SESSION_EXPIRED_DETAIL,
        )
    return _session_response(client)


@router.patch("/session/subject", response_model=SessionResponse)
async def sync_subject(data: SubjectUpdate, client: AuthenticatedClient) -> SessionResponse:
    client.session.sync_subject(data)
    return _session_response(client)
