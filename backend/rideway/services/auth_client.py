import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from rideway.config import get_settings
from rideway.schemas.auth import (
    BackendErrorBody,
    LoginCredentials,
    LoginResult,
    RefreshResult,
)

logger = logging.getLogger(__name__)
settings = get_settings()

LOGIN_PATH = "/auth/login"
REFRESH_PATH = "/auth/refresh"


class AuthBackendError(Exception):
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class AuthRejectedError(AuthBackendError):
    """The backend answered with a non-2xx status or success: false."""


class InvalidCredentialsError(AuthRejectedError):
    pass


class MalformedAuthResponseError(AuthBackendError):
    pass


class AuthNetworkError(AuthBackendError):
    retryable = True


class AuthTimeoutError(AuthNetworkError):
    pass


def _extract_error(body: Any) -> BackendErrorBody:
    if not isinstance(body, dict):
        return BackendErrorBody()
    error = body.get("error")
    if isinstance(error, dict):
        return BackendErrorBody.model_validate(error)
    if isinstance(error, str):
        return BackendErrorBody(message=error, code=body.get("code"))
    return BackendErrorBody(message=body.get("message"), code=body.get("code"))


def _unwrap(body: dict[str, Any]) -> dict[str, Any]:
    data = body.get("data", body)
    if not isinstance(data, dict):
        raise MalformedAuthResponseError("Auth response has no data object")
    tokens = data.get("tokens")
    if isinstance(tokens, dict):
        data = {**data, **tokens}
    return data


class AuthBackendClient:
    """HTTP client for the authentication backend's login and refresh calls."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.login_timeout
        self._transport = transport

    async def _post(self, path: str, payload: dict[str, Any], rejected: type[AuthRejectedError]) -> dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(f"{self.base_url}{path}", json=payload)
        except httpx.TimeoutException as e:
            raise AuthTimeoutError(f"Auth backend timed out on {path}", code="TIMEOUT") from e
        except httpx.HTTPError as e:
            raise AuthNetworkError(f"Could not reach auth backend: {e}", code="NETWORK_ERROR") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_success and isinstance(body, dict) and body.get("success") is not False:
            return body

        error = _extract_error(body)
        raise rejected(
            error.message or f"HTTP {response.status_code}",
            code=error.code,
            status_code=response.status_code,
        )

    async def login(self, credentials: LoginCredentials) -> LoginResult:
        """
        Exchange credentials for a user snapshot and a token pair.

        Raises:
            InvalidCredentialsError: backend rejected the login; message is
                the backend's own text
            AuthTimeoutError / AuthNetworkError: transport failure
            MalformedAuthResponseError: 2xx without a usable payload
        """
        body = await self._post(
            LOGIN_PATH,
            credentials.model_dump(by_alias=True),
            InvalidCredentialsError,
        )
        try:
            data = _unwrap(body)
            return LoginResult.model_validate({"user": data.get("user"), "tokens": data})
        except ValidationError as e:
            raise MalformedAuthResponseError(f"Invalid login response: {e}") from None

    async def refresh(self, refresh_token: str) -> RefreshResult:
        body = await self._post(REFRESH_PATH, {"refreshToken": refresh_token}, AuthRejectedError)
        try:
            return RefreshResult.model_validate(_unwrap(body))
        except ValidationError as e:
            raise MalformedAuthResponseError(f"Invalid refresh response: {e}") from None
