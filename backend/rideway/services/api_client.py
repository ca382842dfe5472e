import logging
from typing import Any, Optional

import httpx

from rideway.config import get_settings
from rideway.services.session_service import SessionManager
from rideway.services.token_store import TokenStore

logger = logging.getLogger(__name__)
settings = get_settings()


class NotAuthenticatedError(Exception):
    def __init__(self, expired: bool = False):
        super().__init__("Session expired" if expired else "Not authenticated")
        self.expired = expired


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class ApiClient:
    """
    Signed REST calls to the backend API.

    Every request resolves token staleness first and only then reads the
    token store, so a call never goes out with a pair that an in-flight
    refresh is about to replace.
    """

    def __init__(
        self,
        session: SessionManager,
        token_store: TokenStore,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session = session
        self._token_store = token_store
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.api_timeout
        self._transport = transport

    async def _authorization(self) -> dict[str, str]:
        await self._session.ensure_fresh()
        if not self._session.is_usable:
            raise NotAuthenticatedError(expired=self._session.session_error)
        access_token = self._token_store.access_token
        if not access_token:
            raise NotAuthenticatedError()
        return {"Authorization": f"Bearer {access_token}"}

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        headers = await self._authorization()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.TimeoutException as e:
            raise ApiError(f"Request to {path} timed out", code="TIMEOUT") from e
        except httpx.HTTPError as e:
            logger.error(f"API request {method} {path} failed: {e}")
            raise ApiError(f"Could not reach API: {e}", code="NETWORK_ERROR") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.is_success or (isinstance(body, dict) and body.get("success") is False):
            error = body.get("error") if isinstance(body, dict) else None
            if isinstance(error, dict):
                message, code = error.get("message"), error.get("code")
            else:
                message, code = None, None
            raise ApiError(
                message or f"HTTP {response.status_code}",
                status_code=response.status_code,
                code=code,
            )

        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def get(self, path: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)
