import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol

from rideway.config import get_settings
from rideway.schemas.auth import (
    LoginCredentials,
    LoginResult,
    RefreshResult,
    SessionError,
    SessionRecord,
    SessionState,
    Subject,
    SubjectUpdate,
    TokenPair,
)
from rideway.services.auth_client import AuthTimeoutError
from rideway.services.token_store import TokenStore

logger = logging.getLogger(__name__)
settings = get_settings()

StateListener = Callable[[SessionState, SessionState], None]


class AuthBackend(Protocol):
    async def login(self, credentials: LoginCredentials) -> LoginResult: ...

    async def refresh(self, refresh_token: str) -> RefreshResult: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """
    Owns the session record and is the only writer of the token store.

    State transitions are synchronous; only login and the refresh branch of
    ensure_fresh await the network. Every transition that changes the token
    pair updates the record and the token store in the same event-loop turn.
    """

    def __init__(
        self,
        backend: AuthBackend,
        token_store: TokenStore,
        *,
        lease: Optional[timedelta] = None,
        login_timeout: Optional[float] = None,
        refresh_timeout: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._backend = backend
        self._token_store = token_store
        self._lease = lease or timedelta(minutes=settings.access_token_lease_minutes)
        self._login_timeout = login_timeout or settings.login_timeout
        self._refresh_timeout = refresh_timeout or settings.refresh_timeout
        self._clock = clock

        self._state = SessionState.unauthenticated
        self._record: Optional[SessionRecord] = None
        # Bumped whenever a session is established or destroyed so that a
        # refresh started against an older session cannot overwrite a newer one
        # or hold up its callers.
        self._generation = 0
        self._refresh_task: Optional[asyncio.Task[SessionState]] = None
        self._listeners: list[StateListener] = []

    # Observers

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def record(self) -> Optional[SessionRecord]:
        return self._record

    @property
    def session_present(self) -> bool:
        return self._record is not None

    @property
    def session_error(self) -> bool:
        return self._record is not None and self._record.error is not None

    @property
    def is_usable(self) -> bool:
        return self._state == SessionState.authenticated and self._record is not None

    @property
    def refresh_in_flight(self) -> bool:
        return self._refresh_task is not None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a (previous, current) state listener; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Transitions

    async def login(self, credentials: LoginCredentials) -> SessionRecord:
        """
        Authenticate against the backend and establish a fresh session.

        Failures propagate to the caller unchanged (backend message verbatim);
        an existing session, if any, is left as it was.
        """
        self._set_state(SessionState.authenticating)
        try:
            result = await asyncio.wait_for(
                self._backend.login(credentials), timeout=self._login_timeout
            )
        except asyncio.TimeoutError:
            self._set_state(self._settled_state())
            logger.info("Login timed out after %ss", self._login_timeout)
            raise AuthTimeoutError("Login timed out", code="TIMEOUT") from None
        except BaseException:
            self._set_state(self._settled_state())
            raise

        record = self._establish(result.user, result.tokens)
        logger.info("Session established for user %s", record.subject.id)
        return record

    def login_with_tokens(self, subject: Subject, tokens: TokenPair) -> SessionRecord:
        """Establish a session from an already-issued pair (e.g. after OTP verification)."""
        record = self._establish(subject, tokens)
        logger.info("Session adopted from issued tokens for user %s", record.subject.id)
        return record

    async def ensure_fresh(self) -> SessionState:
        """
        Resolve token staleness before use.

        Fresh sessions are returned untouched. An expired access token
        triggers exactly one refresh call; concurrent callers await the same
        in-flight refresh. Never raises: failures end in SessionState.error.
        """
        if self._refresh_task is not None:
            return await asyncio.shield(self._refresh_task)

        record = self._record
        if record is None or record.error is not None:
            return self._state
        if self._clock() < record.access_token_expiry:
            return self._state

        self._set_state(SessionState.refreshing)
        self._refresh_task = asyncio.ensure_future(self._refresh(record, self._generation))
        return await asyncio.shield(self._refresh_task)

    def sync_subject(self, changes: SubjectUpdate | dict[str, Any]) -> Optional[SessionRecord]:
        """Replace denormalized subject fields; tokens and expiry are untouched."""
        record = self._record
        if record is None:
            return None

        if isinstance(changes, dict):
            changes = SubjectUpdate.model_validate(changes)
        update_data = changes.model_dump(exclude_unset=True)
        if not update_data:
            return record

        self._record = record.model_copy(
            update={"subject": record.subject.model_copy(update=update_data)}
        )
        logger.debug("Subject synced: %s", sorted(update_data))
        return self._record

    def logout(self) -> None:
        """Destroy the session and clear the token store. Idempotent."""
        had_session = self._record is not None
        self._generation += 1
        self._refresh_task = None
        self._record = None
        self._token_store.clear()
        self._set_state(SessionState.unauthenticated)
        if had_session:
            logger.info("Session destroyed")

    # Internals

    def _establish(self, subject: Subject, tokens: TokenPair) -> SessionRecord:
        self._generation += 1
        self._refresh_task = None
        record = SessionRecord(
            subject=subject,
            tokens=tokens,
            access_token_expiry=self._clock() + self._lease,
        )
        self._record = record
        self._token_store.set(tokens)
        self._set_state(SessionState.authenticated)
        return record

    async def _refresh(self, stale: SessionRecord, generation: int) -> SessionState:
        try:
            try:
                result = await asyncio.wait_for(
                    self._backend.refresh(stale.refresh_token), timeout=self._refresh_timeout
                )
            except Exception as e:
                if generation != self._generation:
                    return self._state
                logger.warning("Token refresh failed for user %s: %s", stale.subject.id, e)
                current = self._record or stale
                self._record = current.model_copy(update={"error": SessionError.refresh_failed})
                self._token_store.clear()
                self._set_state(SessionState.error)
                return self._state

            if generation != self._generation or self._record is None:
                logger.debug("Discarding refresh result for a superseded session")
                return self._state

            tokens = TokenPair(
                access_token=result.access_token,
                refresh_token=result.refresh_token or stale.refresh_token,
            )
            self._record = self._record.model_copy(
                update={
                    "tokens": tokens,
                    "access_token_expiry": self._clock() + self._lease,
                    "error": None,
                }
            )
            self._token_store.set(tokens)
            self._set_state(SessionState.authenticated)
            logger.debug("Access token refreshed for user %s", stale.subject.id)
            return self._state
        finally:
            # A superseded refresh no longer owns the slot
            if generation == self._generation:
                self._refresh_task = None

    def _settled_state(self) -> SessionState:
        if self._record is None:
            return SessionState.unauthenticated
        if self._record.error is not None:
            return SessionState.error
        if self._refresh_task is not None:
            return SessionState.refreshing
        return SessionState.authenticated

    def _set_state(self, state: SessionState) -> None:
        previous = self._state
        self._state = state
        if previous == state:
            return
        logger.debug("Session state %s -> %s", previous, state)
        for listener in list(self._listeners):
            try:
                listener(previous, state)
            except Exception:
                logger.exception("Session state listener failed")
