import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable
from typing import Any, Optional, Protocol

from rideway.schemas.auth import SessionState
from rideway.services.session_service import SessionManager

logger = logging.getLogger(__name__)

USER_ONLINE_EVENT = "user:online"
USER_OFFLINE_EVENT = "user:offline"
CONNECT_EVENT = "connect"
DISCONNECT_EVENT = "disconnect"

EventHandler = Callable[[Any], None]


class PresenceChannelUnavailableError(Exception):
    pass


class PresenceChannel(Protocol):
    """
    Persistent push connection to the presence backend.

    The connection lifecycle belongs to the caller; the reconciler only
    subscribes to events and issues the bulk online query.
    """

    @property
    def connected(self) -> bool: ...

    def on(self, event: str, handler: EventHandler) -> None: ...

    def off(self, event: str, handler: EventHandler) -> None: ...

    async def get_online_users(self, user_ids: list[str]) -> list[str]: ...


def _peer_id(payload: Any) -> Optional[str]:
    if isinstance(payload, dict):
        user_id = payload.get("userId")
        return str(user_id) if user_id is not None else None
    if isinstance(payload, str):
        return payload
    return None


class PresenceReconciler:
    """
    Keeps the online set for one session's watch list.

    activate() seeds the set with a single bulk query; user:online and
    user:offline events patch it afterwards. There is no re-polling: a
    reconnect of the channel triggers a fresh activation instead.
    """

    def __init__(self, channel: PresenceChannel, session: SessionManager):
        self._channel = channel
        self._session = session
        self._watch_list: frozenset[str] = frozenset()
        self._online: set[str] = set()
        self._active = False
        self._subscribed = False
        self._attached = False
        self._unavailable = False
        # Activation in progress: events are buffered until the seed lands
        self._seeding = False
        self._pending: list[tuple[str, str]] = []
        self._activation = 0
        self._resync_task: Optional[asyncio.Future[bool]] = None

    @property
    def online(self) -> frozenset[str]:
        if self._unavailable:
            return frozenset()
        return frozenset(self._online)

    @property
    def watch_list(self) -> frozenset[str]:
        return self._watch_list

    @property
    def active(self) -> bool:
        return self._active

    @property
    def unavailable(self) -> bool:
        return self._unavailable

    def attach(self) -> None:
        """Start observing channel connect/disconnect transitions."""
        if self._attached:
            return
        self._channel.on(CONNECT_EVENT, self._handle_connect)
        self._channel.on(DISCONNECT_EVENT, self._handle_disconnect)
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return
        self._channel.off(CONNECT_EVENT, self._handle_connect)
        self._channel.off(DISCONNECT_EVENT, self._handle_disconnect)
        self._attached = False

    async def activate(self, watch_list: Iterable[str]) -> bool:
        """
        Seed the online set for watch_list.

        Returns False (and leaves presence degraded) when the session is not
        authenticated, the channel is down, or the bulk query fails.
        """
        self._watch_list = frozenset(str(user_id) for user_id in watch_list)
        self._activation += 1
        activation = self._activation

        if self._session.state != SessionState.authenticated:
            logger.debug("Presence not activated: session is %s", self._session.state)
            self._reset()
            return False

        if not self._channel.connected:
            logger.info("Presence not activated: channel is not connected")
            self._reset()
            self._unavailable = True
            return False

        self._subscribe()
        self._seeding = True
        self._pending = []
        try:
            online_ids = await self._channel.get_online_users(sorted(self._watch_list))
        except Exception as e:
            if activation == self._activation:
                logger.warning("Presence bulk query failed, hiding online indicators: %s", e)
                self._reset()
                self._unavailable = True
            return False

        if activation != self._activation:
            logger.debug("Discarding presence seed from a superseded activation")
            return False

        self._online = {str(user_id) for user_id in online_ids} & self._watch_list
        self._seeding = False
        pending, self._pending = self._pending, []
        for event, user_id in pending:
            self._apply(event, user_id)

        self._active = True
        self._unavailable = False
        logger.debug(
            "Presence active: %d of %d watched peers online",
            len(self._online),
            len(self._watch_list),
        )
        return True

    def on_peer_online(self, user_id: str) -> None:
        self._dispatch(USER_ONLINE_EVENT, user_id)

    def on_peer_offline(self, user_id: str) -> None:
        self._dispatch(USER_OFFLINE_EVENT, user_id)

    def deactivate(self) -> None:
        """Clear the online set and drop event subscriptions."""
        self._activation += 1
        self._reset()

    def mark_unavailable(self) -> None:
        """Hide online indicators until the next successful activation."""
        self.deactivate()
        self._unavailable = True

    def close(self) -> None:
        """Deactivate and stop observing the channel; used on logout."""
        self.deactivate()
        self.detach()
        self._watch_list = frozenset()
        self._unavailable = False

    # Internals

    def _dispatch(self, event: str, user_id: str) -> None:
        if not (self._active or self._seeding):
            return
        if self._seeding:
            self._pending.append((event, user_id))
            return
        self._apply(event, user_id)

    def _apply(self, event: str, user_id: str) -> None:
        if event == USER_ONLINE_EVENT:
            if user_id in self._watch_list:
                self._online.add(user_id)
        else:
            self._online.discard(user_id)

    def _subscribe(self) -> None:
        if self._subscribed:
            return
        self._channel.on(USER_ONLINE_EVENT, self._handle_online)
        self._channel.on(USER_OFFLINE_EVENT, self._handle_offline)
        self._subscribed = True

    def _unsubscribe(self) -> None:
        if not self._subscribed:
            return
        self._channel.off(USER_ONLINE_EVENT, self._handle_online)
        self._channel.off(USER_OFFLINE_EVENT, self._handle_offline)
        self._subscribed = False

    def _reset(self) -> None:
        self._unsubscribe()
        self._online = set()
        self._pending = []
        self._seeding = False
        self._active = False

    def _handle_online(self, payload: Any) -> None:
        user_id = _peer_id(payload)
        if user_id is not None:
            self.on_peer_online(user_id)

    def _handle_offline(self, payload: Any) -> None:
        user_id = _peer_id(payload)
        if user_id is not None:
            self.on_peer_offline(user_id)

    def _handle_connect(self, _payload: Any = None) -> None:
        # Events missed while disconnected are not replayed: resync
        if not self._watch_list:
            return
        self._unavailable = False
        self._schedule(self.activate(self._watch_list))

    def _handle_disconnect(self, _payload: Any = None) -> None:
        logger.info("Presence channel lost, clearing online set")
        self.deactivate()

    def _schedule(self, coro: Coroutine[Any, Any, bool]) -> None:
        task = asyncio.ensure_future(coro)
        self._resync_task = task
        task.add_done_callback(self._resync_done)

    def _resync_done(self, task: "asyncio.Future[bool]") -> None:
        if self._resync_task is task:
            self._resync_task = None
        if not task.cancelled() and task.exception() is not None:
            logger.error("Presence resync failed: %s", task.exception())
