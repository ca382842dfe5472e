from fastapi import APIRouter

from rideway.schemas.user import OnlinePeersResponse
from rideway.services.client_session import ClientSession
from rideway.utils.auth import AuthenticatedClient

router = APIRouter(prefix="/presence", tags=["Presence"])


def _online_response(client: ClientSession) -> OnlinePeersResponse:
    presence = client.presence
    if presence is None:
        return OnlinePeersResponse(active=False, unavailable=True, online=[], watching=0)
    return OnlinePeersResponse(
        active=presence.active,
        unavailable=presence.unavailable,
        online=sorted(presence.online),
        watching=len(presence.watch_list),
    )


@router.get("/online", response_model=OnlinePeersResponse)
async def get_online_peers(client: AuthenticatedClient) -> OnlinePeersResponse:
    return _online_response(client)


@router.post("/activate", response_model=OnlinePeersResponse)
async def activate_presence(client: AuthenticatedClient) -> OnlinePeersResponse:
    """Reload the watch list and reseed the online set."""
    await client.start_presence()
    return _online_response(client)
