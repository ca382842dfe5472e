from pydantic import ValidationError

from rideway.config import get_settings
from rideway.schemas.user import PeerCard
from rideway.services.api_client import ApiClient, ApiError

settings = get_settings()


class UserService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def get_following(
        self, user_id: str, page: int = 1, limit: int | None = None
    ) -> list[PeerCard]:
        data = await self.api.get(
            f"/users/{user_id}/following",
            params={"page": page, "limit": limit or settings.watch_list_limit},
        )
        if isinstance(data, dict):
            data = data.get("users", [])
        try:
            return [PeerCard.model_validate(item) for item in data or []]
        except ValidationError as e:
            raise ApiError(
                f"Malformed follow-list for user {user_id}", code="MALFORMED_RESPONSE"
            ) from e

    async def get_watch_list(self, user_id: str) -> list[str]:
        """Peer ids whose presence is tracked: the first page of the follow-list."""
        following = await self.get_following(user_id)
        return [peer.id for peer in following]
