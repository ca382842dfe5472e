from typing import Optional

from rideway.schemas.auth import TokenPair


class TokenStore:
    """
    Process-local mirror of the current access/refresh token pair.

    Written only by SessionManager; read by outbound request paths. The pair
    is an immutable object replaced by a single assignment, so a reader never
    observes half of an old pair and half of a new one.
    """

    def __init__(self) -> None:
        self._pair: Optional[TokenPair] = None

    def set(self, pair: TokenPair) -> None:
        self._pair = pair

    def get(self) -> Optional[TokenPair]:
        return self._pair

    def clear(self) -> None:
        self._pair = None

    @property
    def access_token(self) -> Optional[str]:
        pair = self._pair
        return pair.access_token if pair else None
