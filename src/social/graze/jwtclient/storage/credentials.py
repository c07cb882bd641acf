import logging
from typing import Optional

from social.graze.jwtclient.app.config import (
    ACCESS_TOKEN_STORAGE_KEY,
    REFRESH_TOKEN_STORAGE_KEY,
)
from social.graze.jwtclient.storage.persistence import MemoryPersistence, Persistence

logger = logging.getLogger(__name__)


class CredentialStore:
    """
    Holds the current access token and refresh token.

    With `use_local_storage` enabled (the default) tokens are read from and
    written to the persistence backend under the keys `jwt_token` and
    `jwt_refresh_token`. With it disabled they are kept in attributes of this
    object and the backend is never touched.

    Tokens are opaque strings; nothing here parses or validates them.
    """

    def __init__(
        self,
        persistence: Optional[Persistence] = None,
        use_local_storage: bool = True,
    ) -> None:
        self._persistence: Persistence = persistence or MemoryPersistence()
        self._use_local_storage = use_local_storage
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None

    @property
    def use_local_storage(self) -> bool:
        return self._use_local_storage

    @property
    def persistence(self) -> Persistence:
        return self._persistence

    async def get_access_token(self) -> Optional[str]:
        if self._use_local_storage:
            return await self._persistence.get_item(ACCESS_TOKEN_STORAGE_KEY)
        return self._access_token

    async def set_access_token(self, token: str) -> None:
        if self._use_local_storage:
            await self._persistence.set_item(ACCESS_TOKEN_STORAGE_KEY, token)
            return
        self._access_token = token

    async def get_refresh_token(self) -> Optional[str]:
        if self._use_local_storage:
            return await self._persistence.get_item(REFRESH_TOKEN_STORAGE_KEY)
        return self._refresh_token

    async def set_refresh_token(self, token: str) -> None:
        if self._use_local_storage:
            await self._persistence.set_item(REFRESH_TOKEN_STORAGE_KEY, token)
            return
        self._refresh_token = token

    async def clear(self) -> None:
        """Forget both tokens. Safe to call when nothing is stored."""
        self._access_token = None
        self._refresh_token = None
        if self._use_local_storage:
            await self._persistence.remove_item(ACCESS_TOKEN_STORAGE_KEY)
            await self._persistence.remove_item(REFRESH_TOKEN_STORAGE_KEY)
        logger.debug("Cleared stored tokens")
