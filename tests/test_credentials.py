"""
Tests for the credential store and its persistence backends.
"""

import pytest

from social.graze.jwtclient.storage.credentials import CredentialStore
from social.graze.jwtclient.storage.persistence import (
    MemoryPersistence,
    Persistence,
    RedisPersistence,
)


class TestMemoryPersistence:
    """Test the dict-backed persistence backend."""

    @pytest.mark.asyncio
    async def test_get_missing_key(self):
        assert await MemoryPersistence().get_item("missing") is None

    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        persistence = MemoryPersistence()

        await persistence.set_item("key", "value")
        assert await persistence.get_item("key") == "value"

        await persistence.remove_item("key")
        assert await persistence.get_item("key") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self):
        await MemoryPersistence().remove_item("missing")

    @pytest.mark.asyncio
    async def test_initial_items_copied(self):
        initial = {"key": "value"}
        persistence = MemoryPersistence(initial)

        await persistence.set_item("key", "other")

        assert initial == {"key": "value"}

    def test_abstract_class_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Persistence()  # type: ignore


class TestRedisPersistence:
    """Test the Redis-backed persistence backend."""

    @pytest.mark.asyncio
    async def test_set_get_remove(self, fake_redis_client):
        persistence = RedisPersistence(fake_redis_client)

        await persistence.set_item("jwt_token", "maintoken")
        assert await persistence.get_item("jwt_token") == "maintoken"

        await persistence.remove_item("jwt_token")
        assert await persistence.get_item("jwt_token") is None

    @pytest.mark.asyncio
    async def test_key_prefix(self, fake_redis_client):
        persistence = RedisPersistence(fake_redis_client, key_prefix="app1:")

        await persistence.set_item("jwt_token", "maintoken")

        assert await fake_redis_client.get("app1:jwt_token") == b"maintoken"
        assert await fake_redis_client.get("jwt_token") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self, fake_redis_client):
        await RedisPersistence(fake_redis_client).remove_item("missing")


class TestCredentialStore:
    """Test token storage with and without local storage."""

    @pytest.mark.asyncio
    async def test_empty_at_startup(self):
        store = CredentialStore()

        assert await store.get_access_token() is None
        assert await store.get_refresh_token() is None

    @pytest.mark.asyncio
    async def test_local_storage_keys(self):
        persistence = MemoryPersistence()
        store = CredentialStore(persistence)

        await store.set_access_token("maintoken")
        await store.set_refresh_token("refreshtoken")

        assert await persistence.get_item("jwt_token") == "maintoken"
        assert await persistence.get_item("jwt_refresh_token") == "refreshtoken"
        assert await store.get_access_token() == "maintoken"
        assert await store.get_refresh_token() == "refreshtoken"

    @pytest.mark.asyncio
    async def test_local_storage_disabled(self):
        persistence = MemoryPersistence()
        store = CredentialStore(persistence, use_local_storage=False)

        await store.set_access_token("maintoken")
        await store.set_refresh_token("refreshtoken")

        assert await store.get_access_token() == "maintoken"
        assert await store.get_refresh_token() == "refreshtoken"
        assert await persistence.get_item("jwt_token") is None
        assert await persistence.get_item("jwt_refresh_token") is None

    @pytest.mark.asyncio
    async def test_local_storage_disabled_ignores_existing_items(self):
        persistence = MemoryPersistence({"jwt_token": "stale"})
        store = CredentialStore(persistence, use_local_storage=False)

        assert await store.get_access_token() is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("use_local_storage", [True, False])
    async def test_clear_idempotent(self, use_local_storage):
        store = CredentialStore(use_local_storage=use_local_storage)
        await store.set_access_token("maintoken")
        await store.set_refresh_token("refreshtoken")

        await store.clear()
        await store.clear()

        assert await store.get_access_token() is None
        assert await store.get_refresh_token() is None

    @pytest.mark.asyncio
    async def test_shared_redis_backend(self, fake_redis_client):
        """Two stores over the same Redis see each other's tokens."""
        first = CredentialStore(RedisPersistence(fake_redis_client))
        second = CredentialStore(RedisPersistence(fake_redis_client))

        await first.set_access_token("maintoken")
        assert await second.get_access_token() == "maintoken"

        await second.clear()
        assert await first.get_access_token() is None
