"""
Unit tests for the Redis and in-memory session stores.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from service_session.app.models import Session
from service_session.app.sessions import InMemorySessionStore, RedisSessionStore
from shared.errors import SessionStoreError
from shared.test_helpers import AccessDataFactory, FrozenClock


class TestRedisSessionStore:
    """Test cases for RedisSessionStore."""

    @pytest.fixture
    def clock(self):
        return FrozenClock()

    @pytest.fixture
    def pipe(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, True])
        return pipe

    @pytest.fixture
    def mock_redis(self, pipe):
        client = AsyncMock()
        client.pipeline = MagicMock(return_value=pipe)
        return client

    @pytest.fixture
    def store(self, mock_redis, clock):
        return RedisSessionStore("redis://localhost:6379/0", ttl=timedelta(hours=2), client=mock_redis, clock=clock)

    def stored(self, session: Session) -> str:
        return json.dumps(session.to_dict())

    @pytest.mark.asyncio
    async def test_create_writes_session_and_subject_pointer(self, store, pipe, clock):
        session = AccessDataFactory.session("u1")

        await store.create(session)

        assert session.session_id
        assert session.created_at == clock.now
        assert session.updated_at == clock.now
        key_call, pointer_call = pipe.set.call_args_list
        assert key_call.args[0] == f"session:{session.session_id}"
        assert json.loads(key_call.args[1])["subject"] == "u1"
        assert key_call.kwargs == {"ex": 7200}
        assert pointer_call == call("session:sub:u1", session.session_id, ex=7200)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_keeps_existing_id(self, store):
        session = AccessDataFactory.session("u1", session_id="fixed")

        await store.create(session)

        assert session.session_id == "fixed"

    @pytest.mark.asyncio
    async def test_create_failure_raises_store_error(self, store, pipe):
        pipe.execute.side_effect = RedisConnectionError("down")

        with pytest.raises(SessionStoreError):
            await store.create(AccessDataFactory.session("u1"))

    @pytest.mark.asyncio
    async def test_get_round_trips(self, store, mock_redis):
        session = AccessDataFactory.session("u1", session_id="s1")
        mock_redis.get.return_value = self.stored(session)

        result = await store.get("s1")

        mock_redis.get.assert_awaited_once_with("session:s1")
        assert result == session

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store, mock_redis):
        mock_redis.get.return_value = None

        assert await store.get("s1") is None

    @pytest.mark.asyncio
    async def test_get_corrupt_payload_raises(self, store, mock_redis):
        mock_redis.get.return_value = "not-json"

        with pytest.raises(SessionStoreError):
            await store.get("s1")

    @pytest.mark.asyncio
    async def test_get_by_subject_follows_pointer(self, store, mock_redis):
        session = AccessDataFactory.session("u1", session_id="s1")
        mock_redis.get.side_effect = ["s1", self.stored(session)]

        result = await store.get_by_subject("u1")

        assert result.session_id == "s1"
        assert mock_redis.get.await_args_list == [call("session:sub:u1"), call("session:s1")]

    @pytest.mark.asyncio
    async def test_get_by_subject_without_pointer(self, store, mock_redis):
        mock_redis.get.return_value = None

        assert await store.get_by_subject("u1") is None

    @pytest.mark.asyncio
    async def test_update_keeps_remaining_ttl(self, store, mock_redis, clock):
        mock_redis.set.return_value = True
        mock_redis.ttl.return_value = 1234
        session = AccessDataFactory.session("u1", session_id="s1")

        await store.update(session)

        assert session.updated_at == clock.now
        assert mock_redis.set.await_args.args[0] == "session:s1"
        assert json.loads(mock_redis.set.await_args.args[1])["subject"] == "u1"
        assert mock_redis.set.await_args.kwargs == {"xx": True, "keepttl": True}
        mock_redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_sets_default_ttl_on_key_without_expiry(self, store, mock_redis):
        mock_redis.set.return_value = True
        mock_redis.ttl.return_value = -1

        await store.update(AccessDataFactory.session("u1", session_id="s1"))

        mock_redis.expire.assert_awaited_once_with("session:s1", 7200)

    @pytest.mark.asyncio
    async def test_update_of_deleted_session_is_not_recreated(self, store, mock_redis, pipe):
        mock_redis.set.return_value = None

        await store.update(AccessDataFactory.session("u1", session_id="s1"))

        assert mock_redis.set.await_count == 1
        mock_redis.ttl.assert_not_awaited()
        mock_redis.expire.assert_not_awaited()
        pipe.set.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_failure_raises(self, store, mock_redis):
        mock_redis.set.side_effect = RedisConnectionError("down")

        with pytest.raises(SessionStoreError):
            await store.update(AccessDataFactory.session("u1", session_id="s1"))

    @pytest.mark.asyncio
    async def test_delete_removes_both_keys(self, store, mock_redis, pipe):
        session = AccessDataFactory.session("u1", session_id="s1")
        mock_redis.get.side_effect = [self.stored(session), "s1"]

        await store.delete("s1")

        assert pipe.delete.call_args_list == [call("session:s1"), call("session:sub:u1")]
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delete_keeps_pointer_owned_by_newer_session(self, store, mock_redis, pipe):
        session = AccessDataFactory.session("u1", session_id="s1")
        mock_redis.get.side_effect = [self.stored(session), "s2"]

        await store.delete("s1")

        assert pipe.delete.call_args_list == [call("session:s1")]

    @pytest.mark.asyncio
    async def test_delete_missing_is_noop(self, store, mock_redis, pipe):
        mock_redis.get.return_value = None

        await store.delete("s1")

        pipe.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_refresh_extends_both_keys(self, store, mock_redis, pipe):
        session = AccessDataFactory.session("u1", session_id="s1")
        mock_redis.get.side_effect = [self.stored(session), "s1"]

        await store.refresh("s1")

        assert pipe.expire.call_args_list == [call("session:s1", 7200), call("session:sub:u1", 7200)]

    @pytest.mark.asyncio
    async def test_refresh_missing_is_noop(self, store, mock_redis, pipe):
        mock_redis.get.return_value = None

        await store.refresh("s1")

        pipe.expire.assert_not_called()

    @pytest.mark.asyncio
    async def test_start_failure_raises(self, store, mock_redis):
        mock_redis.ping.side_effect = RedisConnectionError("down")

        with pytest.raises(SessionStoreError):
            await store.start()

    @pytest.mark.asyncio
    async def test_close(self, store, mock_redis):
        await store.close()

        mock_redis.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check(self, store, mock_redis):
        assert await store.health_check() is True

        mock_redis.ping.side_effect = RedisConnectionError("down")
        assert await store.health_check() is False

    def test_non_positive_ttl_uses_default(self):
        store = RedisSessionStore("redis://localhost:6379/0", ttl=timedelta(0))

        assert store.ttl_seconds == 24 * 3600

    @pytest.mark.asyncio
    async def test_unstarted_store_raises(self):
        store = RedisSessionStore("redis://localhost:6379/0")

        with pytest.raises(SessionStoreError):
            await store.get("s1")


class TestInMemorySessionStore:
    """Test cases for InMemorySessionStore."""

    @pytest.fixture
    def clock(self):
        return FrozenClock()

    @pytest.fixture
    def store(self, clock):
        return InMemorySessionStore(ttl=timedelta(hours=1), clock=clock)

    @pytest.mark.asyncio
    async def test_create_and_lookup(self, store):
        session = AccessDataFactory.session("u1")

        await store.create(session)

        assert (await store.get(session.session_id)).subject == "u1"
        assert (await store.get_by_subject("u1")).session_id == session.session_id

    @pytest.mark.asyncio
    async def test_returned_sessions_are_copies(self, store):
        session = AccessDataFactory.session("u1")
        await store.create(session)

        loaded = await store.get(session.session_id)
        loaded.access_token = "tampered"

        assert store.peek(session.session_id).access_token == "at-u1"

    @pytest.mark.asyncio
    async def test_entries_expire_after_ttl(self, store, clock):
        session = AccessDataFactory.session("u1")
        await store.create(session)

        clock.advance(hours=1)

        assert await store.get(session.session_id) is None
        assert await store.get_by_subject("u1") is None

    @pytest.mark.asyncio
    async def test_update_keeps_deadline(self, store, clock):
        session = AccessDataFactory.session("u1")
        await store.create(session)
        deadline = store.store_deadline(session.session_id)
        clock.advance(minutes=20)

        session.access_token = "at-new"
        await store.update(session)

        assert store.store_deadline(session.session_id) == deadline
        assert store.peek(session.session_id).access_token == "at-new"

    @pytest.mark.asyncio
    async def test_update_of_deleted_session_is_noop(self, store):
        session = AccessDataFactory.session("u1")
        await store.create(session)
        await store.delete(session.session_id)

        session.access_token = "at-new"
        await store.update(session)

        assert store.peek(session.session_id) is None
        assert await store.get_by_subject("u1") is None


    @pytest.mark.asyncio
    async def test_refresh_extends_deadline(self, store, clock):
        session = AccessDataFactory.session("u1")
        await store.create(session)
        clock.advance(minutes=50)

        await store.refresh(session.session_id)
        clock.advance(minutes=30)

        assert await store.get(session.session_id) is not None
        assert await store.get_by_subject("u1") is not None

    @pytest.mark.asyncio
    async def test_delete_removes_session_and_pointer(self, store):
        session = AccessDataFactory.session("u1")
        await store.create(session)

        await store.delete(session.session_id)

        assert await store.get(session.session_id) is None
        assert await store.get_by_subject("u1") is None

    @pytest.mark.asyncio
    async def test_failing_operation_raises(self, clock):
        store = InMemorySessionStore(clock=clock, failing_operations={"get"})

        with pytest.raises(SessionStoreError):
            await store.get("s1")
