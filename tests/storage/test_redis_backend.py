"""Tests for the Redis token backend (against fakeredis)."""

from __future__ import annotations

import json

import pytest
from fakeredis import FakeAsyncRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from tokengate.storage import RedisTokenBackend, TokenBackend, TokenStorageError


def _access(user_id: str = "u1") -> dict:
    return {"user_id": user_id, "type": "access_token", "scope": "read", "created_at": 1.0}


def _refresh(user_id: str = "u1") -> dict:
    return {"user_id": user_id, "type": "refresh_token", "scope": "read", "created_at": 1.0}


async def test_set_writes_record_with_ttl_and_user_index(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("jti-1", _access(), ttl=120)

    raw = await fake_redis.get("test:token:jti-1")
    assert json.loads(raw)["user_id"] == "u1"
    assert 0 < await fake_redis.ttl("test:token:jti-1") <= 120
    assert await fake_redis.smembers("test:user:u1:access_token") == {"jti-1"}
    assert await fake_redis.ttl("test:user:u1:access_token") > 0


async def test_get_touches_last_accessed_without_extending_ttl(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("jti-1", _access(), ttl=120)
    ttl_before = await fake_redis.ttl("test:token:jti-1")

    record = await redis_backend.get("jti-1")

    assert record is not None
    assert record["last_accessed"] is not None
    stored = json.loads(await fake_redis.get("test:token:jti-1"))
    assert stored["last_accessed"] == record["last_accessed"]
    assert await fake_redis.ttl("test:token:jti-1") <= ttl_before


async def test_get_missing_returns_none(redis_backend: RedisTokenBackend) -> None:
    assert await redis_backend.get("nope") is None


async def test_delete_removes_record_and_index_entry(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("jti-1", _access(), ttl=120)

    assert await redis_backend.delete("jti-1") is True
    assert await redis_backend.delete("jti-1") is False
    assert await fake_redis.smembers("test:user:u1:access_token") == set()


async def test_count_for_user_prunes_stale_index_members(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("a1", _access(), ttl=120)
    await redis_backend.set("a2", _access(), ttl=120)
    await redis_backend.set("r1", _refresh(), ttl=120)
    await fake_redis.delete("test:token:a2")

    assert await redis_backend.count_for_user("u1") == 1
    assert await fake_redis.smembers("test:user:u1:access_token") == {"a1"}


async def test_delete_for_user_removes_every_record(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("a1", _access(), ttl=120)
    await redis_backend.set("r1", _refresh(), ttl=120)
    await redis_backend.set("other", _access("u2"), ttl=120)

    assert await redis_backend.delete_for_user("u1") == 2
    assert await fake_redis.exists("test:token:a1", "test:token:r1") == 0
    assert await fake_redis.exists("test:user:u1:access_token") == 0
    assert await redis_backend.get("other") is not None


async def test_enforce_user_limit_runs_transactionally(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("a1", _access(), ttl=120)
    await redis_backend.set("a2", _access(), ttl=120)
    await redis_backend.set("r1", _refresh(), ttl=120)

    assert await redis_backend.enforce_user_limit("u1", 3) == 0
    assert await redis_backend.count_for_user("u1") == 2

    assert await redis_backend.enforce_user_limit("u1", 2) == 3
    assert await redis_backend.count_for_user("u1") == 0
    assert await fake_redis.exists("test:token:r1") == 0


async def test_introspection_cache_round_trip_and_eviction(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.cache_set("abc", {"active": True, "scope": "read"}, ttl=300)

    assert await redis_backend.cache_get("abc") == {"active": True, "scope": "read"}
    assert 0 < await fake_redis.ttl("test:introspect:abc") <= 300

    await redis_backend.cache_delete("abc")
    assert await redis_backend.cache_get("abc") is None


async def test_enforce_user_limit_drops_cached_verdicts(
    redis_backend: RedisTokenBackend, fake_redis: FakeAsyncRedis
) -> None:
    await redis_backend.set("a1", _access(), ttl=120)
    await redis_backend.cache_set("h-u1", {"active": True, "user_id": "u1"}, ttl=300)
    await redis_backend.cache_set("h-u2", {"active": True, "user_id": "u2"}, ttl=300)
    assert await fake_redis.smembers("test:user:u1:introspect") == {"h-u1"}

    assert await redis_backend.enforce_user_limit("u1", 1) == 1

    assert await redis_backend.cache_get("h-u1") is None
    assert await fake_redis.exists("test:user:u1:introspect") == 0
    assert await redis_backend.cache_get("h-u2") == {"active": True, "user_id": "u2"}


async def test_delete_for_user_drops_cached_verdicts(
    redis_backend: RedisTokenBackend,
) -> None:
    await redis_backend.set("a1", _access(), ttl=120)
    await redis_backend.cache_set("h-u1", {"active": True, "user_id": "u1"}, ttl=300)

    assert await redis_backend.delete_for_user("u1") == 1

    assert await redis_backend.cache_get("h-u1") is None


async def test_redis_errors_are_wrapped() -> None:
    class BrokenRedis:
        async def get(self, *args: object, **kwargs: object) -> None:
            raise RedisConnectionError("connection refused")

        async def ping(self) -> None:
            raise OSError("network unreachable")

    backend = RedisTokenBackend(BrokenRedis())  # type: ignore[arg-type]

    with pytest.raises(TokenStorageError) as exc_info:
        await backend.get("jti")
    assert exc_info.value.operation == "get"
    assert exc_info.value.backend == "redis"

    with pytest.raises(TokenStorageError):
        await backend.ping()


def test_satisfies_backend_protocol(redis_backend: RedisTokenBackend) -> None:
    assert isinstance(redis_backend, TokenBackend)
    assert redis_backend.name == "redis"


async def test_close_closes_client(fake_redis: FakeAsyncRedis) -> None:
    backend = RedisTokenBackend(fake_redis)
    await backend.ping()

    await backend.close()
