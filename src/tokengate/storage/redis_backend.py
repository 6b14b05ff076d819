"""Redis token backend.

Key layout under ``key_prefix``:

    token:{id}                 JSON record, EX = token TTL
    user:{user_id}:{type}      SET of token ids per record type
    user:{user_id}:introspect  SET of cached verdict hashes naming the user
    introspect:{hash}          JSON introspection verdict, EX = cache TTL

Dropping a user's records also drops the verdicts in their introspect set.

Reads rewrite ``last_accessed`` with ``KEEPTTL`` so touching a record never
extends its life. The per-user limit runs as an optimistic WATCH/MULTI
transaction and retries if the user's index changes underneath it.

Every ``redis`` or socket error is re-raised as ``TokenStorageError``.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from tokengate.models.entities import ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE
from tokengate.observability import get_logger
from tokengate.storage.base import TokenRecord
from tokengate.storage.errors import TokenStorageError

logger = get_logger(__name__)

DEFAULT_SOCKET_TIMEOUT = 5.0
MAX_WATCH_RETRIES = 10
INDEXED_TYPES = (ACCESS_TOKEN_TYPE, REFRESH_TOKEN_TYPE)
CACHE_INDEX = "introspect"


class RedisTokenBackend:
    """redis.asyncio implementation of TokenBackend.

    Args:
        client: An ``redis.asyncio.Redis`` created with ``decode_responses=True``.
        key_prefix: Namespace for every key.
        index_ttl: Lifetime of the per-user index sets (the refresh-token TTL).
    """

    name = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        key_prefix: str = "oauth:",
        index_ttl: int = 604800,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._prefix = key_prefix
        self._index_ttl = index_ttl
        self._clock = clock

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        password: Optional[str] = None,
        key_prefix: str = "oauth:",
        index_ttl: int = 604800,
        socket_timeout: float = DEFAULT_SOCKET_TIMEOUT,
    ) -> RedisTokenBackend:
        client = aioredis.from_url(
            url,
            password=password,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix, index_ttl=index_ttl)

    def _token_key(self, token_id: str) -> str:
        return f"{self._prefix}token:{token_id}"

    def _user_key(self, user_id: str, token_type: str) -> str:
        return f"{self._prefix}user:{user_id}:{token_type}"

    def _cache_key(self, token_hash: str) -> str:
        return f"{self._prefix}introspect:{token_hash}"

    @contextmanager
    def _wrap(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisError, OSError) as exc:
            raise TokenStorageError(
                f"Redis {operation} failed: {exc}", operation=operation, backend=self.name
            ) from exc

    async def set(self, key: str, record: TokenRecord, ttl: int) -> None:
        with self._wrap("set"):
            pipe = self._client.pipeline()
            pipe.set(self._token_key(key), json.dumps(record), ex=max(1, int(ttl)))
            user_id = record.get("user_id")
            token_type = record.get("type")
            if user_id and token_type in INDEXED_TYPES:
                user_key = self._user_key(user_id, token_type)
                pipe.sadd(user_key, key)
                pipe.expire(user_key, self._index_ttl)
            await pipe.execute()

    async def get(self, key: str) -> Optional[TokenRecord]:
        with self._wrap("get"):
            redis_key = self._token_key(key)
            raw = await self._client.get(redis_key)
            if raw is None:
                return None
            record: TokenRecord = json.loads(raw)
            record["last_accessed"] = self._clock()
            # xx: a concurrent delete must not be undone by the touch
            await self._client.set(redis_key, json.dumps(record), keepttl=True, xx=True)
            return record

    async def delete(self, key: str) -> bool:
        with self._wrap("delete"):
            redis_key = self._token_key(key)
            raw = await self._client.get(redis_key)
            deleted = await self._client.delete(redis_key)
            if raw is not None:
                record = json.loads(raw)
                user_id = record.get("user_id")
                token_type = record.get("type")
                if user_id and token_type in INDEXED_TYPES:
                    await self._client.srem(self._user_key(user_id, token_type), key)
            return bool(deleted)

    async def count_for_user(self, user_id: str) -> int:
        with self._wrap("count_for_user"):
            index_key = self._user_key(user_id, ACCESS_TOKEN_TYPE)
            token_ids = await self._client.smembers(index_key)
            live, stale = await self._partition_live(self._client, token_ids)
            if stale:
                await self._client.srem(index_key, *stale)
            return len(live)

    async def delete_for_user(self, user_id: str) -> int:
        with self._wrap("delete_for_user"):
            index_keys = [self._user_key(user_id, t) for t in INDEXED_TYPES]
            token_ids: set[str] = set()
            for index_key in index_keys:
                token_ids.update(await self._client.smembers(index_key))
            cache_index = self._user_key(user_id, CACHE_INDEX)
            cache_keys = [self._cache_key(h) for h in await self._client.smembers(cache_index)]
            removed = 0
            if token_ids:
                removed = await self._client.delete(*(self._token_key(t) for t in token_ids))
            await self._client.delete(*index_keys, cache_index, *cache_keys)
            return int(removed)

    async def enforce_user_limit(self, user_id: str, max_tokens: int) -> int:
        with self._wrap("enforce_user_limit"):
            index_keys = [self._user_key(user_id, t) for t in INDEXED_TYPES]
            async with self._client.pipeline(transaction=True) as pipe:
                for _ in range(MAX_WATCH_RETRIES):
                    try:
                        await pipe.watch(*index_keys)
                        access_ids = await pipe.smembers(index_keys[0])
                        live, _stale = await self._partition_live(pipe, access_ids)
                        if len(live) < max_tokens:
                            await pipe.unwatch()
                            return 0
                        token_ids = set(access_ids)
                        token_ids.update(await pipe.smembers(index_keys[1]))
                        cache_index = self._user_key(user_id, CACHE_INDEX)
                        cache_keys = [self._cache_key(h) for h in await pipe.smembers(cache_index)]
                        pipe.multi()
                        pipe.delete(*(self._token_key(t) for t in token_ids))
                        pipe.delete(*index_keys, cache_index, *cache_keys)
                        results = await pipe.execute()
                        return int(results[0])
                    except WatchError:
                        logger.debug("tokengate.storage.user_limit_retry", user_id=user_id)
                        continue
            raise TokenStorageError(
                f"User index for {user_id!r} kept changing during limit enforcement",
                operation="enforce_user_limit",
                backend=self.name,
            )

    async def cache_set(self, key: str, value: TokenRecord, ttl: int) -> None:
        with self._wrap("cache_set"):
            pipe = self._client.pipeline()
            pipe.set(self._cache_key(key), json.dumps(value), ex=max(1, int(ttl)))
            user_id = value.get("user_id")
            if user_id:
                cache_index = self._user_key(user_id, CACHE_INDEX)
                pipe.sadd(cache_index, key)
                pipe.expire(cache_index, self._index_ttl)
            await pipe.execute()

    async def cache_get(self, key: str) -> Optional[TokenRecord]:
        with self._wrap("cache_get"):
            raw = await self._client.get(self._cache_key(key))
            return None if raw is None else json.loads(raw)

    async def cache_delete(self, key: str) -> None:
        with self._wrap("cache_delete"):
            await self._client.delete(self._cache_key(key))

    async def ping(self) -> None:
        with self._wrap("ping"):
            await self._client.ping()

    async def close(self) -> None:
        with self._wrap("close"):
            await self._client.aclose()

    async def _partition_live(self, client: Any, token_ids: set[str]) -> tuple[list[str], list[str]]:
        live: list[str] = []
        stale: list[str] = []
        for token_id in token_ids:
            if await client.exists(self._token_key(token_id)):
                live.append(token_id)
            else:
                stale.append(token_id)
        return live, stale
