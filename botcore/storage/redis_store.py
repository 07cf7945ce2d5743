# botcore/storage/redis_store.py
import asyncio
import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.queue_domain import QueueItem
from botcore.storage.base import KeyValueStorage, QueueStorage

logger = get_logger(__name__)


class RedisConnection:
    """Lazily initialized, pooled Redis client shared by the Redis stores of one bot"""

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.url = url
        self.pool = None
        self.client = client
        self._initialized = client is not None

    async def initialize(self):
        """Initialize connection pool on first use"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=20,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def get_client(self) -> redis.Redis:
        if not self._initialized:
            await self.initialize()
        return self.client

    async def close(self):
        """Clean shutdown"""
        if self.pool is None:
            # injected clients are owned by the caller
            return
        try:
            await self.client.aclose()
            await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))


class RedisQueueStorage(QueueStorage):
    """
    Lanes are Redis lists of JSON encoded items, one list per key.
    A set indexes the keys that currently hold items. Writes touching both
    go through one MULTI/EXEC pipeline.
    """

    def __init__(self, connection: RedisConnection, namespace: str, name: str):
        self.connection = connection
        self.prefix = f"{namespace}:queue:{name}"
        self._lock = asyncio.Lock()

    def _lane(self, key: str) -> str:
        return f"{self.prefix}:lane:{key}"

    @property
    def _index(self) -> str:
        return f"{self.prefix}:keys"

    async def load(self) -> dict[str, list[QueueItem]]:
        client = await self.connection.get_client()
        snapshot = {}
        for key in sorted(await client.smembers(self._index)):
            raw_items = await client.lrange(self._lane(key), 0, -1)
            if raw_items:
                snapshot[key] = [QueueItem.model_validate_json(raw) for raw in raw_items]
        return snapshot

    async def append(self, key: str, item: QueueItem) -> None:
        client = await self.connection.get_client()
        async with self._lock:
            async with client.pipeline(transaction=True) as pipe:
                pipe.rpush(self._lane(key), item.model_dump_json())
                pipe.sadd(self._index, key)
                await pipe.execute()

    async def _find(self, client, key: str, item_id: str) -> tuple[int, str] | None:
        raw_items = await client.lrange(self._lane(key), 0, -1)
        for idx, raw in enumerate(raw_items):
            if json.loads(raw).get("id") == item_id:
                return idx, raw
        return None

    async def update(self, key: str, item: QueueItem) -> None:
        client = await self.connection.get_client()
        async with self._lock:
            found = await self._find(client, key, item.id)
            if found is not None:
                await client.lset(self._lane(key), found[0], item.model_dump_json())

    async def remove(self, key: str, item_id: str) -> bool:
        client = await self.connection.get_client()
        async with self._lock:
            found = await self._find(client, key, item_id)
            if found is None:
                return False

            async with client.pipeline(transaction=True) as pipe:
                pipe.lrem(self._lane(key), 1, found[1])
                pipe.llen(self._lane(key))
                _, remaining = await pipe.execute()

            # appends hold the same lock, so the lane cannot refill before srem
            if not remaining:
                await client.srem(self._index, key)
            return True

    async def clear(self, key: str | None = None) -> None:
        client = await self.connection.get_client()
        async with self._lock:
            keys = [key] if key is not None else list(await client.smembers(self._index))
            if not keys:
                return
            async with client.pipeline(transaction=True) as pipe:
                for k in keys:
                    pipe.delete(self._lane(k))
                pipe.srem(self._index, *keys)
                await pipe.execute()


class RedisKeyValueStorage(KeyValueStorage):
    """JSON documents stored in one Redis hash."""

    def __init__(self, connection: RedisConnection, namespace: str, name: str):
        self.connection = connection
        self.hash_key = f"{namespace}:kv:{name}"

    async def get(self, key: str) -> Any | None:
        client = await self.connection.get_client()
        raw = await client.hget(self.hash_key, key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Any) -> None:
        client = await self.connection.get_client()
        await client.hset(self.hash_key, key, json.dumps(value))

    async def delete(self, key: str) -> bool:
        client = await self.connection.get_client()
        return await client.hdel(self.hash_key, key) > 0

    async def keys(self) -> list[str]:
        client = await self.connection.get_client()
        return list(await client.hkeys(self.hash_key))

    async def items(self) -> list[tuple[str, Any]]:
        client = await self.connection.get_client()
        raw = await client.hgetall(self.hash_key)
        return [(key, json.loads(value)) for key, value in raw.items()]

    async def clear(self) -> None:
        client = await self.connection.get_client()
        await client.delete(self.hash_key)
