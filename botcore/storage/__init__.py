"""
Storage backends for queues, users, seals and shared state.

The backend is picked from settings: Redis when a URL is configured,
JSON files when a storage directory is configured, memory otherwise.
"""

from botcore.config import Settings
from botcore.storage.base import KeyValueStorage, QueueStorage
from botcore.storage.json_file import JsonFileKeyValueStorage, JsonFileQueueStorage
from botcore.storage.memory import MemoryKeyValueStorage, MemoryQueueStorage
from botcore.storage.redis_store import RedisConnection, RedisKeyValueStorage, RedisQueueStorage


class StorageFactory:
    """Builds the named stores of one bot on the configured backend."""

    def __init__(self, settings: Settings, redis_connection: RedisConnection | None = None):
        self.settings = settings
        self.backend = settings.storage_backend()
        self.redis_connection = redis_connection
        if self.backend == "redis" and self.redis_connection is None:
            self.redis_connection = RedisConnection(settings.redis_url)

    def queue(self, name: str) -> QueueStorage:
        if self.backend == "redis":
            return RedisQueueStorage(self.redis_connection, self.settings.redis_namespace, name)
        if self.backend == "file":
            return JsonFileQueueStorage(self.settings.storage_dir / f"{name}-queues.json")
        return MemoryQueueStorage()

    def kv(self, name: str) -> KeyValueStorage:
        if self.backend == "redis":
            return RedisKeyValueStorage(self.redis_connection, self.settings.redis_namespace, name)
        if self.backend == "file":
            return JsonFileKeyValueStorage(self.settings.storage_dir / f"{name}.json")
        return MemoryKeyValueStorage()

    async def close(self) -> None:
        if self.redis_connection is not None:
            await self.redis_connection.close()


__all__ = [
    "KeyValueStorage",
    "QueueStorage",
    "StorageFactory",
    "MemoryQueueStorage",
    "MemoryKeyValueStorage",
    "JsonFileQueueStorage",
    "JsonFileKeyValueStorage",
    "RedisConnection",
    "RedisQueueStorage",
    "RedisKeyValueStorage",
]
