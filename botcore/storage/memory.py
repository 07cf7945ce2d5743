"""In-memory storage. Same contract as the durable backends, nothing survives a restart."""

import copy
from typing import Any

from botcore.models.domain.queue_domain import QueueItem
from botcore.storage.base import KeyValueStorage, QueueStorage


class MemoryQueueStorage(QueueStorage):
    def __init__(self):
        self._lanes: dict[str, list[QueueItem]] = {}

    async def load(self) -> dict[str, list[QueueItem]]:
        return {
            key: [item.model_copy() for item in items]
            for key, items in self._lanes.items()
            if items
        }

    async def append(self, key: str, item: QueueItem) -> None:
        self._lanes.setdefault(key, []).append(item.model_copy())

    async def update(self, key: str, item: QueueItem) -> None:
        items = self._lanes.get(key, [])
        for idx, stored in enumerate(items):
            if stored.id == item.id:
                items[idx] = item.model_copy()
                return

    async def remove(self, key: str, item_id: str) -> bool:
        items = self._lanes.get(key, [])
        for idx, stored in enumerate(items):
            if stored.id == item_id:
                del items[idx]
                if not items:
                    self._lanes.pop(key, None)
                return True
        return False

    async def clear(self, key: str | None = None) -> None:
        if key is None:
            self._lanes.clear()
        else:
            self._lanes.pop(key, None)


class MemoryKeyValueStorage(KeyValueStorage):
    def __init__(self):
        self._data: dict[str, Any] = {}

    async def get(self, key: str) -> Any | None:
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    async def put(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        return list(self._data.keys())

    async def clear(self) -> None:
        self._data.clear()
