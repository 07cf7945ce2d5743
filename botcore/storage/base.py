"""
Storage contracts shared by every backend.

QueueStorage keeps ordered lists of queue items per key and is used the same
way for send, receive and seal queues. KeyValueStorage keeps JSON documents
by key (users, history logs, seals, shared state).
"""

from abc import ABC, abstractmethod
from typing import Any

from botcore.models.domain.queue_domain import QueueItem


class QueueStorage(ABC):
    @abstractmethod
    async def load(self) -> dict[str, list[QueueItem]]:
        """Full snapshot of every non-empty lane, in enqueue order."""

    @abstractmethod
    async def append(self, key: str, item: QueueItem) -> None:
        """Durably append an item. Must complete before the enqueue is acknowledged."""

    @abstractmethod
    async def update(self, key: str, item: QueueItem) -> None:
        """Replace the stored copy of an item (attempt counters, state)."""

    @abstractmethod
    async def remove(self, key: str, item_id: str) -> bool:
        """Remove a processed item. Returns False if it was not stored."""

    @abstractmethod
    async def clear(self, key: str | None = None) -> None:
        """Drop one lane, or every lane when no key is given."""

    async def close(self) -> None:
        return None


class KeyValueStorage(ABC):
    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def put(self, key: str, value: Any) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def keys(self) -> list[str]: ...

    @abstractmethod
    async def clear(self) -> None: ...

    async def items(self) -> list[tuple[str, Any]]:
        result = []
        for key in await self.keys():
            value = await self.get(key)
            if value is not None:
                result.append((key, value))
        return result

    async def close(self) -> None:
        return None
