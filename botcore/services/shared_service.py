"""Bot-wide key/value state shared by strategies (counters, settings, caches)."""

from typing import Any

from botcore.errors import ValidationError
from botcore.storage.base import KeyValueStorage


class SharedStore:
    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self._storage.get(key)
        return default if value is None else value

    async def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValidationError("shared values may not be None, use delete()")
        await self._storage.put(key, value)

    async def delete(self, key: str) -> bool:
        return await self._storage.delete(key)

    async def keys(self) -> list[str]:
        return await self._storage.keys()

    async def clear(self) -> None:
        await self._storage.clear()
