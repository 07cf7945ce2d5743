"""
JSON file storage.

Each store is a single JSON document on disk, rewritten atomically
(tmp file + os.replace) on every mutation so a crash never leaves a
half-written file behind. Mutations are applied to a copy of the cached
document, which replaces the cache only after the write succeeded.
Disk writes run in a worker thread to avoid blocking the event loop.
"""

import asyncio
import copy
import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.queue_domain import QueueItem
from botcore.storage.base import KeyValueStorage, QueueStorage

logger = get_logger(__name__)

T = TypeVar("T")

Document = dict[str, Any]


class JsonDocument:
    """A dict persisted to one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.lock = asyncio.Lock()
        self._data: Document | None = None

    def read(self) -> Document:
        if self._data is None:
            self._data = self._load()
        return self._data

    def _load(self) -> Document:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error("Corrupted storage file", path=str(self.path), error=str(e))
            raise
        return data if isinstance(data, dict) else {}

    async def transact(self, mutate: Callable[[Document], T]) -> T:
        """
        Apply `mutate` to a copy of the document and persist it.

        Returns:
            Whatever `mutate` returned. If the write fails the cached
            document is left as it was before the call.
        """
        async with self.lock:
            data = copy.deepcopy(self.read())
            result = mutate(data)
            await asyncio.to_thread(self._write, data)
            self._data = data
            return result

    def _write(self, data: Document) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, separators=(",", ":"))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.path)


class JsonFileQueueStorage(QueueStorage):
    def __init__(self, path: Path):
        self._doc = JsonDocument(path)

    @property
    def path(self) -> Path:
        return self._doc.path

    async def load(self) -> dict[str, list[QueueItem]]:
        async with self._doc.lock:
            data = self._doc.read()
            return {
                key: [QueueItem.model_validate(raw) for raw in items]
                for key, items in data.items()
                if items
            }

    async def append(self, key: str, item: QueueItem) -> None:
        raw = item.model_dump(mode="json")
        await self._doc.transact(lambda data: data.setdefault(key, []).append(raw))

    async def update(self, key: str, item: QueueItem) -> None:
        raw = item.model_dump(mode="json")

        def replace(data: Document) -> None:
            items = data.get(key, [])
            for idx, stored in enumerate(items):
                if stored.get("id") == item.id:
                    items[idx] = raw
                    return

        await self._doc.transact(replace)

    async def remove(self, key: str, item_id: str) -> bool:
        def drop(data: Document) -> bool:
            items = data.get(key, [])
            for idx, stored in enumerate(items):
                if stored.get("id") == item_id:
                    del items[idx]
                    if not items:
                        data.pop(key, None)
                    return True
            return False

        return await self._doc.transact(drop)

    async def clear(self, key: str | None = None) -> None:
        def purge(data: Document) -> None:
            if key is None:
                data.clear()
            else:
                data.pop(key, None)

        await self._doc.transact(purge)


class JsonFileKeyValueStorage(KeyValueStorage):
    def __init__(self, path: Path):
        self._doc = JsonDocument(path)

    async def get(self, key: str) -> Any | None:
        async with self._doc.lock:
            value = self._doc.read().get(key)
            # round trip so callers never mutate the cached document
            return json.loads(json.dumps(value)) if value is not None else None

    async def put(self, key: str, value: Any) -> None:
        stored = json.loads(json.dumps(value))
        await self._doc.transact(lambda data: data.__setitem__(key, stored))

    async def delete(self, key: str) -> bool:
        return await self._doc.transact(lambda data: data.pop(key, None) is not None)

    async def keys(self) -> list[str]:
        async with self._doc.lock:
            return list(self._doc.read().keys())

    async def clear(self) -> None:
        await self._doc.transact(lambda data: data.clear())
