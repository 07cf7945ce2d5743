"""
User store: keyed user records plus an append-only history log per user.

Records and history live in separate stores so that saving a profile can
never overwrite history appended concurrently by the send or receive worker.
Deleting a user first purges that user's send and receive lanes (waiting for
any in-flight attempt), then drops the record and the history.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from botcore.errors import DuplicateError, NotFoundError, ValidationError
from botcore.events import EventEmitter
from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.user_domain import User
from botcore.storage.base import KeyValueStorage

logger = get_logger(__name__)

Purge = Callable[[str | None], Awaitable[None]]


class History:
    """Read access to the per-user history log."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    async def get(self, user_id: str) -> list[dict[str, Any]]:
        return await self._storage.get(user_id) or []


class UserStore(EventEmitter):
    def __init__(
        self,
        records: KeyValueStorage,
        history: KeyValueStorage,
        purge: Purge | None = None,
    ):
        super().__init__()
        self._records = records
        self._history = history
        self._purge = purge
        self._locks: dict[str, asyncio.Lock] = {}
        self.history = History(history)

    def set_purge(self, purge: Purge) -> None:
        self._purge = purge

    def _lock(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def get(self, user_id: str) -> User | None:
        record = await self._records.get(user_id)
        if record is None:
            return None

        user = User.model_validate(record)
        user.history = await self.history.get(user_id)
        return user

    async def create(self, user_id: str) -> User:
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError('expected string "userId"')

        async with self._lock(user_id):
            if await self._records.get(user_id) is not None:
                raise DuplicateError(f"user {user_id} already exists")

            user = User(id=user_id)
            await self._records.put(user_id, user.to_record())

        logger.info("User created", user_id=user_id)
        self.emit("create", user)
        return user

    async def ensure(self, user_id: str) -> User:
        """Get the user, creating the record on first reference."""
        user = await self.get(user_id)
        if user is not None:
            return user
        try:
            return await self.create(user_id)
        except DuplicateError:
            # created concurrently by the other lane of the same user
            return await self.get(user_id)

    async def save(self, user: User) -> User:
        """Persist profile and custom state. History is append-only and not touched."""
        async with self._lock(user.id):
            await self._records.put(user.id, user.to_record())

        self.emit("update", user)
        return user

    async def append_history(self, user_id: str, entry: dict[str, Any]) -> list[dict[str, Any]]:
        async with self._lock(user_id):
            history = await self.history.get(user_id)
            history.append(entry)
            await self._history.put(user_id, history)
        return history

    async def list(self) -> list[User]:
        users = []
        for user_id, record in await self._records.items():
            user = User.model_validate(record)
            user.history = await self.history.get(user_id)
            users.append(user)
        return users

    async def delete(self, user_id: str) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError(f"user {user_id} not found")

        if self._purge is not None:
            await self._purge(user_id)

        async with self._lock(user_id):
            await self._records.delete(user_id)
            await self._history.delete(user_id)
        self._locks.pop(user_id, None)

        logger.info("User deleted", user_id=user_id)
        self.emit("delete", user)
        return user

    async def clear(self) -> None:
        if self._purge is not None:
            await self._purge(None)

        await self._records.clear()
        await self._history.clear()
        self._locks.clear()

        logger.info("All users cleared")
        self.emit("clear")
