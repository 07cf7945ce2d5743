import asyncio

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from botcore.bot import Bot
from botcore.config import Settings
from botcore.storage.redis_store import RedisConnection


class FakePipeline:
    """Buffers commands and applies them together on execute(), like MULTI/EXEC."""

    def __init__(self, redis: "FakeRedis"):
        self.redis = redis
        self.commands: list[tuple[str, tuple]] = []

    def __getattr__(self, name: str):
        def buffer(*args):
            self.commands.append((name, args))
            return self

        return buffer

    async def execute(self) -> list:
        if self.redis.fail_execute:
            self.commands = []
            raise RedisConnectionError("connection lost before EXEC")
        self.redis.executed.append([name for name, _ in self.commands])
        results = [await getattr(self.redis, name)(*args) for name, args in self.commands]
        self.commands = []
        return results

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.commands = []


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the list, set and hash backed stores."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.sets: dict[str, set[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.executed: list[list[str]] = []
        self.fail_execute = False

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def ping(self) -> bool:
        return True

    async def rpush(self, key: str, *values: str) -> int:
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start : end + 1])

    async def lset(self, key: str, index: int, value: str) -> bool:
        self.lists[key][index] = value
        return True

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def llen(self, key: str) -> int:
        return len(self.lists.get(key, []))

    async def sadd(self, key: str, *members: str) -> int:
        self.sets.setdefault(key, set()).update(members)
        return len(members)

    async def srem(self, key: str, *members: str) -> int:
        self.sets.get(key, set()).difference_update(members)
        return len(members)

    async def smembers(self, key: str) -> set[str]:
        return set(self.sets.get(key, set()))

    async def hget(self, key: str, field: str) -> str | None:
        return self.hashes.get(key, {}).get(field)

    async def hset(self, key: str, field: str, value: str) -> int:
        self.hashes.setdefault(key, {})[field] = value
        return 1

    async def hdel(self, key: str, field: str) -> int:
        return 1 if self.hashes.get(key, {}).pop(field, None) is not None else 0

    async def hkeys(self, key: str) -> list[str]:
        return list(self.hashes.get(key, {}))

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            for store in (self.lists, self.sets, self.hashes):
                if store.pop(key, None) is not None:
                    removed += 1
        return removed


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_connection(fake_redis):
    return RedisConnection(client=fake_redis)


@pytest.fixture
def fast_settings():
    """In-memory storage and millisecond backoff."""
    return Settings(
        storage_dir=None,
        redis_url=None,
        backoff_initial_delay=0.01,
        backoff_max_delay=0.02,
        backoff_jitter=0.0,
        max_attempts=None,
        autostart=False,
    )


@pytest.fixture
def file_settings(fast_settings, tmp_path):
    return fast_settings.model_copy(update={"storage_dir": tmp_path})


@pytest.fixture
def transport():
    """Records deliveries and returns a delivery record per send."""
    sent: list[tuple[str, dict]] = []

    async def send(user_id, object):
        sent.append((user_id, object))
        return {"to": user_id, "object": object}

    send.sent = sent
    return send


@pytest_asyncio.fixture
async def bot(transport, fast_settings):
    ledger = []

    async def seal(link):
        ledger.append(link)

    instance = Bot(send=transport, seal=seal, settings=fast_settings)
    instance.ledger = ledger
    await instance.start()
    yield instance
    await instance.close()


def _make_wrapper(author: str, text: str = "hey", link: str | None = None) -> dict:
    link = link or f"{author}-{text}"
    return {
        "author": author,
        "link": link,
        "objectinfo": {"link": link},
        "object": {
            "_t": "tradle.Message",
            "object": {"_t": "tradle.SimpleMessage", "message": text},
        },
    }


async def _settle(predicate, timeout: float = 2.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.fixture
def make_wrapper():
    """Build an inbound message wrapper authored by a user."""
    return _make_wrapper


@pytest.fixture
def settle():
    """Wait until a condition holds, failing the test on timeout."""
    return _settle
