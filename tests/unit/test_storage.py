import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from botcore.config import Settings
from botcore.models.domain.queue_domain import QueueItem
from botcore.storage import StorageFactory
from botcore.storage.json_file import JsonFileKeyValueStorage, JsonFileQueueStorage
from botcore.storage.memory import MemoryKeyValueStorage, MemoryQueueStorage
from botcore.storage.redis_store import RedisKeyValueStorage, RedisQueueStorage


@pytest.fixture(params=["memory", "file", "redis"])
def queue_storage(request, tmp_path, redis_connection):
    if request.param == "memory":
        return MemoryQueueStorage()
    if request.param == "file":
        return JsonFileQueueStorage(tmp_path / "send-queues.json")
    return RedisQueueStorage(redis_connection, "test", "send")


@pytest.fixture(params=["memory", "file", "redis"])
def kv_storage(request, tmp_path, redis_connection):
    if request.param == "memory":
        return MemoryKeyValueStorage()
    if request.param == "file":
        return JsonFileKeyValueStorage(tmp_path / "users.json")
    return RedisKeyValueStorage(redis_connection, "test", "users")


@pytest.mark.asyncio
async def test_queue_storage_keeps_order_per_key(queue_storage):
    items = [QueueItem(key="alice", payload={"n": n}) for n in range(3)]
    for item in items:
        await queue_storage.append("alice", item)
    await queue_storage.append("bob", QueueItem(key="bob", payload={"n": 9}))

    snapshot = await queue_storage.load()

    assert [i.id for i in snapshot["alice"]] == [i.id for i in items]
    assert [i.payload["n"] for i in snapshot["bob"]] == [9]


@pytest.mark.asyncio
async def test_queue_storage_update_and_remove(queue_storage):
    item = QueueItem(key="alice", payload={"n": 1})
    await queue_storage.append("alice", item)

    item.attempts = 4
    item.last_error = "down"
    await queue_storage.update("alice", item)
    stored = (await queue_storage.load())["alice"][0]
    assert stored.attempts == 4
    assert stored.last_error == "down"

    assert await queue_storage.remove("alice", item.id) is True
    assert await queue_storage.remove("alice", item.id) is False
    assert await queue_storage.load() == {}


@pytest.mark.asyncio
async def test_queue_storage_clear_one_or_all(queue_storage):
    await queue_storage.append("alice", QueueItem(key="alice", payload={}))
    await queue_storage.append("bob", QueueItem(key="bob", payload={}))

    await queue_storage.clear("alice")
    assert list(await queue_storage.load()) == ["bob"]

    await queue_storage.clear()
    assert await queue_storage.load() == {}


@pytest.mark.asyncio
async def test_kv_storage_roundtrip(kv_storage):
    value = {"id": "alice", "profile": {"name": "Alice"}}
    await kv_storage.put("alice", value)

    fetched = await kv_storage.get("alice")
    fetched["profile"]["name"] = "changed"

    assert await kv_storage.get("alice") == value
    assert await kv_storage.keys() == ["alice"]
    assert await kv_storage.items() == [("alice", value)]
    assert await kv_storage.delete("alice") is True
    assert await kv_storage.delete("alice") is False
    assert await kv_storage.get("alice") is None


@pytest.mark.asyncio
async def test_kv_storage_clear(kv_storage):
    await kv_storage.put("a", 1)
    await kv_storage.put("b", [1, 2])

    await kv_storage.clear()

    assert await kv_storage.keys() == []


@pytest.mark.asyncio
async def test_json_file_survives_reopen(tmp_path):
    path = tmp_path / "send-queues.json"
    item = QueueItem(key="alice", payload={"object": {"_t": "tradle.SimpleMessage"}})
    await JsonFileQueueStorage(path).append("alice", item)

    reopened = await JsonFileQueueStorage(path).load()

    assert reopened["alice"][0].id == item.id
    assert not (tmp_path / "send-queues.json.tmp").exists()
    assert json.loads(path.read_text())["alice"][0]["payload"] == item.payload


@pytest.mark.asyncio
async def test_corrupted_file_is_not_silently_discarded(tmp_path):
    path = tmp_path / "users.json"
    path.write_text("{not json")

    with pytest.raises(json.JSONDecodeError):
        await JsonFileKeyValueStorage(path).get("alice")


@pytest.mark.asyncio
async def test_redis_append_writes_lane_and_index_together(redis_connection, fake_redis):
    storage = RedisQueueStorage(redis_connection, "test", "send")

    await storage.append("alice", QueueItem(key="alice", payload={"n": 1}))
    await storage.remove("alice", (await storage.load())["alice"][0].id)

    assert fake_redis.executed == [["rpush", "sadd"], ["lrem", "llen"]]
    assert fake_redis.sets["test:queue:send:keys"] == set()


@pytest.mark.asyncio
async def test_redis_failed_append_leaves_no_orphan_lane(redis_connection, fake_redis):
    storage = RedisQueueStorage(redis_connection, "test", "send")
    fake_redis.fail_execute = True

    with pytest.raises(RedisConnectionError):
        await storage.append("alice", QueueItem(key="alice", payload={"n": 1}))

    assert fake_redis.lists == {}
    assert fake_redis.sets == {}
    assert await storage.load() == {}


@pytest.mark.asyncio
async def test_json_file_failed_write_keeps_previous_state(tmp_path, monkeypatch):
    path = tmp_path / "send-queues.json"
    storage = JsonFileQueueStorage(path)
    kept = QueueItem(key="alice", payload={"n": 1})
    await storage.append("alice", kept)

    def disk_full(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("botcore.storage.json_file.os.replace", disk_full)
    with pytest.raises(OSError):
        await storage.append("alice", QueueItem(key="alice", payload={"n": 2}))
    with pytest.raises(OSError):
        await storage.remove("alice", kept.id)
    monkeypatch.undo()

    snapshot = await storage.load()
    assert [i.payload for i in snapshot["alice"]] == [{"n": 1}]
    assert [i["payload"] for i in json.loads(path.read_text())["alice"]] == [{"n": 1}]


@pytest.mark.asyncio
async def test_json_file_kv_failed_write_keeps_previous_value(tmp_path, monkeypatch):
    storage = JsonFileKeyValueStorage(tmp_path / "users.json")
    await storage.put("alice", {"history": []})

    def disk_full(src, dst):
        raise OSError(28, "No space left on device")

    monkeypatch.setattr("botcore.storage.json_file.os.replace", disk_full)
    with pytest.raises(OSError):
        await storage.put("alice", {"history": [{"n": 1}]})
    monkeypatch.undo()

    assert await storage.get("alice") == {"history": []}


def test_factory_picks_backend(tmp_path):
    assert StorageFactory(Settings(storage_dir=None, redis_url=None)).backend == "memory"

    file_factory = StorageFactory(Settings(storage_dir=tmp_path, redis_url=None))
    assert file_factory.backend == "file"
    assert file_factory.queue("send").path == tmp_path / "send-queues.json"

    redis_factory = StorageFactory(Settings(redis_url="redis://localhost:6379/0"))
    assert redis_factory.backend == "redis"
    assert isinstance(redis_factory.kv("users"), RedisKeyValueStorage)
