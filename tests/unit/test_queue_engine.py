import asyncio

import pytest

from botcore.errors import (
    DeveloperError,
    MaxAttemptsExceededError,
    NotFoundError,
    QueueClearedError,
    TransientTransportError,
)
from botcore.models.domain.queue_domain import QueueItemState
from botcore.queues.backoff import BackoffPolicy
from botcore.queues.engine import PersistentQueues
from botcore.storage.json_file import JsonFileQueueStorage
from botcore.storage.memory import MemoryQueueStorage

FAST = BackoffPolicy(initial_delay=0.001, max_delay=0.005)


def make_queues(worker, storage=None, **kwargs):
    return PersistentQueues(
        name="send",
        worker=worker,
        storage=storage or MemoryQueueStorage(),
        backoff=FAST,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_items_processed_in_fifo_order_per_key():
    processed = []

    async def worker(key, payload):
        processed.append((key, payload["n"]))
        return payload["n"]

    queues = make_queues(worker)
    handles = [await queues.enqueue("alice", {"n": n}) for n in range(5)]
    await queues.start()

    assert await asyncio.gather(*handles) == [0, 1, 2, 3, 4]
    assert processed == [("alice", n) for n in range(5)]
    assert queues.queued() == {}
    await queues.stop()


@pytest.mark.asyncio
async def test_enqueue_persists_before_returning():
    storage = MemoryQueueStorage()
    queues = make_queues(lambda key, payload: asyncio.sleep(0), storage=storage)

    await queues.enqueue("alice", {"n": 1})

    snapshot = await storage.load()
    assert [item.payload for item in snapshot["alice"]] == [{"n": 1}]


@pytest.mark.asyncio
async def test_transient_failure_retries_same_item_first():
    attempts = []

    async def worker(key, payload):
        attempts.append(payload["n"])
        if len(attempts) < 3:
            raise TransientTransportError("provider down")
        return "ok"

    queues = make_queues(worker)
    first = await queues.enqueue("alice", {"n": 1})
    second = await queues.enqueue("alice", {"n": 2})
    await queues.start()

    assert await first == "ok"
    await second
    assert attempts == [1, 1, 1, 2]
    await queues.stop()


@pytest.mark.asyncio
async def test_non_retryable_error_stalls_only_that_lane():
    errors = []

    async def worker(key, payload):
        if key == "bob":
            raise NotFoundError("no such user")
        return key

    queues = make_queues(
        worker,
        should_retry=lambda ctx: not isinstance(ctx.error, NotFoundError),
        on_error=lambda error, item: errors.append((error, item.key)),
    )
    bob = await queues.enqueue("bob", {"n": 1})
    bob_next = await queues.enqueue("bob", {"n": 2})
    alice = await queues.enqueue("alice", {"n": 1})
    await queues.start()

    assert await alice == "alice"
    with pytest.raises(NotFoundError):
        await bob

    assert queues.stalled() == ["bob"]
    assert queues.queued("bob") == 2
    assert not bob_next.done()
    assert errors[0][0].action == "send"
    assert errors[0][1] == "bob"
    assert queues.items("bob")[0].state == QueueItemState.STALLED
    await queues.stop()


@pytest.mark.asyncio
async def test_programming_errors_are_never_retried():
    calls = []

    async def worker(key, payload):
        calls.append(key)
        return payload["missing"].attribute

    queues = make_queues(worker)
    handle = await queues.enqueue("alice", {"missing": None})
    await queues.start()

    with pytest.raises(DeveloperError):
        await handle
    assert calls == ["alice"]
    await queues.stop()


@pytest.mark.asyncio
async def test_failing_retry_predicate_stalls():
    def predicate(ctx):
        raise RuntimeError("predicate bug")

    async def worker(key, payload):
        raise TransientTransportError("down")

    queues = make_queues(worker, should_retry=predicate)
    handle = await queues.enqueue("alice", {})
    await queues.start()

    with pytest.raises(TransientTransportError):
        await handle
    assert queues.stalled() == ["alice"]
    await queues.stop()


@pytest.mark.asyncio
async def test_max_attempts_stalls_with_wrapped_error():
    async def worker(key, payload):
        raise TransientTransportError("down")

    queues = make_queues(worker, max_attempts=3)
    handle = await queues.enqueue("alice", {})
    await queues.start()

    with pytest.raises(MaxAttemptsExceededError) as exc_info:
        await handle
    assert exc_info.value.attempts == 3
    assert queues.items("alice")[0].attempts == 3
    await queues.stop()


@pytest.mark.asyncio
async def test_restart_resumes_stalled_head_item():
    broken = {"on": True}
    processed = []

    async def worker(key, payload):
        if broken["on"]:
            raise DeveloperError("handler bug")
        processed.append(payload["n"])

    storage = MemoryQueueStorage()
    queues = make_queues(worker, storage=storage)
    first = await queues.enqueue("alice", {"n": 1})
    second = await queues.enqueue("alice", {"n": 2})
    await queues.start()

    with pytest.raises(DeveloperError):
        await first
    await queues.stop()

    broken["on"] = False
    await queues.start()
    await second

    assert processed == [1, 2]
    assert queues.stalled() == []
    assert await storage.load() == {}
    await queues.stop()


@pytest.mark.asyncio
async def test_new_instance_picks_up_persisted_items():
    storage = MemoryQueueStorage()
    first = make_queues(lambda key, payload: asyncio.sleep(0), storage=storage)
    await first.enqueue("alice", {"n": 1})
    await first.enqueue("bob", {"n": 2})

    processed = []
    done = asyncio.Event()

    async def worker(key, payload):
        processed.append((key, payload["n"]))
        if len(processed) == 2:
            done.set()

    second = make_queues(worker, storage=storage)
    assert second.queued() == {}
    await second.start()
    await asyncio.wait_for(done.wait(), 1)

    assert sorted(processed) == [("alice", 1), ("bob", 2)]
    await second.stop()


@pytest.mark.asyncio
async def test_clear_rejects_pending_handles():
    queues = make_queues(lambda key, payload: asyncio.sleep(0))
    handle = await queues.enqueue("alice", {"n": 1})
    other = await queues.enqueue("bob", {"n": 1})

    await queues.clear("alice")

    with pytest.raises(QueueClearedError):
        await handle
    assert queues.queued() == {"bob": 1}
    assert not other.done()


@pytest.mark.asyncio
async def test_clear_waits_for_in_flight_attempt():
    started = asyncio.Event()
    release = asyncio.Event()
    finished = []

    async def worker(key, payload):
        started.set()
        await release.wait()
        finished.append(payload["n"])

    queues = make_queues(worker)
    await queues.enqueue("alice", {"n": 1})
    queued_after = await queues.enqueue("alice", {"n": 2})
    await queues.start()
    await started.wait()

    clearing = asyncio.create_task(queues.clear("alice"))
    await asyncio.sleep(0.01)
    assert not clearing.done()

    release.set()
    await clearing

    assert finished == [1]
    with pytest.raises(QueueClearedError):
        await queued_after
    assert queues.queued() == {}
    await queues.stop()


@pytest.mark.asyncio
async def test_clear_cancels_backoff_sleep():
    async def worker(key, payload):
        raise TransientTransportError("down")

    queues = PersistentQueues(
        name="send",
        worker=worker,
        storage=MemoryQueueStorage(),
        backoff=BackoffPolicy(initial_delay=30, max_delay=30),
    )
    handle = await queues.enqueue("alice", {})
    await queues.start()
    await asyncio.sleep(0.01)

    await asyncio.wait_for(queues.clear("alice"), 1)

    with pytest.raises(QueueClearedError):
        await handle
    await queues.stop()


@pytest.mark.asyncio
async def test_checkpoint_persists_progress_of_in_flight_item(tmp_path):
    storage = JsonFileQueueStorage(tmp_path / "queues.json")
    release = asyncio.Event()
    queues = None

    async def worker(key, payload):
        payload["step"] = 1
        await queues.checkpoint(key)
        await release.wait()

    queues = make_queues(worker, storage=storage)
    handle = await queues.enqueue("alice", {"n": 1})
    await queues.start()
    await asyncio.sleep(0.01)

    # a fresh reader sees the progress while the attempt is still running
    snapshot = await JsonFileQueueStorage(tmp_path / "queues.json").load()
    assert snapshot["alice"][0].payload == {"n": 1, "step": 1}

    release.set()
    await handle
    await queues.stop()


@pytest.mark.asyncio
async def test_checkpoint_outside_an_attempt_is_a_no_op():
    storage = MemoryQueueStorage()
    queues = make_queues(lambda key, payload: asyncio.sleep(0), storage=storage)
    await queues.enqueue("alice", {"n": 1})

    await queues.checkpoint("alice")
    await queues.checkpoint("nobody")

    snapshot = await storage.load()
    assert [item.payload for item in snapshot["alice"]] == [{"n": 1}]
