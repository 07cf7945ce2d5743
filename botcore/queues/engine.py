"""
Persistent per-key FIFO queues.

Every key (a user id, or a constant for the global seal queue) is an
independent lane. A lane processes one item at a time, head first:

    enqueue() -- persist, then acknowledge with a handle
        |
    drain task per lane
        |
    worker(key, payload)
       /        \\
    success      failure
       |            |
    remove      should_retry?
    resolve      /        \\
              yes          no
               |            |
         backoff, retry    stall the lane, keep the head item,
         the same item     reject the handle, report the error

A stalled lane stays stalled until stop() + start() (or a process restart),
after which the same head item is attempted first. Other lanes are unaffected.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from botcore.errors import (
    PROGRAMMING_ERRORS,
    DeveloperError,
    MaxAttemptsExceededError,
    QueueClearedError,
    developer,
    for_action,
)
from botcore.infrastructure.observability.logging import get_logger, log_stall
from botcore.models.domain.queue_domain import QueueItem, QueueItemState, RetryContext
from botcore.queues.backoff import BackoffPolicy
from botcore.storage.base import QueueStorage

logger = get_logger(__name__)

Worker = Callable[[str, dict[str, Any]], Awaitable[Any]]
ShouldRetry = Callable[[RetryContext], bool]
OnError = Callable[[BaseException, QueueItem], None]


def always_retry(context: RetryContext) -> bool:
    return True


def _consume_exception(handle: asyncio.Future) -> None:
    # mark the rejection retrieved; stalls are reported through on_error
    if not handle.cancelled():
        handle.exception()


class _LaneStalled(Exception):
    def __init__(self, error: BaseException):
        super().__init__(str(error))
        self.error = error


class _LaneInterrupted(Exception):
    pass


class _Lane:
    def __init__(self, key: str):
        self.key = key
        self.items: deque[QueueItem] = deque()
        self.handles: dict[str, asyncio.Future] = {}
        self.task: asyncio.Task | None = None
        self.stalled = False
        self.removing = False
        self.in_flight = False


class PersistentQueues:
    """
    A family of durable FIFO lanes sharing one worker and one retry policy.

    Args:
        name: Queue name, also the action tag put on reported errors
        worker: Coroutine function called with (key, payload)
        storage: Durable backing store for the lanes
        should_retry: Predicate deciding whether a failed attempt is retried
        backoff: Delay policy between retries
        max_attempts: Optional cap on attempts per item (None = unbounded)
        on_error: Called with (error, item) when a lane stalls
    """

    def __init__(
        self,
        name: str,
        worker: Worker,
        storage: QueueStorage,
        should_retry: ShouldRetry | None = None,
        backoff: BackoffPolicy | None = None,
        max_attempts: int | None = None,
        on_error: OnError | None = None,
    ):
        self.name = name
        self.worker = worker
        self.storage = storage
        self.should_retry = should_retry or always_retry
        self.backoff = backoff or BackoffPolicy()
        self.max_attempts = max_attempts
        self.on_error = on_error

        self._lanes: dict[str, _Lane] = {}
        self._loaded = False
        self._load_lock = asyncio.Lock()
        self._started = False

    # =================================================================
    # Public API
    # =================================================================

    @property
    def started(self) -> bool:
        return self._started

    async def enqueue(self, key: str, payload: dict[str, Any]) -> asyncio.Future:
        """
        Durably append an item to the lane for `key`.

        Returns:
            Future resolved with the worker result once this item is processed,
            or rejected with the fatal error if the lane stalls on it.
        """
        await self._ensure_loaded()

        item = QueueItem(key=key, payload=payload)
        await self.storage.append(key, item)

        lane = self._lane(key)
        lane.items.append(item)
        handle = self._new_handle()
        lane.handles[item.id] = handle

        logger.debug("Item enqueued", queue=self.name, key=key, item_id=item.id)

        if self._started:
            self._schedule(lane)
        return handle

    async def start(self) -> None:
        """Begin processing every lane. Calling it while running is a no-op."""
        if self._started:
            return

        await self._ensure_loaded()
        self._started = True

        for lane in self._lanes.values():
            if lane.stalled:
                logger.info("Retrying stalled lane after restart", queue=self.name, key=lane.key)
            lane.stalled = False
            self._schedule(lane)

        logger.info("Queue started", queue=self.name, lanes=len(self._lanes))

    async def stop(self) -> None:
        """Cancel all lane tasks. Items stay persisted; handles stay pending."""
        if not self._started:
            return

        self._started = False
        tasks = [lane.task for lane in self._lanes.values() if lane.task and not lane.task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        logger.info("Queue stopped", queue=self.name)

    async def checkpoint(self, key: str) -> None:
        """
        Persist the payload of the item currently being processed for `key`.

        Workers mutate their payload to record progress that must not be
        repeated when the same item is retried (after a stall or a restart).
        """
        lane = self._lanes.get(key)
        if lane is None or not lane.in_flight or not lane.items:
            return
        await self.storage.update(key, lane.items[0])

    def queued(self, key: str | None = None) -> dict[str, int] | int:
        """Snapshot of pending item counts, per lane or for one lane."""
        if key is not None:
            lane = self._lanes.get(key)
            return len(lane.items) if lane else 0

        return {k: len(lane.items) for k, lane in self._lanes.items() if lane.items}

    def stalled(self) -> list[str]:
        return [k for k, lane in self._lanes.items() if lane.stalled]

    def items(self, key: str) -> list[QueueItem]:
        lane = self._lanes.get(key)
        return [item.model_copy() for item in lane.items] if lane else []

    async def clear(self, key: str | None = None) -> None:
        """
        Purge one lane (or all lanes).

        Never preempts an attempt that is mid-flight: waits for it to return
        first. Backoff sleeps are cancelled. Handles of purged items are
        rejected with QueueClearedError.
        """
        lanes = [self._lanes[key]] if key in self._lanes else []
        if key is None:
            lanes = list(self._lanes.values())

        for lane in lanes:
            await self._retire(lane)

        await self.storage.clear(key)

        for lane in lanes:
            for item_id, handle in lane.handles.items():
                if not handle.done():
                    handle.set_exception(QueueClearedError(f"item {item_id} was cleared"))
            lane.items.clear()
            lane.handles.clear()
            if self._lanes.get(lane.key) is lane:
                del self._lanes[lane.key]

        logger.info("Queue cleared", queue=self.name, key=key, lanes=len(lanes))

    # =================================================================
    # Lane processing
    # =================================================================

    def _lane(self, key: str) -> _Lane:
        lane = self._lanes.get(key)
        if lane is None:
            lane = self._lanes[key] = _Lane(key)
        return lane

    def _new_handle(self) -> asyncio.Future:
        handle = asyncio.get_running_loop().create_future()
        handle.add_done_callback(_consume_exception)
        return handle

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return

        async with self._load_lock:
            if self._loaded:
                return

            snapshot = await self.storage.load()
            for key, items in snapshot.items():
                lane = self._lane(key)
                for item in items:
                    item.state = QueueItemState.PENDING
                    lane.items.append(item)
                    lane.handles[item.id] = self._new_handle()

            self._loaded = True
            if snapshot:
                logger.info(
                    "Loaded persisted queue items",
                    queue=self.name,
                    lanes=len(snapshot),
                    items=sum(len(items) for items in snapshot.values()),
                )

    def _schedule(self, lane: _Lane) -> None:
        if not lane.items or lane.stalled or lane.removing:
            return
        if lane.task is not None and not lane.task.done():
            return
        lane.task = asyncio.create_task(self._drain(lane), name=f"{self.name}:{lane.key}")

    async def _retire(self, lane: _Lane) -> None:
        lane.removing = True
        task = lane.task
        if task is None or task.done():
            return

        if task is asyncio.current_task():
            # cleared from inside its own worker; the drain loop exits after this item
            return

        if not lane.in_flight:
            task.cancel()
        await asyncio.wait([task])

    async def _drain(self, lane: _Lane) -> None:
        while self._started and lane.items and not lane.stalled and not lane.removing:
            item = lane.items[0]
            try:
                result = await self._process(lane, item)
            except asyncio.CancelledError:
                item.state = QueueItemState.PENDING
                raise
            except _LaneInterrupted:
                item.state = QueueItemState.PENDING
                return
            except _LaneStalled as stall:
                await self._stall(lane, item, stall.error)
                return

            await self.storage.remove(lane.key, item.id)
            if lane.items and lane.items[0].id == item.id:
                lane.items.popleft()

            handle = lane.handles.pop(item.id, None)
            if handle is not None and not handle.done():
                handle.set_result(result)

            logger.debug(
                "Item processed", queue=self.name, key=lane.key, item_id=item.id, attempts=item.attempts
            )

    async def _process(self, lane: _Lane, item: QueueItem) -> Any:
        while True:
            item.attempts += 1
            item.state = QueueItemState.ACTIVE
            lane.in_flight = True
            try:
                return await self.worker(lane.key, item.payload)
            except asyncio.CancelledError:
                raise
            except Exception as err:
                error = developer(err) if isinstance(err, PROGRAMMING_ERRORS) else err
            finally:
                lane.in_flight = False

            item.last_error = str(error) or error.__class__.__name__
            if lane.removing or not self._started:
                raise _LaneInterrupted()

            if not self._retryable(lane, item, error):
                raise _LaneStalled(error)

            if self.max_attempts is not None and item.attempts >= self.max_attempts:
                raise _LaneStalled(MaxAttemptsExceededError(item.attempts, error))

            delay = self.backoff.delay(item.attempts)
            logger.warning(
                "Queue item failed, retrying",
                queue=self.name,
                key=lane.key,
                item_id=item.id,
                attempt=item.attempts,
                delay=delay,
                error=item.last_error,
            )

            item.state = QueueItemState.PENDING
            await self.storage.update(lane.key, item)
            await asyncio.sleep(delay)

    def _retryable(self, lane: _Lane, item: QueueItem, error: BaseException) -> bool:
        if isinstance(error, DeveloperError):
            return False

        context = RetryContext(
            action=self.name,
            key=lane.key,
            payload=item.payload,
            error=error,
            attempts=item.attempts,
        )
        try:
            return bool(self.should_retry(context))
        except Exception as e:
            logger.error("Retry predicate failed", queue=self.name, key=lane.key, error=str(e))
            return False

    async def _stall(self, lane: _Lane, item: QueueItem, error: BaseException) -> None:
        lane.stalled = True
        item.state = QueueItemState.STALLED
        await self.storage.update(lane.key, item)

        log_stall(self.name, lane.key, item.id, item.last_error or str(error), item.attempts)

        error = for_action(error, self.name)
        handle = lane.handles.pop(item.id, None)
        if handle is not None and not handle.done():
            handle.set_exception(error)

        if self.on_error is not None:
            try:
                self.on_error(error, item)
            except Exception as e:
                logger.error("Queue error callback failed", queue=self.name, error=str(e))
