"""
Named notifications for external observers (strategies, monitoring).

Events never drive control flow inside the runtime; completion is reported
through the handles returned by enqueue operations.
"""

import asyncio
import inspect
from collections.abc import Callable
from typing import Any

from botcore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}
        self._tasks: set[asyncio.Task] = set()

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        def wrapper(*args, **kwargs):
            self.off(event, wrapper)
            return listener(*args, **kwargs)

        wrapper.listener = listener
        return self.on(event, wrapper)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        for registered in list(listeners):
            if registered is listener or getattr(registered, "listener", None) is listener:
                listeners.remove(registered)
                return

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def emit(self, event: str, *args: Any) -> bool:
        """
        Call every listener of `event`. Coroutine listeners are scheduled as
        tasks. A failing listener is logged and does not affect the others.

        Returns:
            True if the event had listeners.
        """
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                result = listener(*args)
            except Exception as e:
                logger.error("Event listener failed", emitted_event=event, error=str(e))
                continue

            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._listener_done(event))

        return bool(listeners)

    def _listener_done(self, event: str) -> Callable[[asyncio.Future], None]:
        def done(task: asyncio.Future) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Event listener failed", emitted_event=event, error=str(task.exception())
                )

        return done

    def wait_for(self, event: str) -> asyncio.Future:
        """Future resolved with the arguments of the next `event` emission."""
        future = asyncio.get_running_loop().create_future()

        def resolve(*args):
            if not future.done():
                future.set_result(args[0] if len(args) == 1 else args)

        self.once(event, resolve)
        return future
