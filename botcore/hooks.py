"""
Hook pipeline: the extension point for bot-specific behavior.

Events whose name starts with "pre" are veto events: handlers run in
registration order until one returns False, which cancels the action.
All other events are sequential: every handler runs, one at a time, and
the first failure aborts the pipeline with a HookError.
"""

import inspect
from collections.abc import Callable
from typing import Any

from botcore.errors import HookError, ValidationError
from botcore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

Handler = Callable[..., Any]

VETO_EVENTS = ("presend", "prereceive")
SEQUENTIAL_EVENTS = ("receive", "postreceive", "wroteseal", "readseal")
EVENTS = VETO_EVENTS + SEQUENTIAL_EVENTS


def is_veto_event(event: str) -> bool:
    return event.startswith("pre")


async def _call(handler: Handler, context: Any) -> Any:
    result = handler(context)
    if inspect.isawaitable(result):
        result = await result
    return result


class HookPipeline:
    def __init__(self, events: tuple[str, ...] = EVENTS):
        self._handlers: dict[str, list[Handler]] = {event: [] for event in events}

    def _list(self, event: str) -> list[Handler]:
        try:
            return self._handlers[event]
        except KeyError:
            raise ValidationError(
                f"unknown hook event '{event}', expected one of: {', '.join(self._handlers)}"
            ) from None

    def register(self, event: str, handler: Handler) -> Callable[[], bool]:
        """
        Register a handler for an event.

        Returns:
            Function that unregisters the handler; it returns False if the
            handler was already removed.
        """
        if not callable(handler):
            raise ValidationError("hook handler must be callable")

        handlers = self._list(event)
        handlers.append(handler)

        def unregister() -> bool:
            try:
                handlers.remove(handler)
            except ValueError:
                return False
            return True

        return unregister

    __call__ = register

    def handlers(self, event: str) -> list[Handler]:
        return list(self._list(event))

    async def veto(self, event: str, context: Any) -> bool:
        """
        Run veto handlers.

        Returns:
            True if the action may proceed, False if a handler cancelled it.
        """
        if not is_veto_event(event):
            raise ValidationError(f"'{event}' is not a veto event")

        for handler in list(self._list(event)):
            try:
                result = await _call(handler, context)
            except Exception as e:
                logger.error("Veto hook failed", hook_event=event, error=str(e))
                raise HookError(event, e) from e

            if result is False:
                logger.info("Action vetoed by hook", hook_event=event)
                return False
        return True

    async def run(self, event: str, context: Any) -> None:
        """Run sequential handlers in registration order, stopping at the first failure."""
        if is_veto_event(event):
            raise ValidationError(f"'{event}' is a veto event")

        for handler in list(self._list(event)):
            try:
                await _call(handler, context)
            except Exception as e:
                logger.error(
                    "Hook handler failed",
                    hook_event=event,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )
                raise HookError(event, e) from e
