"""
Receiver: worker of the per-user receive queues.

prereceive veto -> history append -> "receive" handlers -> "postreceive"
handlers -> "message" notification.

A failing handler is a bug in strategy code. The error is reported as a
developer error and the user's receive lane stalls, so the same message is
handled again, first, once the code is fixed and the queue restarted.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from botcore.errors import HookError, developer, for_action, is_developer_error
from botcore.events import EventEmitter
from botcore.hooks import HookPipeline
from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.message_domain import mark_inbound, wrapper_link
from botcore.models.domain.queue_domain import RetryContext, Skipped
from botcore.models.domain.user_domain import User
from botcore.services.user_service import UserStore

logger = get_logger(__name__)

# payload flag set once the inbound wrapper is in the user's history
RECORDED = "recorded"

Checkpoint = Callable[[str], Awaitable[None]]


def default_receive_should_retry(context: RetryContext) -> bool:
    return not is_developer_error(context.error)


class ReceiveContext:
    """What prereceive, receive and postreceive hooks see."""

    def __init__(self, user: User, wrapper: dict[str, Any]):
        message = wrapper.get("object") or {}
        self.user = user
        self.link = wrapper_link(wrapper)
        self.message = message
        self.object = message.get("object")
        self.raw = wrapper

    def __repr__(self) -> str:
        return f"ReceiveContext(user={self.user.id!r}, link={self.link!r})"


class Receiver(EventEmitter):
    def __init__(
        self,
        users: UserStore,
        hooks: HookPipeline,
        notify: EventEmitter,
        checkpoint: Checkpoint | None = None,
    ):
        super().__init__()
        self.users = users
        self.hooks = hooks
        self.notify = notify
        self.checkpoint = checkpoint

    async def __call__(self, user_id: str, payload: dict[str, Any]) -> Any:
        wrapper = payload["wrapper"]
        user = await self.users.ensure(user_id)

        context = ReceiveContext(user, wrapper)
        if not await self.hooks.veto("prereceive", context):
            logger.info("Receive skipped by prereceive hook", user_id=user_id)
            self.emit("skip", context)
            return Skipped(event="prereceive")

        logger.debug("Receiving a message", user_id=user_id)
        inbound = mark_inbound(wrapper)
        if payload.get(RECORDED):
            # retried after a stall, this item is already in the history
            user.history = await self.users.history.get(user_id)
        else:
            user.history = await self.users.append_history(user_id, inbound)
            payload[RECORDED] = True
            if self.checkpoint is not None:
                await self.checkpoint(user_id)
        context = ReceiveContext(user, inbound)

        try:
            await self.hooks.run("receive", context)
            await self.hooks.run("postreceive", context)
        except HookError as e:
            logger.error(
                "Error receiving message due to error in strategy, pausing receive for user",
                user_id=user_id,
                hook_event=e.event,
                error=str(e.cause),
            )
            raise for_action(developer(e), "receive")

        logger.info("Message received", user_id=user_id, link=context.link)
        self.notify.emit("message", context)
        return context

