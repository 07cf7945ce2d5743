"""
Reliable sender: worker of the per-user send queues.

presend veto -> transport -> history append -> "sent" notification.
"""

from collections.abc import Awaitable, Callable
from typing import Any

from botcore.errors import is_duplicate_error, is_not_found_error, is_unknown_user_error
from botcore.events import EventEmitter
from botcore.hooks import HookPipeline
from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.queue_domain import RetryContext, Skipped
from botcore.models.domain.user_domain import User
from botcore.services.user_service import UserStore

logger = get_logger(__name__)

Transport = Callable[[str, dict[str, Any]], Awaitable[Any]]


def default_send_should_retry(context: RetryContext) -> bool:
    """Retry everything except failures that are permanent for this message."""
    err = context.error
    return not (is_not_found_error(err) or is_duplicate_error(err) or is_unknown_user_error(err))


class SendContext:
    """What presend hooks see."""

    def __init__(self, user: User, object: dict[str, Any]):
        self.user = user
        self.object = object

    def __repr__(self) -> str:
        return f"SendContext(user={self.user.id!r})"


class ReliableSender(EventEmitter):
    def __init__(
        self,
        transport: Transport,
        users: UserStore,
        hooks: HookPipeline,
        notify: EventEmitter,
    ):
        super().__init__()
        self.transport = transport
        self.users = users
        self.hooks = hooks
        self.notify = notify

    async def __call__(self, user_id: str, payload: dict[str, Any]) -> Any:
        obj = payload["object"]
        user = await self.users.ensure(user_id)

        context = SendContext(user, obj)
        if not await self.hooks.veto("presend", context):
            logger.info("Send skipped by presend hook", user_id=user_id)
            self.emit("skip", context)
            return Skipped(event="presend")

        logger.debug("Sending message", user_id=user_id)
        record = await self.transport(user_id, obj)
        if record is None:
            record = {"object": obj}

        await self.users.append_history(user_id, record)
        logger.info("Message sent", user_id=user_id)

        self.notify.emit("sent", {"user": user, "object": obj, "record": record})
        return record
