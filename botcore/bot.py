"""
Bot runtime: wires users, queues, hooks and seals into one instance.

Usage:
    from botcore import create_bot

    async def send(user_id, object):
        ...  # deliver via the provider, return the delivery record

    bot = create_bot(send=send, seal=ledger_seal)
    bot.hook("receive", handle_message)
    await bot.start()

    handle = await bot.send("alice", "hi")   # queued durably
    record = await handle                    # delivered

Every bot owns its own hook lists, retry policies and storage, so several
bots can run side by side in one process.
"""

import asyncio
from collections.abc import Callable
from typing import Any

from botcore.config import Settings
from botcore.config import settings as default_settings
from botcore.errors import ValidationError, for_action
from botcore.events import EventEmitter
from botcore.hooks import HookPipeline
from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.message_domain import normalize_outbound, validate_wrapper
from botcore.models.domain.queue_domain import QueueItem
from botcore.queues.backoff import BackoffPolicy
from botcore.queues.engine import PersistentQueues, ShouldRetry
from botcore.services.receiver import Receiver, default_receive_should_retry
from botcore.services.seal_service import LedgerSeal, SealManager
from botcore.services.sender import ReliableSender, Transport, default_send_should_retry
from botcore.services.shared_service import SharedStore
from botcore.services.strategy_service import Strategy, StrategyManager
from botcore.services.user_service import UserStore
from botcore.storage import StorageFactory

logger = get_logger(__name__)

DEFAULT_SHOULD_RETRY: dict[str, ShouldRetry] = {
    "send": default_send_should_retry,
    "receive": default_receive_should_retry,
}


class Bot(EventEmitter):
    """
    Args:
        send: Transport function delivering an object to a user
        seal: Ledger function requesting anchoring of a link
        settings: Runtime settings (storage, backoff, autostart)
        should_retry: Per-action retry predicates ("send", "receive", "seal")
        storage: Storage factory, built from settings when omitted
    """

    def __init__(
        self,
        send: Transport,
        seal: LedgerSeal | None = None,
        settings: Settings | None = None,
        should_retry: dict[str, ShouldRetry] | None = None,
        storage: StorageFactory | None = None,
    ):
        super().__init__()
        if not callable(send):
            raise ValidationError('expected function "send"')

        self.settings = settings or default_settings
        self.storage = storage or StorageFactory(self.settings)
        policies = {**DEFAULT_SHOULD_RETRY, **(should_retry or {})}
        backoff = BackoffPolicy(**self.settings.backoff_config())

        self.on("error", self._log_error)

        self.hooks = HookPipeline()

        self.users = UserStore(self.storage.kv("users"), self.storage.kv("history"))
        self.users.set_purge(self._purge_user_queues)
        for event in ("create", "update", "delete", "clear"):
            self.users.on(event, self._forward("user:" + event))

        self.shared = SharedStore(self.storage.kv("shared"))

        self.sender = ReliableSender(send, self.users, self.hooks, notify=self)
        self.receiver = Receiver(self.users, self.hooks, notify=self)

        self.sends = PersistentQueues(
            name="send",
            worker=self.sender,
            storage=self.storage.queue("send"),
            should_retry=policies["send"],
            backoff=backoff,
            max_attempts=self.settings.max_attempts,
            on_error=self._report("send"),
        )
        self.receives = PersistentQueues(
            name="receive",
            worker=self.receiver,
            storage=self.storage.queue("receive"),
            should_retry=policies["receive"],
            backoff=backoff,
            max_attempts=self.settings.max_attempts,
            on_error=self._report("receive"),
        )
        self.receiver.checkpoint = self.receives.checkpoint

        self.seals = SealManager(
            seal=seal,
            records=self.storage.kv("seals"),
            queue_storage=self.storage.queue("seal"),
            hooks=self.hooks,
            should_retry=policies.get("seal"),
            backoff=backoff,
            max_attempts=self.settings.max_attempts,
            reseal_confirmed=self.settings.reseal_confirmed,
            on_error=self._report("seal"),
        )
        for event in ("push", "wrote", "read"):
            self.seals.on(event, self._forward("seal:" + event))

        self.strategies = StrategyManager(self)
        self._started = False
        self._start_lock = asyncio.Lock()

    # =================================================================
    # Lifecycle
    # =================================================================

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start processing send, receive and seal queues. Idempotent."""
        async with self._start_lock:
            if self._started:
                return
            self._started = True
            await self.sends.start()
            await self.receives.start()
            await self.seals.start()
            logger.info("Bot started", storage=self.storage.backend)

    async def stop(self) -> None:
        """Stop processing. Queued items stay persisted for the next start."""
        async with self._start_lock:
            if not self._started:
                return
            self._started = False
            await self.sends.stop()
            await self.receives.stop()
            await self.seals.stop()
            logger.info("Bot stopped")

    async def close(self) -> None:
        await self.stop()
        self.strategies.clear()
        await self.storage.close()

    async def __aenter__(self) -> "Bot":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def _autostart(self) -> None:
        if self.settings.autostart and not self._started:
            await self.start()

    # =================================================================
    # Enqueue operations
    # =================================================================

    async def send(self, user_id: str, object: str | dict[str, Any]) -> asyncio.Future:
        """
        Queue `object` for delivery to `user_id`.

        Returns:
            Handle resolved with the delivery record (or a Skipped marker when
            a presend hook vetoes the send).

        Raises:
            ValidationError: malformed input, nothing is queued
        """
        if not isinstance(user_id, str) or not user_id:
            raise ValidationError('expected string "userId"')

        obj = normalize_outbound(object)
        await self.users.ensure(user_id)
        handle = await self.sends.enqueue(user_id, {"object": obj})
        await self._autostart()
        return handle

    async def receive(self, wrapper: dict[str, Any]) -> asyncio.Future:
        """
        Queue an inbound message wrapper for processing.

        Raises:
            ValidationError: malformed wrapper, nothing is queued
        """
        validate_wrapper(wrapper)
        user_id = wrapper["author"]
        await self.users.ensure(user_id)
        handle = await self.receives.enqueue(user_id, {"wrapper": wrapper})
        await self._autostart()
        return handle

    async def seal(self, link: str) -> asyncio.Future:
        handle = await self.seals.seal(link)
        await self._autostart()
        return handle

    # =================================================================
    # Hooks, strategies, introspection
    # =================================================================

    def hook(self, event: str, handler: Callable[..., Any]) -> Callable[[], bool]:
        return self.hooks.register(event, handler)

    def use(self, strategy: Strategy, *args: Any, **kwargs: Any) -> Callable[[], None]:
        return self.strategies.use(strategy, *args, **kwargs)

    def queued(self) -> dict[str, Any]:
        return {
            "send": self.sends.queued(),
            "receive": self.receives.queued(),
            "seal": self.seals.queued(),
        }

    def stalled(self) -> dict[str, list[str]]:
        return {
            "send": self.sends.stalled(),
            "receive": self.receives.stalled(),
            "seal": self.seals.queue.stalled(),
        }

    # =================================================================
    # Internals
    # =================================================================

    async def _purge_user_queues(self, user_id: str | None) -> None:
        await self.sends.clear(user_id)
        await self.receives.clear(user_id)

    def _forward(self, event: str) -> Callable[..., None]:
        def forward(*args: Any) -> None:
            self.emit(event, *args)

        return forward

    def _report(self, action: str) -> Callable[[BaseException, QueueItem | None], None]:
        def report(error: BaseException, item: QueueItem | None) -> None:
            if getattr(error, "action", None) is None:
                for_action(error, action)
            self.emit("error", error)

        return report

    def _log_error(self, error: BaseException) -> None:
        logger.error(
            "Bot experienced error",
            action=getattr(error, "action", None),
            error_type=error.__class__.__name__,
            error=str(error),
        )


def create_bot(
    send: Transport,
    seal: LedgerSeal | None = None,
    settings: Settings | None = None,
    should_retry: dict[str, ShouldRetry] | None = None,
    **overrides: Any,
) -> Bot:
    """
    Create a bot runner.

    Args:
        send: Function delivering a message to the provider
        seal: Function asking the provider to seal a link on the ledger
        settings: Base settings; defaults to the environment-derived settings
        should_retry: Retry predicates per action, merged over the defaults
        **overrides: Settings fields to override (e.g. storage_dir, autostart)
    """
    settings = settings or default_settings
    if overrides:
        settings = settings.model_copy(update=overrides)
    return Bot(send=send, seal=seal, settings=settings, should_retry=should_retry)
