"""
Seal reconciliation: tracks ledger anchoring requests per link.

    seal(link) -- duplicate check, record "requested", enqueue push
        |
    push worker -- ledger seal(link) accepted -> "pushed", emit "push"
        |
    onwrote(link, tx_id) -- broadcast by the ledger -> "written", emit "wrote",
        |                   run "wroteseal" hooks
    onread(link, tx_id, confirmations) -- observed on chain -> "confirmed",
                                          emit "read", run "readseal" hooks

Pushes go through one global persistent queue, so they inherit the same
retry, backoff and stall semantics as message sends.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from botcore.errors import (
    DuplicateSealRequestError,
    HookError,
    NotFoundError,
    SealTransitionError,
    ValidationError,
    for_action,
    is_duplicate_error,
    is_not_found_error,
)
from botcore.events import EventEmitter
from botcore.hooks import HookPipeline
from botcore.infrastructure.observability.logging import get_logger
from botcore.models.domain.queue_domain import RetryContext
from botcore.models.domain.seal_domain import Seal, SealStatus
from botcore.queues.backoff import BackoffPolicy
from botcore.queues.engine import PersistentQueues
from botcore.storage.base import KeyValueStorage, QueueStorage

logger = get_logger(__name__)

SEAL_QUEUE_KEY = "seals"

LedgerSeal = Callable[[str], Awaitable[Any]]


def default_seal_should_retry(context: RetryContext) -> bool:
    err = context.error
    return not (is_not_found_error(err) or is_duplicate_error(err))


class SealManager(EventEmitter):
    """
    Args:
        seal: Ledger function requesting submission of a link
        records: Storage for seal records, keyed by link
        queue_storage: Storage for the global push queue
        hooks: Pipeline running "wroteseal" and "readseal"
        should_retry: Retry predicate for failed pushes
        backoff: Delay policy between push retries
        max_attempts: Optional cap on push attempts
        reseal_confirmed: Allow a new request for a link whose seal is confirmed
        on_error: Called with (error, item) when the push queue stalls or a seal hook fails
    """

    def __init__(
        self,
        seal: LedgerSeal | None,
        records: KeyValueStorage,
        queue_storage: QueueStorage,
        hooks: HookPipeline,
        should_retry=None,
        backoff: BackoffPolicy | None = None,
        max_attempts: int | None = None,
        reseal_confirmed: bool = True,
        on_error=None,
    ):
        super().__init__()
        self._seal = seal
        self._records = records
        self.hooks = hooks
        self.reseal_confirmed = reseal_confirmed
        self.on_error = on_error
        self._lock = asyncio.Lock()
        self.queue = PersistentQueues(
            name="seal",
            worker=self._push,
            storage=queue_storage,
            should_retry=should_retry or default_seal_should_retry,
            backoff=backoff,
            max_attempts=max_attempts,
            on_error=on_error,
        )

    # =================================================================
    # Requests
    # =================================================================

    async def seal(self, link: str) -> asyncio.Future:
        """
        Request anchoring of `link`.

        Returns once the push is queued. The returned handle resolves when the
        push is accepted by the ledger; confirmation arrives later via onwrote
        and onread.

        Raises:
            DuplicateSealRequestError: a seal for this link is still in progress
        """
        if not isinstance(link, str) or not link:
            raise ValidationError('expected string "link"')
        if self._seal is None:
            raise ValidationError("no ledger seal function configured")

        async with self._lock:
            existing = await self._load(link)
            if existing is not None and (
                existing.pending or existing.pending_hook or not self.reseal_confirmed
            ):
                raise DuplicateSealRequestError(link)

            if existing is not None:
                logger.info("Re-anchoring confirmed seal", link=link, tx_id=existing.tx_id)

            record = Seal(link=link)
            await self._store(record)

        logger.info("Seal requested", link=link)
        return await self.queue.enqueue(SEAL_QUEUE_KEY, {"link": link})

    async def _push(self, key: str, payload: dict[str, Any]) -> Seal:
        link = payload["link"]
        record = await self._load(link)
        if record is None:
            raise NotFoundError(f"seal for link {link} not found")

        if record.status == SealStatus.REQUESTED:
            await self._seal(link)
            record = record.advance(SealStatus.PUSHED)
            await self._store(record)
            logger.info("Seal pushed", link=link)
            self.emit("push", record)
        return record

    # =================================================================
    # Ledger notifications
    # =================================================================

    async def onwrote(self, link: str, tx_id: str) -> Seal:
        """
        The ledger broadcast the anchoring transaction.

        A repeat with the same tx is a no-op unless the "wroteseal" hooks of
        the first delivery failed, in which case they run again.
        """
        record = await self.get(link)

        if record.status in (SealStatus.WRITTEN, SealStatus.CONFIRMED):
            if record.tx_id != tx_id:
                raise SealTransitionError(
                    f"seal {link} already written with tx {record.tx_id}, got {tx_id}",
                    action="wroteseal",
                )
            if record.pending_hook == "wroteseal":
                logger.info("Re-running seal hooks", link=link, hook_event="wroteseal")
                return await self._run_hooks("wroteseal", record)
            logger.debug("Duplicate write notification", link=link, tx_id=tx_id)
            return record

        record = for_transition(record, SealStatus.WRITTEN, "wroteseal")
        record.tx_id = tx_id
        record.pending_hook = "wroteseal"
        await self._store(record)

        logger.info("Seal written", link=link, tx_id=tx_id)
        self.emit("wrote", record)
        return await self._run_hooks("wroteseal", record)

    async def onread(self, link: str, tx_id: str, confirmations: int) -> Seal:
        """The ledger observed the anchoring transaction on chain."""
        if not isinstance(confirmations, int) or confirmations < 0:
            raise ValidationError('expected non-negative integer "confirmations"')

        record = await self.get(link)
        if record.tx_id is not None and record.tx_id != tx_id:
            raise SealTransitionError(
                f"seal {link} was written with tx {record.tx_id}, got {tx_id}", action="readseal"
            )

        if record.pending_hook == "wroteseal":
            # hooks of the earlier transition go first
            record = await self._run_hooks("wroteseal", record)

        if record.status == SealStatus.CONFIRMED:
            if confirmations > record.confirmations:
                record.confirmations = confirmations
                record.updated_at = datetime.now(UTC)
                await self._store(record)
                logger.debug("Seal confirmations updated", link=link, confirmations=confirmations)
            if record.pending_hook == "readseal":
                logger.info("Re-running seal hooks", link=link, hook_event="readseal")
                return await self._run_hooks("readseal", record)
            return record

        record = for_transition(record, SealStatus.CONFIRMED, "readseal")
        record.confirmations = confirmations
        record.pending_hook = "readseal"
        await self._store(record)

        logger.info("Seal confirmed", link=link, tx_id=tx_id, confirmations=confirmations)
        self.emit("read", record)
        return await self._run_hooks("readseal", record)

    # =================================================================
    # Introspection
    # =================================================================

    async def get(self, link: str) -> Seal:
        record = await self._load(link)
        if record is None:
            raise NotFoundError(f"seal for link {link} not found")
        return record

    async def list(self) -> list[Seal]:
        return [Seal.model_validate(raw) for _, raw in await self._records.items()]

    def queued(self) -> int:
        return self.queue.queued(SEAL_QUEUE_KEY)

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()

    async def _run_hooks(self, event: str, record: Seal) -> Seal:
        """Run sequential seal hooks; the record keeps `pending_hook` until they all succeed."""
        try:
            await self.hooks.run(event, record)
        except HookError as e:
            if self.on_error is not None:
                self.on_error(for_action(e, event), None)
            raise

        record.pending_hook = None
        await self._store(record)
        return record

    async def _load(self, link: str) -> Seal | None:
        raw = await self._records.get(link)
        return Seal.model_validate(raw) if raw is not None else None

    async def _store(self, record: Seal) -> None:
        await self._records.put(record.link, record.model_dump(mode="json"))


def for_transition(record: Seal, status: SealStatus, action: str) -> Seal:
    try:
        return record.advance(status)
    except SealTransitionError as e:
        raise for_action(e, action) from None
