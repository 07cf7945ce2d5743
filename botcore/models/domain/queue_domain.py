from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class QueueItemState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    STALLED = "stalled"


class QueueItem(BaseModel):
    """A unit of work owned by one lane of a persistent queue."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    key: str
    payload: dict[str, Any]
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    state: QueueItemState = QueueItemState.PENDING
    last_error: str | None = None


class RetryContext(BaseModel):
    """What a retry predicate sees when a worker attempt fails."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: str
    key: str
    payload: dict[str, Any]
    error: BaseException
    attempts: int


class Skipped(BaseModel):
    """Result of an item whose action was vetoed by a hook."""

    reason: str = "vetoed"
    event: str
