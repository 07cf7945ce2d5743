from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field

from botcore.errors import SealTransitionError


class SealStatus(str, Enum):
    REQUESTED = "requested"
    PUSHED = "pushed"
    WRITTEN = "written"
    CONFIRMED = "confirmed"


SEAL_ORDER = [
    SealStatus.REQUESTED,
    SealStatus.PUSHED,
    SealStatus.WRITTEN,
    SealStatus.CONFIRMED,
]


class Seal(BaseModel):
    """Tracks one ledger anchoring request, keyed by the content link."""

    link: str
    status: SealStatus = SealStatus.REQUESTED
    tx_id: str | None = None
    confirmations: int = 0
    # sequential hook event still owed for the last transition
    pending_hook: str | None = None
    requested_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def pending(self) -> bool:
        return self.status != SealStatus.CONFIRMED

    def advance(self, status: SealStatus) -> "Seal":
        """Return a copy moved exactly one step forward to `status`."""
        current = SEAL_ORDER.index(self.status)
        target = SEAL_ORDER.index(status)
        if target != current + 1:
            raise SealTransitionError(
                f"cannot move seal {self.link} from {self.status.value} to {status.value}",
                action="seal",
            )

        return self.model_copy(update={"status": status, "updated_at": datetime.now(UTC)})
