from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class User(BaseModel):
    """A counterparty of the bot, created lazily on first reference."""

    model_config = ConfigDict(extra="allow")

    id: str
    profile: dict[str, Any] = Field(default_factory=dict)
    state: dict[str, Any] = Field(default_factory=dict)

    # Hydrated from the history log, never persisted with the record
    history: list[dict[str, Any]] = Field(default_factory=list)

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"history"})
