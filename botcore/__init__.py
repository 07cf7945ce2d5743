"""
botcore: durable per-user message processing for provider bots.

Outbound sends, inbound messages and ledger seal requests are persisted
before they are acknowledged, processed in FIFO order per user, retried
with exponential backoff and resumed after restarts.
"""

from botcore.bot import Bot, create_bot
from botcore.config import Settings
from botcore.errors import (
    BotError,
    DeveloperError,
    DuplicateError,
    DuplicateSealRequestError,
    HookError,
    NotFoundError,
    SealTransitionError,
    TransientTransportError,
    UnknownUserError,
    ValidationError,
)
from botcore.services.provider_client import ProviderClient

__version__ = "0.1.0"

__all__ = [
    "Bot",
    "BotError",
    "DeveloperError",
    "DuplicateError",
    "DuplicateSealRequestError",
    "HookError",
    "NotFoundError",
    "ProviderClient",
    "SealTransitionError",
    "Settings",
    "TransientTransportError",
    "UnknownUserError",
    "ValidationError",
    "create_bot",
]
