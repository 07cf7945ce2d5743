# botcore/routes/webhooks.py
"""
Provider and ledger callbacks.

- POST /message             inbound message wrapper, queued for processing
- POST /seals               request anchoring of a link
- POST /seals/wrote         ledger broadcast the anchoring transaction
- POST /seals/read          ledger observed the transaction on chain
- GET  /seals/{link}        current seal record
- GET  /queued              queue depths per action and key
- GET  /users/{user_id}/history
"""

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from botcore.errors import (
    BotError,
    DeveloperError,
    DuplicateError,
    NotFoundError,
    SealTransitionError,
    ValidationError,
)
from botcore.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Webhooks"])


class SealRequest(BaseModel):
    link: str


class SealWroteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    link: str
    tx_id: str = Field(alias="txId")


class SealReadRequest(SealWroteRequest):
    confirmations: int = Field(default=0, ge=0)


def _http_error(e: BotError) -> HTTPException:
    """Map a bot error to the HTTP status the caller should see."""
    if isinstance(e, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(e, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, DuplicateError | SealTransitionError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, DeveloperError):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HTTPException(
        status_code=code,
        detail={"error": e.__class__.__name__, "message": str(e), "action": e.action},
    )


@router.post("/message", status_code=status.HTTP_202_ACCEPTED)
async def receive_message(request: Request, wrapper: dict[str, Any] = Body(...)):
    """Queue an inbound message. Returns once the message is persisted."""
    bot = request.app.state.bot
    try:
        await bot.receive(wrapper)
    except BotError as e:
        logger.warning("Rejected inbound message", error=str(e))
        raise _http_error(e) from e

    return {"queued": True, "author": wrapper["author"]}


@router.post("/seals", status_code=status.HTTP_202_ACCEPTED)
async def request_seal(request: Request, body: SealRequest):
    """Queue anchoring of a link on the ledger."""
    try:
        await request.app.state.bot.seal(body.link)
    except BotError as e:
        raise _http_error(e) from e
    return {"queued": True, "link": body.link}


@router.post("/seals/wrote")
async def seal_wrote(request: Request, body: SealWroteRequest):
    bot = request.app.state.bot
    try:
        record = await bot.seals.onwrote(body.link, body.tx_id)
    except BotError as e:
        raise _http_error(e) from e
    return record.model_dump(mode="json")


@router.post("/seals/read")
async def seal_read(request: Request, body: SealReadRequest):
    bot = request.app.state.bot
    try:
        record = await bot.seals.onread(body.link, body.tx_id, body.confirmations)
    except BotError as e:
        raise _http_error(e) from e
    return record.model_dump(mode="json")


@router.get("/seals/{link}")
async def get_seal(request: Request, link: str):
    try:
        record = await request.app.state.bot.seals.get(link)
    except BotError as e:
        raise _http_error(e) from e
    return record.model_dump(mode="json")


@router.get("/queued")
async def queued(request: Request):
    return request.app.state.bot.queued()


@router.get("/users/{user_id}/history")
async def user_history(request: Request, user_id: str):
    user = await request.app.state.bot.users.get(user_id)
    if user is None:
        raise _http_error(NotFoundError(f"user {user_id} not found"))
    return {"user_id": user_id, "history": user.history}
