# botcore/routes/health.py
"""Health check endpoint."""

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    """Report whether the bot is processing and how much work is queued."""
    bot = request.app.state.bot
    return {
        "status": "ok",
        "started": bot.started,
        "storage": bot.storage.backend,
        "queued": bot.queued(),
        "stalled": bot.stalled(),
    }
