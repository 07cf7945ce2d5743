# botcore/main.py
"""
Webhook application: exposes a bot to the provider and the ledger over HTTP.

    bot = create_bot(send=provider.send, seal=provider.seal)
    app = create_app(bot)

Run standalone against the provider at BOT_PROVIDER_URL with:

    python -m botcore.main
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from botcore.bot import Bot, create_bot
from botcore.config import settings
from botcore.infrastructure.observability.logging import get_logger, setup_logging
from botcore.routes import health, webhooks
from botcore.services.provider_client import ProviderClient

setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


def create_app(bot: Bot, provider: ProviderClient | None = None) -> FastAPI:
    """
    Build the webhook app around `bot`.

    Args:
        bot: Bot to start on startup and stop on shutdown
        provider: Provider client to close on shutdown, if the app owns one
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting", environment=bot.settings.environment)
        await bot.start()

        yield

        logger.info("Application shutting down")
        shutdown_errors = []

        try:
            await bot.close()
        except Exception as e:
            logger.error("Error closing bot", error=str(e))
            shutdown_errors.append(f"Bot: {e}")

        if provider is not None:
            try:
                await provider.close()
            except Exception as e:
                logger.error("Error closing provider client", error=str(e))
                shutdown_errors.append(f"Provider: {e}")

        if shutdown_errors:
            logger.warning("Some services had shutdown errors", errors=shutdown_errors)
        else:
            logger.info("All services closed successfully")

    app = FastAPI(
        title="botcore",
        description="Durable message and seal processing for provider bots",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.bot = bot

    app.include_router(health.router)
    app.include_router(webhooks.router)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        logger.info(
            "HTTP request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    return app


def _default_app() -> FastAPI:
    provider_url = settings.normalized_provider_url()
    if provider_url is None:
        raise RuntimeError("BOT_PROVIDER_URL is not set")

    provider = ProviderClient(provider_url, timeout=settings.provider_timeout)
    bot = create_bot(send=provider.send, seal=provider.seal, settings=settings)
    return create_app(bot, provider=provider)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(_default_app(), host="0.0.0.0", port=8000)
