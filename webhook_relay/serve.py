"""FastAPI application for the webhook relay.

The lifespan starts the forwarder and monitor on startup and, on shutdown,
stops them (letting an in-progress batch drain) and closes HTTP clients.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from webhook_relay import __version__
from webhook_relay.config import Settings, configure_logging
from webhook_relay.pipeline.assembly import Pipeline, build_pipeline
from webhook_relay.routes.operations import router as operations_router
from webhook_relay.webhooks.handlers import register_webhook_routes

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    pipeline: Pipeline | None = None,
    *,
    run_workers: bool = True,
) -> FastAPI:
    """Build the app around one shared Pipeline.

    ``run_workers=False`` skips the background forwarder/monitor so tests can
    drive ``pipeline.forwarder.process_batch()`` directly.
    """
    settings = settings or (pipeline.settings if pipeline is not None else Settings())
    pipeline = pipeline or build_pipeline(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_workers:
            await pipeline.start()
        logger.info("Webhook relay %s ready", __version__)
        try:
            yield
        finally:
            if run_workers:
                await pipeline.stop()
            await pipeline.aclose()
            logger.info("Webhook relay shut down")

    app = FastAPI(title="Webhook Relay", version=__version__, lifespan=lifespan)
    app.state.pipeline = pipeline

    register_webhook_routes(app)
    app.include_router(operations_router)
    return app


def main() -> None:
    import uvicorn

    settings = Settings()
    configure_logging(settings.log_level)
    if not settings.shopify_webhook_secret:
        logger.warning("SHOPIFY_WEBHOOK_SECRET is not set; all webhooks will be rejected")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
