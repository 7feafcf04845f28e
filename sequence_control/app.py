"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sequence_control.routers import contacts, sequences, webhooks

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    from sequence_control.config import DISPATCH_INTERVAL_SECONDS
    from sequence_control.scheduler import scheduler

    try:
        scheduler.start()
        logger.info("Scheduler started, dispatching sequences every %ds", DISPATCH_INTERVAL_SECONDS)
    except Exception as e:
        logger.warning("Scheduler failed to start: %s", e)

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)

    from sequence_control.services.messenger import get_messenger
    messenger = get_messenger()
    if hasattr(messenger, "aclose"):
        await messenger.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Sequence Control",
        description="Hashtag-triggered chat sequences: enrollment, cancellation and dispatch.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", include_in_schema=False)
    async def health():
        return {"status": "ok"}

    for r in [webhooks, sequences, contacts]:
        app.include_router(r.router)

    return app
