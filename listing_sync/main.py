# listing_sync/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from listing_sync.core.config import get_settings
from listing_sync.core.logging_config import configure_logging
from listing_sync.routes import health, sync, webhooks
from listing_sync.scheduler import start_scheduler, stop_scheduler
from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    # One sync service per process so per-listing locks are shared
    sync_service = ListingSyncService(settings=settings)
    app.state.sync_service = sync_service
    app.state.webhook_service = WebhookService(sync_service.session_factory, sync_service=sync_service)

    await start_scheduler(sync_service, settings)
    logger.info(f"Listing sync service started ({settings.ENVIRONMENT})")
    try:
        yield
    finally:
        await stop_scheduler()


app = FastAPI(
    title="Marketplace Listing Sync",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(sync.router)
app.include_router(webhooks.router)
