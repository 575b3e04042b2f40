from fastapi import Request

from listing_sync.services.listing_sync_service import ListingSyncService
from listing_sync.services.webhook_service import WebhookService


def get_sync_service(request: Request) -> ListingSyncService:
    """The process-wide sync service created in the app lifespan."""
    return request.app.state.sync_service


def get_webhook_service(request: Request) -> WebhookService:
    return request.app.state.webhook_service
