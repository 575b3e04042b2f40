import base64
import hashlib
import hmac
import json
import logging
from typing import Optional

import xmltodict
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from listing_sync.core.config import Settings, get_settings
from listing_sync.core.enums import MarketplaceType
from listing_sync.core.exceptions import AccountNotFoundError, ListingNotFoundError, UnsupportedOperation
from listing_sync.dependencies import get_webhook_service
from listing_sync.services.webhook_service import WebhookService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

# Marketplace -> (signature header, settings attribute holding the HMAC key, digest encoder)
WEBHOOK_SIGNATURES = {
    MarketplaceType.EBAY: (
        "x-ebay-signature",
        "EBAY_WEBHOOK_SECRET",
        lambda digest: base64.b64encode(digest).decode(),
    ),
    MarketplaceType.FACEBOOK: (
        "X-Hub-Signature-256",
        "FACEBOOK_APP_SECRET",
        lambda digest: "sha256=" + digest.hex(),
    ),
}


class EbayChallenge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    challenge_code: Optional[str] = Field(default=None, alias="challengeCode")


def _resolve_marketplace(marketplace: str) -> MarketplaceType:
    try:
        return MarketplaceType(marketplace.upper())
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown marketplace {marketplace}")


async def verify_webhook_signature(
    marketplace: str,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """
    HMAC-SHA256 over the raw body, keyed with the marketplace's webhook secret.

    Fails closed: a marketplace that signs its webhooks but has no secret
    configured gets 503, never an unchecked pass-through.
    """
    marketplace_type = _resolve_marketplace(marketplace)
    scheme = WEBHOOK_SIGNATURES.get(marketplace_type)
    if scheme is None:
        return

    header, secret_setting, encode = scheme
    webhook_secret = getattr(settings, secret_setting)
    if not webhook_secret:
        logger.error(f"{secret_setting} not configured, rejecting {marketplace_type.value} webhook")
        raise HTTPException(status_code=503, detail="Webhook not configured")

    signature = request.headers.get(header)
    if not signature:
        logger.warning(f"{marketplace_type.value} webhook without {header} header rejected")
        raise HTTPException(status_code=401, detail="No signature provided")

    body = await request.body()
    expected_signature = encode(hmac.new(webhook_secret.encode(), body, hashlib.sha256).digest())
    if not hmac.compare_digest(signature.encode(), expected_signature.encode()):
        logger.warning(f"{marketplace_type.value} webhook signature mismatch")
        raise HTTPException(status_code=401, detail="Invalid signature")


def _decode_body(body: bytes, content_type: str):
    if not body:
        return {}
    try:
        if "xml" in content_type:
            return xmltodict.parse(body)
        return json.loads(body)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Unreadable webhook body: {str(e)}")


# --- Subscription handshakes ---

@router.post("/ebay/verify")
async def verify_ebay_endpoint(
    challenge: EbayChallenge,
    settings: Settings = Depends(get_settings),
):
    """eBay proves endpoint ownership: hash challengeCode + verification token + endpoint URL"""
    if not challenge.challenge_code:
        raise HTTPException(status_code=400, detail="Challenge code required")

    if not settings.EBAY_VERIFICATION_TOKEN or not settings.EBAY_WEBHOOK_ENDPOINT:
        logger.error("eBay webhook verification token or endpoint not configured")
        raise HTTPException(status_code=503, detail="Webhook not configured")

    challenge_response = hashlib.sha256(
        (challenge.challenge_code + settings.EBAY_VERIFICATION_TOKEN + settings.EBAY_WEBHOOK_ENDPOINT).encode()
    ).hexdigest()
    return {"challengeResponse": challenge_response}


@router.get("/facebook", response_class=PlainTextResponse)
async def verify_facebook_subscription(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    verify_token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: str = Query(default="", alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
):
    """Facebook subscription check: echo hub.challenge when the verify token matches"""
    if not settings.FACEBOOK_VERIFY_TOKEN:
        logger.error("FACEBOOK_VERIFY_TOKEN not configured")
        raise HTTPException(status_code=503, detail="Webhook not configured")

    token_matches = verify_token is not None and hmac.compare_digest(
        verify_token.encode(), settings.FACEBOOK_VERIFY_TOKEN.encode()
    )
    if mode == "subscribe" and token_matches:
        logger.info("Facebook webhook subscription verified")
        return challenge

    logger.warning(f"Facebook webhook verification failed: mode={mode}, token match={token_matches}")
    raise HTTPException(status_code=403, detail="Webhook verification failed")


# --- Notifications ---

@router.post("/{marketplace}/{account_id}")
async def receive_webhook(
    marketplace: str,
    account_id: int,
    request: Request,
    webhook_service: WebhookService = Depends(get_webhook_service),
    _: None = Depends(verify_webhook_signature),
):
    marketplace_type = _resolve_marketplace(marketplace)
    body = await request.body()
    payload = _decode_body(body, request.headers.get("content-type", ""))

    try:
        event = webhook_service.parse(marketplace_type, payload, dict(request.headers))
    except UnsupportedOperation as e:
        raise HTTPException(status_code=404, detail=str(e))

    if event is None:
        return {"status": "ignored"}

    try:
        result = await webhook_service.apply_event(account_id, event, marketplace=marketplace_type)
    except (AccountNotFoundError, ListingNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))

    if result is None:
        return {"status": "ignored", "event_type": event.event_type}
    return {"status": "received", "event_type": event.event_type, "result": result.to_dict()}
