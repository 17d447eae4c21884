"""
API v1 Webhook Routes
Shared inbound endpoints for WhatsApp Cloud API and Messenger events
"""

import hashlib
import hmac
import json
from typing import Any, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_webhook_router
from config.settings import settings
from db.models import ChannelProvider
from db.schemas import WebhookAck
from services.channelServices.webhook_router import (
    WebhookRouter,
    extract_messenger_channel_ids,
    extract_whatsapp_channel_ids,
)
from utils.errors import APIError, ValidationError
from utils.logger import logger

router = APIRouter()

EXTRACTORS: Dict[ChannelProvider, Callable[[Dict[str, Any]], List[str]]] = {
    ChannelProvider.WHATSAPP: extract_whatsapp_channel_ids,
    ChannelProvider.FACEBOOK: extract_messenger_channel_ids,
}


def verify_signature(body: bytes, signature_header: Optional[str], app_secret: str) -> bool:
    """Check Meta's X-Hub-Signature-256 (HMAC-SHA256 of the raw body with the app secret)"""
    if not app_secret:
        logger.error("❌ META_APP_SECRET is not configured; webhook signatures cannot be verified")
        return False
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode(), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256="):])


def _handshake(request: Request, label: str) -> PlainTextResponse:
    mode = request.query_params.get("hub.mode")
    token = request.query_params.get("hub.verify_token")
    challenge = request.query_params.get("hub.challenge")

    logger.info(f"🔍 {label} webhook verification: mode={mode}")

    if mode == "subscribe" and settings.WEBHOOK_VERIFY_TOKEN and token == settings.WEBHOOK_VERIFY_TOKEN:
        logger.info(f"✅ {label} webhook verification successful")
        return PlainTextResponse(challenge or "")

    logger.error(f"❌ {label} webhook verification failed")
    raise APIError(403, "Webhook verification failed", error_code="WEBHOOK_VERIFICATION_FAILED")


async def _receive(
    request: Request,
    provider: ChannelProvider,
    db: AsyncSession,
    channel_router: WebhookRouter,
    path_channel_id: Optional[str] = None,
) -> WebhookAck:
    body = await request.body()

    if settings.WEBHOOK_VERIFY_SIGNATURE and not verify_signature(
        body, request.headers.get("X-Hub-Signature-256"), settings.META_APP_SECRET
    ):
        logger.warning(f"🚫 Rejected {provider.value} webhook with bad signature")
        raise APIError(403, "Invalid webhook signature", error_code="INVALID_SIGNATURE")

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")

    channel_ids = EXTRACTORS[provider](payload)
    if not channel_ids and path_channel_id:
        channel_ids = [path_channel_id]

    ack = WebhookAck()
    for channel_id in channel_ids:
        routed = await channel_router.route_by_channel_id(db, channel_id, provider)
        if routed is None:
            ack.dropped += 1
            continue
        ack.routed += 1
        logger.info(
            f"📨 {provider.value} event for channel {channel_id} dispatched to tenant {routed.tenant_id} "
            f"(account {routed.account_id})"
        )

    logger.info(f"📱 {provider.value} webhook processed: routed={ack.routed} dropped={ack.dropped}")
    return ack

# =============================================================================
# WhatsApp
# =============================================================================

@router.get("/whatsapp")
async def verify_whatsapp_webhook(request: Request):
    """Verify WhatsApp webhook"""
    return _handshake(request, "WhatsApp")


@router.get("/whatsapp/{channel_id}")
async def verify_whatsapp_channel_webhook(channel_id: str, request: Request):
    return _handshake(request, f"WhatsApp ({channel_id})")


@router.post("/whatsapp", response_model=WebhookAck)
async def receive_whatsapp_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    channel_router: WebhookRouter = Depends(get_webhook_router),
):
    return await _receive(request, ChannelProvider.WHATSAPP, db, channel_router)


@router.post("/whatsapp/{channel_id}", response_model=WebhookAck)
async def receive_whatsapp_channel_webhook(
    channel_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    channel_router: WebhookRouter = Depends(get_webhook_router),
):
    return await _receive(request, ChannelProvider.WHATSAPP, db, channel_router, path_channel_id=channel_id)

# =============================================================================
# Messenger
# =============================================================================

@router.get("/messenger")
async def verify_messenger_webhook(request: Request):
    """Verify Messenger webhook"""
    return _handshake(request, "Messenger")


@router.get("/messenger/{channel_id}")
async def verify_messenger_channel_webhook(channel_id: str, request: Request):
    return _handshake(request, f"Messenger ({channel_id})")


@router.post("/messenger", response_model=WebhookAck)
async def receive_messenger_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    channel_router: WebhookRouter = Depends(get_webhook_router),
):
    return await _receive(request, ChannelProvider.FACEBOOK, db, channel_router)


@router.post("/messenger/{channel_id}", response_model=WebhookAck)
async def receive_messenger_channel_webhook(
    channel_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    channel_router: WebhookRouter = Depends(get_webhook_router),
):
    return await _receive(request, ChannelProvider.FACEBOOK, db, channel_router, path_channel_id=channel_id)
