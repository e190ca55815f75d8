# chat2sheet/api/routers/webhook.py - WhatsApp Cloud API webhook
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from typing import Any, Callable, Dict, Optional, Tuple
import json
import logging

from chat2sheet.api.deps.services import get_pipeline_provider
from chat2sheet.core.config import settings
from chat2sheet.services.message_pipeline import MessagePipeline

logger = logging.getLogger(__name__)

router = APIRouter()


def extract_text_message(payload: Dict[str, Any]) -> Optional[Tuple[str, str]]:
    """(sender, text) of the first message in an event, or None for statuses and non-text messages"""
    try:
        message = payload["entry"][0]["changes"][0]["value"]["messages"][0]
    except (KeyError, IndexError, TypeError):
        return None

    sender = message.get("from")
    text = (message.get("text") or {}).get("body")
    if not sender or not text:
        return None
    return sender, text


@router.get("/webhook")
async def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
):
    """Subscription handshake"""
    if mode == "subscribe" and settings.WHATSAPP_VERIFY_TOKEN and token == settings.WHATSAPP_VERIFY_TOKEN:
        logger.info("✅ Webhook verified")
        return PlainTextResponse(challenge or "")

    logger.warning("❌ Webhook verification failed")
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook")
async def receive_message(
    request: Request,
    pipeline_provider: Callable[[], MessagePipeline] = Depends(get_pipeline_provider),
):
    """Inbound messages; the platform always gets 200 so it never retries"""
    try:
        payload = json.loads(await request.body())
    except ValueError:
        logger.warning("Ignoring webhook with invalid JSON body")
        return {"success": True}

    message = extract_text_message(payload)
    if message is None:
        return {"success": True}

    sender, text = message
    try:
        pipeline = pipeline_provider()
        await pipeline.handle_message(sender, text)
    except Exception as e:
        logger.error(f"❌ Error in webhook handler: {e}", exc_info=True)

    return {"success": True}
