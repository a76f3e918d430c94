"""WhatsApp Cloud API webhook: subscription check and inbound messages."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import PlainTextResponse

from app.config import settings
from app.logging_config import get_logger
from app.schemas.webhook import (
    PROCESSABLE_MESSAGE_TYPES,
    InboundMessage,
    WebhookResponse,
    WhatsAppWebhookPayload,
)

logger = get_logger("webhook")

router = APIRouter(prefix="/whatsapp", tags=["whatsapp"])

WHATSAPP_OBJECT = "whatsapp_business_account"


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the token matches."""
    expected = settings.whatsapp_webhook_token
    if mode == "subscribe" and expected and token == expected:
        logger.info("Webhook verified")
        return challenge or ""
    logger.warning("Webhook verification failed", extra={"context": {"mode": mode}})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(payload: WhatsAppWebhookPayload, request: Request):
    if payload.object != WHATSAPP_OBJECT:
        return WebhookResponse(success=True, message=f"Ignored object '{payload.object}'")

    engine = request.app.state.runtime.engine
    processed = 0

    for entry in payload.entry:
        for change in entry.changes:
            if change.field != "messages":
                continue

            for message in change.value.messages or []:
                logger.info(
                    "Message received",
                    extra={"context": {"phone": message.from_, "type": message.type, "message_id": message.id}},
                )
                if message.type not in PROCESSABLE_MESSAGE_TYPES:
                    continue
                inbound = InboundMessage.from_whatsapp(message)
                try:
                    await engine.process_message(inbound)
                    processed += 1
                except Exception as e:
                    logger.error(
                        "Message processing failed",
                        extra={"context": {"phone": inbound.phone, "message_id": inbound.message_id, "error": str(e)}},
                        exc_info=True,
                    )

            for delivery in change.value.statuses or []:
                logger.info(
                    "Delivery status",
                    extra={"context": {"message_id": delivery.get("id"), "status": delivery.get("status")}},
                )

    return WebhookResponse(success=True, processed=processed)
