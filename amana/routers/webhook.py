from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from amana.config import settings
from amana.dependencies import get_message_processor
from amana.logging_config import get_logger
from amana.schemas.webhook import WebhookResponse, WhatsAppWebhookEvent
from amana.services.message_processor import MessageProcessor

logger = get_logger("webhook")

router = APIRouter(prefix="/webhook", tags=["webhook"])

WHATSAPP_OBJECT = "whatsapp_business_account"


@router.get("/whatsapp", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    """Meta subscription handshake: echo the challenge when the verify token matches."""
    if hub_mode == "subscribe" and hub_verify_token == settings.whatsapp_verify_token:
        logger.info("Webhook verified")
        return hub_challenge or ""
    logger.warning("Webhook verification failed", extra={"context": {"mode": hub_mode}})
    raise HTTPException(status_code=403, detail="Verification failed")


@router.post("/whatsapp", response_model=WebhookResponse)
async def receive_webhook(
    payload: dict,
    background_tasks: BackgroundTasks,
    processor: MessageProcessor = Depends(get_message_processor),
):
    """Acknowledge right away; every message is processed after the response is sent."""
    if payload.get("object") != WHATSAPP_OBJECT:
        raise HTTPException(status_code=404, detail="Not a WhatsApp Business event")

    try:
        event = WhatsAppWebhookEvent(**payload)
    except ValidationError as e:
        logger.warning(f"Malformed webhook payload: {e.error_count()} errors")
        return WebhookResponse(success=False, message="Malformed payload")

    accepted = 0
    for entry in event.entry:
        for change in entry.changes:
            for status in change.value.statuses:
                logger.info(
                    "Message status update",
                    extra={"context": {"message_id": status.id, "status": status.status, "to": status.recipient_id}},
                )
            for message in change.value.messages:
                background_tasks.add_task(processor.process, message)
                accepted += 1

    return WebhookResponse(success=True, message="EVENT_RECEIVED", accepted=accepted)
