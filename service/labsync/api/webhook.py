"""
Telegram webhook.

Telegram POSTs every update here. The message is stored (or refreshed, for
edits and redeliveries) and extraction is scheduled; the response does not
wait for the pipeline.
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request

from labsync.agents.schemas import InboundMessage, TelegramUpdate, utcnow
from labsync.api.deps import get_container
from labsync.container import Container
from labsync.logging_config import get_logger
from labsync.services.notifications import SocketEvents

logger = get_logger("webhook")

router = APIRouter(tags=["telegram"])


def parse_update(update_data: dict[str, Any]) -> InboundMessage:
    """Telegram update -> InboundMessage with every stage pending."""
    try:
        update = TelegramUpdate.model_validate(update_data)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Telegram update")

    message = update.message or update.edited_message
    if not message or message.message_id is None:
        raise HTTPException(status_code=400, detail="Update has no message")

    if message.date:
        date_received = datetime.fromtimestamp(message.date, tz=timezone.utc)
    else:
        date_received = utcnow()

    return InboundMessage(
        message_id=str(message.message_id),
        sender_id=str(message.from_user.id) if message.from_user else "unknown",
        text=message.text or "",
        date_received=date_received,
        raw_payload=update_data,
    )


@router.post("/telegram/webhook", status_code=201)
async def telegram_webhook(
    request: Request,
    x_telegram_bot_api_secret_token: str = Header(None),
    container: Container = Depends(get_container),
):
    """
    Webhook endpoint for Telegram updates.

    Stores the message and schedules extraction when it carries text.
    """
    settings = container.settings

    # Verify secret token if configured
    if settings.telegram_webhook_secret:
        if x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
            raise HTTPException(status_code=403, detail="Invalid secret token")

    try:
        update_data = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Body must be JSON")
    if not isinstance(update_data, dict):
        raise HTTPException(status_code=400, detail="Invalid Telegram update")

    message = await container.repository.upsert_message(parse_update(update_data))
    logger.info(f"Stored Telegram message {message.message_id} as {message.id}")

    container.notifier.emit(SocketEvents.MESSAGE_CREATED, message.model_dump(mode="json"))

    if message.text.strip():
        container.task_queue.enqueue("extract", message.id)

    return {"ok": True, "data": message.model_dump(mode="json")}
