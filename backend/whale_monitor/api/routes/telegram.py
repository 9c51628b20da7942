"""
Telegram Bot Webhook

Receives bot updates, applies subscription commands and replies in chat.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from whale_monitor.api.deps import get_alert_dispatcher
from whale_monitor.core.config import settings
from whale_monitor.core.exceptions import MonitorError
from whale_monitor.core.logging_config import get_logger
from whale_monitor.core.rate_limit import limiter
from whale_monitor.core.security import verify_webhook_secret
from whale_monitor.db.session import get_db
from whale_monitor.services import subscriptions
from whale_monitor.services.dispatcher import AlertDispatcher

router = APIRouter(
    prefix="/telegram",
    tags=["telegram"]
)

logger = get_logger()


class TelegramUser(BaseModel):
    id: int
    is_bot: bool = False
    first_name: Optional[str] = None
    username: Optional[str] = None


class TelegramChat(BaseModel):
    id: int
    type: Optional[str] = None


class TelegramMessage(BaseModel):
    message_id: int
    from_user: Optional[TelegramUser] = Field(None, alias="from")
    chat: TelegramChat
    date: Optional[int] = None
    text: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)


class TelegramUpdate(BaseModel):
    update_id: int
    message: Optional[TelegramMessage] = None


@router.get("/webhook")
@limiter.limit("60/minute")
def webhook_status(request: Request) -> Dict[str, Any]:
    """Liveness of the webhook and the configured tiers"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "message": "telegram webhook is running",
        "channels": sorted(tier for tier, channel in settings.telegram_channels.items() if channel),
    }


@router.post("/webhook")
@limiter.limit("120/minute")
async def telegram_webhook(
    request: Request,
    update: TelegramUpdate,
    x_telegram_bot_api_secret_token: Optional[str] = Header(None),
    db: Session = Depends(get_db),
    dispatcher: AlertDispatcher = Depends(get_alert_dispatcher),
) -> Dict[str, str]:
    """
    Handle one bot update

    Replies that cannot be delivered are logged; the update is still
    acknowledged so Telegram does not redeliver it.

    Raises:
        401: Secret header missing or wrong (when a secret is configured)
    """
    verify_webhook_secret(x_telegram_bot_api_secret_token)

    message = update.message
    if message is None or not message.text or message.from_user is None:
        return {"status": "ignored"}

    logger.info("Bot command from user %s: %s", message.from_user.id, message.text.split(" ", 1)[0])

    reply = subscriptions.handle_command(db, message.from_user.id, message.chat.id, message.text)
    db.commit()

    try:
        await dispatcher.transport.send(str(message.chat.id), reply)
    except MonitorError as e:
        logger.warning("Could not reply to chat %s: %s", message.chat.id, e.message)

    return {"status": "ok"}
