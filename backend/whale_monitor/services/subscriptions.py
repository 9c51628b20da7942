"""
Telegram subscriptions and bot commands

Functions here do NOT commit; the caller owns the transaction boundary.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from whale_monitor.db.models import TelegramSubscription
from whale_monitor.db.statements import upsert
from whale_monitor.core.logging_config import get_logger
from whale_monitor.services.classifier import Thresholds

logger = get_logger(__name__)

# Transaction tiers by increasing severity; system_alerts stands apart
TIER_SEVERITY: Dict[str, int] = {
    "whale_movements": 1,
    "exchange_deposits": 2,
    "critical_whales": 3,
}

SUBSCRIBE_COMMANDS: Dict[str, str] = {
    "/subscribe_whales": "whale_movements",
    "/subscribe_exchanges": "exchange_deposits",
    "/subscribe_critical": "critical_whales",
}

TIER_EMOJI = {
    "critical_whales": "🚨",
    "exchange_deposits": "🏦",
    "whale_movements": "🐋",
    "system_alerts": "ℹ️",
}


def subscribe(db: Session, user_id: int, chat_id: int, tier: str) -> None:
    """Create or re-activate a subscription of user_id to tier"""
    upsert(
        db,
        TelegramSubscription,
        {
            "user_id": user_id,
            "chat_id": chat_id,
            "subscription_type": tier,
            "is_active": True,
            "updated_at": datetime.now(timezone.utc),
        },
        conflict_columns=["user_id", "subscription_type"],
        update_columns=["chat_id", "is_active", "updated_at"],
    )
    logger.info("User %s subscribed to %s", user_id, tier)


def unsubscribe_all(db: Session, user_id: int) -> int:
    """Soft-disable every subscription of a user; returns how many were active"""
    result = db.execute(
        update(TelegramSubscription)
        .where(TelegramSubscription.user_id == user_id, TelegramSubscription.is_active.is_(True))
        .values(is_active=False, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    logger.info("User %s unsubscribed from %d tiers", user_id, result.rowcount)
    return result.rowcount


def active_subscriptions(db: Session, user_id: int) -> List[str]:
    return list(db.execute(
        select(TelegramSubscription.subscription_type)
        .where(TelegramSubscription.user_id == user_id, TelegramSubscription.is_active.is_(True))
        .order_by(TelegramSubscription.subscription_type)
    ).scalars())


def tiers_receiving(tier: str, include_lower_tiers: bool = False) -> List[str]:
    """
    Subscription types that receive an alert of the given tier

    With include_lower_tiers, subscribers of a less severe tier also get
    the more severe alerts (a whale_movements subscriber sees critical ones).
    """
    if not include_lower_tiers or tier not in TIER_SEVERITY:
        return [tier]
    severity = TIER_SEVERITY[tier]
    return [name for name, level in TIER_SEVERITY.items() if level <= severity]


def subscribers_for_tier(db: Session, tier: str, include_lower_tiers: bool = False) -> List[int]:
    """Distinct chat ids of active subscribers that should receive an alert of tier"""
    chat_ids = db.execute(
        select(TelegramSubscription.chat_id)
        .where(
            TelegramSubscription.is_active.is_(True),
            TelegramSubscription.subscription_type.in_(tiers_receiving(tier, include_lower_tiers)),
        )
        .order_by(TelegramSubscription.chat_id)
    ).scalars()
    return list(dict.fromkeys(chat_ids))


def _xrp(amount: Decimal) -> str:
    return f"{int(amount):,}"


def welcome_text(thresholds: Thresholds) -> str:
    return (
        "🐋 <b>Welcome to the XRPL Whale Monitor!</b>\n\n"
        "I monitor large XRP transactions and can send you real-time alerts.\n\n"
        "<b>Available Commands:</b>\n"
        f"/subscribe_whales - Subscribe to whale movement alerts ({_xrp(thresholds.default)}+ XRP)\n"
        f"/subscribe_exchanges - Subscribe to exchange deposit alerts ({_xrp(thresholds.exchange)}+ XRP)\n"
        f"/subscribe_critical - Subscribe to critical whale alerts ({_xrp(thresholds.critical)}+ XRP)\n"
        "/unsubscribe_all - Unsubscribe from all alerts\n"
        "/status - Check your subscription status\n"
        "/help - Show this help message\n\n"
        "<b>Alert Types:</b>\n"
        "🐋 Whale Movements: Regular large XRP transfers\n"
        "🏦 Exchange Deposits: Large deposits to major exchanges\n"
        f"🚨 Critical Whales: Massive movements ({_xrp(thresholds.critical)}+ XRP)\n\n"
        "Get started by choosing a subscription level!"
    )


def _subscribed_text(tier: str, thresholds: Thresholds) -> str:
    if tier == "critical_whales":
        return (
            "✅ <b>Subscribed to Critical Whale Alerts!</b>\n\n"
            f"You'll now receive notifications for massive XRP movements ({_xrp(thresholds.critical)}+ XRP)."
        )
    if tier == "exchange_deposits":
        return (
            "✅ <b>Subscribed to Exchange Deposit Alerts!</b>\n\n"
            "You'll now receive notifications for large deposits to major exchanges "
            f"({_xrp(thresholds.exchange)}+ XRP)."
        )
    return (
        "✅ <b>Subscribed to Whale Movement Alerts!</b>\n\n"
        f"You'll now receive notifications for XRP transfers of {_xrp(thresholds.default)}+ XRP."
    )


def status_text(tiers: List[str]) -> str:
    text = "<b>📊 Your Subscription Status:</b>\n\n"
    if not tiers:
        return text + "❌ No active subscriptions\n\nUse /start to subscribe to whale alerts!"
    for tier in tiers:
        text += f"{TIER_EMOJI.get(tier, '🐋')} {tier.replace('_', ' ').upper()}\n"
    return text + "\nUse /unsubscribe_all to stop all notifications."


def handle_command(
    db: Session,
    user_id: int,
    chat_id: int,
    text: Optional[str],
    thresholds: Optional[Thresholds] = None,
) -> str:
    """
    Apply a bot command and return the reply text

    Commands may carry a bot suffix ("/status@WhaleBot") or arguments.
    """
    thresholds = thresholds or Thresholds.from_settings()
    command = (text or "").strip().split(" ", 1)[0].split("@", 1)[0].lower()

    if command in ("/start", "/help"):
        return welcome_text(thresholds)

    if command in SUBSCRIBE_COMMANDS:
        tier = SUBSCRIBE_COMMANDS[command]
        subscribe(db, user_id, chat_id, tier)
        return _subscribed_text(tier, thresholds)

    if command == "/unsubscribe_all":
        unsubscribe_all(db, user_id)
        return "❌ <b>Unsubscribed from all alerts.</b>\n\nYou can re-subscribe anytime using the /start command."

    if command == "/status":
        return status_text(active_subscriptions(db, user_id))

    return "❓ Unknown command. Use /help to see available commands."
