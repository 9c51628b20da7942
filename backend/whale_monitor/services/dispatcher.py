"""
Alert Dispatcher

State machine of a WhaleAlert: pending (is_sent=False) -> sent (is_sent=True).

dispatch() sends the rendered alert to the channel of its tier and then
confirms it with a single conditional UPDATE guarded by is_sent = false.
Two dispatchers racing on the same alert may both deliver (at-least-once),
but only one of them confirms. Failed sends leave the alert pending for the
next dispatch pass.
"""

import html
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whale_monitor.core.config import Settings, settings as app_settings
from whale_monitor.core.exceptions import (
    AlertNotFound, ConfigurationMissing, MonitorError, StoreUnavailable, TransportFailure,
)
from whale_monitor.core.logging_config import get_logger
from whale_monitor.db.models import NotificationAttempt, WhaleAlert
from whale_monitor.services import subscriptions
from whale_monitor.services.alerts import TIER_SYSTEM
from whale_monitor.services.health import DISPATCH_SERVICE, HealthReporter, Stopwatch
from whale_monitor.services.telegram import TelegramTransport

logger = get_logger(__name__)

# dispatch() outcomes
SENT = "sent"
ALREADY_SENT = "already_sent"
FAILED = "failed"

EXPLORERS = (
    ("XRPScan", "https://xrpscan.com/tx/{hash}"),
    ("XRPlorer", "https://xrplorer.com/transaction/{hash}"),
    ("Bithomp", "https://bithomp.com/explorer/{hash}"),
    ("XPMarket", "https://xpmarket.com/tx/{hash}"),
)

SEVERITY_EMOJI = {"critical": "🚨", "warning": "⚠️", "info": "ℹ️"}


@dataclass(frozen=True)
class DispatcherConfig:
    """Everything the dispatcher needs from configuration, injected explicitly"""
    bot_token: Optional[str]
    channels: Dict[str, Optional[str]]
    api_url: str = "https://api.telegram.org"
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    batch_limit: int = 50
    include_lower_tiers: bool = False
    test_mode: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DispatcherConfig":
        settings = settings or app_settings
        return cls(
            bot_token=settings.TELEGRAM_BOT_TOKEN,
            channels=dict(settings.telegram_channels),
            api_url=settings.TELEGRAM_API_URL,
            retry_attempts=settings.DISPATCH_RETRY_ATTEMPTS,
            retry_base_delay=settings.DISPATCH_RETRY_BASE_DELAY_SECONDS,
            retry_max_delay=settings.DISPATCH_RETRY_MAX_DELAY_SECONDS,
            batch_limit=settings.DISPATCH_BATCH_LIMIT,
            include_lower_tiers=settings.DISPATCH_FANOUT_INCLUDE_LOWER_TIERS,
            test_mode=settings.DISPATCH_TEST_MODE,
        )

    def channel_for(self, tier: str) -> Optional[str]:
        return self.channels.get(tier) or None


@dataclass
class DispatchOutcome:
    alert_id: int
    status: str
    channel: Optional[str] = None
    message_id: Optional[int] = None
    subscribers_notified: int = 0
    subscriber_failures: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "status": self.status,
            "channel": self.channel,
            "message_id": self.message_id,
            "subscribers_notified": self.subscribers_notified,
            "subscriber_failures": self.subscriber_failures,
            "error": self.error,
        }


@dataclass
class DispatchSummary:
    outcomes: List[DispatchOutcome] = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sent": self.count(SENT),
            "already_sent": self.count(ALREADY_SENT),
            "failed": self.count(FAILED),
            "results": [outcome.to_dict() for outcome in self.outcomes],
        }


def format_amount(amount) -> str:
    """1200000 -> '1,200,000'; 15000.5 -> '15,000.5'"""
    text = f"{Decimal(amount).quantize(Decimal('0.01')):,.2f}"
    return text.rstrip("0").rstrip(".")


def alert_emoji(amount) -> str:
    amount = Decimal(amount)
    if amount >= 1_000_000:
        return "🚨🐋"
    if amount >= 500_000:
        return "⚠️🐋"
    if amount >= 100_000:
        return "🔥🐋"
    return "🐋"


def format_whale_message(alert: WhaleAlert) -> str:
    """Render the HTML Telegram message of a whale alert"""
    emoji = alert_emoji(alert.amount)
    title = f"{emoji} <b>WHALE ALERT!</b>"
    category_info = ""
    if alert.is_exchange_deposit and alert.exchange_name:
        title = f"{emoji} <b>EXCHANGE DEPOSIT ALERT!</b>"
        category_info = f"\n🏦 <b>Exchange:</b> {html.escape(alert.exchange_name)}"
        if alert.destination_tag:
            category_info += f"\n🏷️ <b>Destination Tag:</b> <code>{html.escape(alert.destination_tag)}</code>"

    detected = alert.created_at or datetime.now(timezone.utc)
    links = "\n".join(
        f'• <a href="{url.format(hash=alert.transaction_hash)}">{name}</a>'
        for name, url in EXPLORERS
    )

    return (
        f"{title}\n\n"
        f"💰 <b>Amount:</b> {format_amount(alert.amount)} XRP\n"
        f"👤 <b>Wallet Owner:</b> {html.escape(alert.owner_name)}\n"
        f"📱 <b>Wallet:</b> <code>{alert.wallet_address}</code>\n"
        f"🔄 <b>Type:</b> {html.escape(alert.transaction_type)}{category_info}\n"
        f"🔗 <b>TX Hash:</b> <code>{alert.transaction_hash}</code>\n\n"
        f"⏰ <b>Detected:</b> {detected.strftime('%b %d, %Y %H:%M')} UTC\n\n"
        f"🔍 <b>Explorer Links:</b>\n{links}"
    )


def format_system_message(message: str, severity: str = "info") -> str:
    emoji = SEVERITY_EMOJI.get(severity, SEVERITY_EMOJI["info"])
    now = datetime.now(timezone.utc).strftime("%b %d, %Y %H:%M")
    return f"{emoji} <b>SYSTEM ALERT</b>\n\n{html.escape(message)}\n\n⏰ {now} UTC"


def _get_session_local():
    """Lazy import of SessionLocal to avoid circular imports"""
    from whale_monitor.db.session import SessionLocal
    return SessionLocal


class AlertDispatcher:
    """
    Routes pending alerts to their tier channel and confirms them

    Usage:
        dispatcher = AlertDispatcher(DispatcherConfig.from_settings())
        outcome = await dispatcher.dispatch(alert_id)
    """

    def __init__(
        self,
        config: DispatcherConfig,
        transport: Optional[TelegramTransport] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        health: Optional[HealthReporter] = None,
    ):
        self.config = config
        self.transport = transport or TelegramTransport(
            bot_token=config.bot_token,
            api_url=config.api_url,
            retry_attempts=config.retry_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        self._session_factory = session_factory
        self.health = health or HealthReporter(session_factory)

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = _get_session_local()
        return self._session_factory

    async def close(self):
        await self.transport.close()

    def _load(self, alert_id: int) -> WhaleAlert:
        with self.session_factory() as db:
            alert = db.get(WhaleAlert, alert_id)
            if alert is None:
                raise AlertNotFound(alert_id)
            db.expunge(alert)
            return alert

    def _log_attempt(
        self,
        alert_id: Optional[int],
        channel_id: str,
        success: bool,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            with self.session_factory() as db:
                previous = db.execute(
                    select(func.count(NotificationAttempt.id)).where(
                        NotificationAttempt.whale_alert_id == alert_id,
                        NotificationAttempt.channel_id == str(channel_id),
                    )
                ).scalar_one()
                db.add(NotificationAttempt(
                    whale_alert_id=alert_id,
                    channel_id=str(channel_id),
                    attempt_number=previous + 1,
                    status="success" if success else "failed",
                    error_message=error_message[:1000] if error_message else None,
                    sent_at=datetime.now(timezone.utc) if success else None,
                ))
                db.commit()
        except SQLAlchemyError as e:
            logger.warning("Could not log notification attempt for alert %s: %s", alert_id, e)

    def _confirm(self, alert_id: int, tier: str) -> bool:
        """pending -> sent; False when another dispatcher confirmed first"""
        try:
            with self.session_factory() as db:
                result = db.execute(
                    update(WhaleAlert)
                    .where(WhaleAlert.id == alert_id, WhaleAlert.is_sent.is_(False))
                    .values(is_sent=True, sent_at=datetime.now(timezone.utc), channel_used=tier)
                    .execution_options(synchronize_session=False)
                )
                db.commit()
                return result.rowcount == 1
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not confirm alert {alert_id}: {e}") from e

    async def dispatch(self, alert_id: int) -> DispatchOutcome:
        """
        Send one alert and confirm it

        Returns:
            DispatchOutcome with status sent or already_sent

        Raises:
            AlertNotFound: No alert with this id
            ConfigurationMissing: Bot token or tier channel not configured
            TransportFailure: Telegram send failed; the alert stays pending
        """
        alert = self._load(alert_id)
        if alert.is_sent:
            return DispatchOutcome(alert_id, ALREADY_SENT, channel=alert.channel_used)

        tier = alert.alert_type
        channel = self.config.channel_for(tier)
        if not self.config.test_mode and (not self.config.bot_token or not channel):
            missing = "TELEGRAM_BOT_TOKEN" if not self.config.bot_token else f"channel for {tier}"
            error = ConfigurationMissing(f"{missing} is not configured", address=alert.wallet_address)
            self.health.error(DISPATCH_SERVICE, error.message)
            raise error

        message = format_whale_message(alert)
        watch = Stopwatch()
        message_id = None

        if self.config.test_mode:
            logger.info("Test mode: alert #%d not sent to Telegram", alert_id)
        else:
            try:
                message_id = await self.transport.send(channel, message)
            except TransportFailure as e:
                e.address = alert.wallet_address
                self._log_attempt(alert_id, channel, False, e.message)
                self.health.error(DISPATCH_SERVICE, e.message, watch.elapsed_ms)
                raise
            self._log_attempt(alert_id, channel, True)

        confirmed = self._confirm(alert_id, tier)
        self.health.ok(DISPATCH_SERVICE, watch.elapsed_ms)

        if not confirmed:
            logger.info("Alert #%d was confirmed by another dispatcher", alert_id)
            return DispatchOutcome(alert_id, ALREADY_SENT, channel=tier, message_id=message_id)

        logger.info("Alert #%d sent to %s", alert_id, tier)
        outcome = DispatchOutcome(alert_id, SENT, channel=tier, message_id=message_id)

        if not self.config.test_mode:
            outcome.subscribers_notified, outcome.subscriber_failures = await self._fan_out(
                alert_id, tier, message, exclude=channel,
            )
        return outcome

    async def _fan_out(self, alert_id: Optional[int], tier: str, message: str, exclude: Optional[str] = None):
        """Independent send per subscriber; failures are recorded, never raised"""
        try:
            with self.session_factory() as db:
                chat_ids = subscriptions.subscribers_for_tier(db, tier, self.config.include_lower_tiers)
        except SQLAlchemyError as e:
            logger.warning("Could not load subscribers for %s: %s", tier, e)
            return 0, 0

        notified = failed = 0
        for chat_id in chat_ids:
            if exclude is not None and str(chat_id) == str(exclude):
                continue
            try:
                await self.transport.send(str(chat_id), message)
                notified += 1
            except MonitorError as e:
                failed += 1
                logger.warning("Subscriber %s did not receive alert %s: %s", chat_id, alert_id, e.message)
                self._log_attempt(alert_id, str(chat_id), False, e.message)

        if notified or failed:
            logger.info("Fan-out of %s alert: %d delivered, %d failed", tier, notified, failed)
        return notified, failed

    async def dispatch_pending(self, limit: Optional[int] = None) -> DispatchSummary:
        """
        Dispatch pending alerts oldest first

        Each alert is attempted independently; a failure is recorded in the
        summary and the pass moves on.
        """
        limit = limit or self.config.batch_limit
        try:
            with self.session_factory() as db:
                alert_ids = list(db.execute(
                    select(WhaleAlert.id)
                    .where(WhaleAlert.is_sent.is_(False))
                    .order_by(WhaleAlert.created_at, WhaleAlert.id)
                    .limit(limit)
                ).scalars())
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Could not list pending alerts: {e}") from e

        summary = DispatchSummary()
        for alert_id in alert_ids:
            try:
                summary.outcomes.append(await self.dispatch(alert_id))
            except MonitorError as e:
                summary.outcomes.append(DispatchOutcome(alert_id, FAILED, error=e.message))

        if alert_ids:
            logger.info(
                "Dispatch pass: %d sent, %d already sent, %d failed",
                summary.count(SENT), summary.count(ALREADY_SENT), summary.count(FAILED),
            )
        return summary

    async def send_system_alert(self, message: str, severity: str = "info") -> bool:
        """
        Send a health event to the system_alerts channel and its subscribers

        Returns:
            True if the system channel received it
        """
        channel = self.config.channel_for(TIER_SYSTEM)
        text = format_system_message(message, severity)

        if self.config.test_mode:
            logger.info("Test mode: system alert not sent: %s", message)
            return True
        if not self.config.bot_token or not channel:
            logger.warning("System alert dropped, system_alerts channel not configured: %s", message)
            return False

        try:
            await self.transport.send(channel, text)
        except MonitorError as e:
            logger.error("System alert could not be sent: %s", e.message)
            self._log_attempt(None, channel, False, e.message)
            return False

        self._log_attempt(None, channel, True)
        await self._fan_out(None, TIER_SYSTEM, text, exclude=channel)
        return True


# Singleton instance for convenience
_dispatcher: Optional[AlertDispatcher] = None


def get_dispatcher() -> AlertDispatcher:
    """Get global dispatcher instance"""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = AlertDispatcher(DispatcherConfig.from_settings())
    return _dispatcher
