"""
Alert Generator

Threshold test, tier selection and the deduplicated alert write.

The write is a single INSERT ... ON CONFLICT (transaction_hash) DO NOTHING,
never a read-then-write check: two scans racing over the same ledger range
(even in separate processes) produce at most one alert per transaction.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from whale_monitor.db.models import WhaleAlert
from whale_monitor.db.statements import insert_or_ignore
from whale_monitor.core.exceptions import StoreUnavailable
from whale_monitor.core.logging_config import get_logger
from whale_monitor.services.classifier import ClassifiedTransaction, Thresholds

logger = get_logger(__name__)

TIER_CRITICAL = "critical_whales"
TIER_EXCHANGE = "exchange_deposits"
TIER_WHALE = "whale_movements"
TIER_SYSTEM = "system_alerts"

# Outcomes of generate()
CREATED = "created"
DUPLICATE_SUPPRESSED = "duplicate_suppressed"
BELOW_THRESHOLD = "below_threshold"
UNSUPPORTED_CURRENCY = "unsupported_currency"

ALERT_CURRENCY = "XRP"


@dataclass(frozen=True)
class AlertOutcome:
    status: str
    transaction_hash: str
    alert_type: Optional[str] = None
    alert_id: Optional[int] = None

    @property
    def created(self) -> bool:
        return self.status == CREATED


def qualifies(classified: ClassifiedTransaction, thresholds: Thresholds) -> bool:
    """XRP transfer at or above its threshold, or at or above the critical watermark"""
    tx = classified.transaction
    if tx.currency != ALERT_CURRENCY:
        return False
    amount = Decimal(tx.amount)
    return amount >= classified.threshold or amount >= thresholds.critical


def tier_for(classified: ClassifiedTransaction, thresholds: Thresholds) -> str:
    if Decimal(classified.transaction.amount) >= thresholds.critical:
        return TIER_CRITICAL
    if classified.is_exchange_deposit:
        return TIER_EXCHANGE
    return TIER_WHALE


def _get_session_local():
    """Lazy import of SessionLocal to avoid circular imports"""
    from whale_monitor.db.session import SessionLocal
    return SessionLocal


class AlertGenerator:
    """Creates at most one WhaleAlert per qualifying transaction"""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        thresholds: Optional[Thresholds] = None,
    ):
        self._session_factory = session_factory
        self.thresholds = thresholds or Thresholds.from_settings()

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = _get_session_local()
        return self._session_factory

    def generate(self, classified: ClassifiedTransaction) -> AlertOutcome:
        """
        Apply the threshold test and record the alert

        Returns:
            AlertOutcome (created, duplicate_suppressed, below_threshold or
            unsupported_currency)

        Raises:
            StoreUnavailable: the insert failed for a reason other than the
                unique key
        """
        tx = classified.transaction

        if tx.currency != ALERT_CURRENCY:
            return AlertOutcome(UNSUPPORTED_CURRENCY, tx.transaction_hash)
        if not qualifies(classified, self.thresholds):
            return AlertOutcome(BELOW_THRESHOLD, tx.transaction_hash)

        tier = tier_for(classified, self.thresholds)

        try:
            with self.session_factory() as db:
                inserted = insert_or_ignore(
                    db,
                    WhaleAlert,
                    {
                        "wallet_address": tx.wallet_address,
                        "owner_name": classified.owner_name,
                        "transaction_hash": tx.transaction_hash,
                        "amount": tx.amount,
                        "transaction_type": tx.transaction_type,
                        "alert_type": tier,
                        "alert_category": classified.classification,
                        "exchange_name": classified.exchange_name,
                        "destination_tag": tx.destination_tag,
                        "is_sent": False,
                    },
                    conflict_columns=["transaction_hash"],
                )
                db.commit()

                if not inserted:
                    logger.debug("Alert for %s already exists, suppressed", tx.transaction_hash[:16])
                    return AlertOutcome(DUPLICATE_SUPPRESSED, tx.transaction_hash, tier)

                alert_id = db.execute(
                    select(WhaleAlert.id).where(WhaleAlert.transaction_hash == tx.transaction_hash)
                ).scalar_one()

        except SQLAlchemyError as e:
            logger.error("Could not record alert for %s: %s", tx.transaction_hash[:16], e)
            raise StoreUnavailable(f"Could not record alert: {e}", address=tx.wallet_address) from e

        logger.info(
            "Whale alert #%d: %s XRP %s by %s (%s)",
            alert_id, tx.amount, tx.transaction_type, classified.owner_name, tier,
        )
        return AlertOutcome(CREATED, tx.transaction_hash, tier, alert_id)
