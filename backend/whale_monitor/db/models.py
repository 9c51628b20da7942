"""
SQLAlchemy Models for the whale monitor

- MonitoredWallet: monitored address + scan cursor
- WalletTransaction: normalized ledger transactions (unique per hash)
- WhaleAlert: one alert per qualifying transaction
- MonitoringHealth: append-only health log
- TelegramSubscription: bot subscribers per tier
- NotificationAttempt: audit of every Telegram send
"""

from sqlalchemy import (
    Boolean, Column, Integer, String, DateTime, Text, BigInteger, Numeric,
    ForeignKey, CheckConstraint, Index, UniqueConstraint,
)
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime, timezone


def utcnow():
    """Helper for timezone-aware UTC datetime (replaces deprecated utcnow)"""
    return datetime.now(timezone.utc)


Base = declarative_base()

# XRP amounts keep 6 decimal places (1 drop = 0.000001 XRP)
Amount = Numeric(28, 6)

ALERT_TIERS = ("critical_whales", "exchange_deposits", "whale_movements", "system_alerts")
ALERT_CATEGORIES = ("direct_transfer", "exchange_deposit")


class MonitoredWallet(Base):
    """
    Monitored XRPL address

    Created at onboarding, never deleted. The cursor (last_ledger_index)
    only moves forward.
    """
    __tablename__ = "wallet_monitoring"

    id = Column(Integer, primary_key=True, index=True)
    address = Column(String(35), unique=True, nullable=False, index=True)
    owner_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Scan cursor
    last_ledger_index = Column(BigInteger, nullable=True)
    last_checked_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    # Per-wallet override, falls back to DEFAULT_ALERT_THRESHOLD
    alert_threshold = Column(Amount, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint('alert_threshold IS NULL OR alert_threshold > 0', name='wallet_positive_threshold'),
    )

    def __repr__(self):
        return f"<MonitoredWallet(address={self.address}, owner='{self.owner_name}', active={self.is_active}, cursor={self.last_ledger_index})>"


class WalletTransaction(Base):
    """
    Normalized ledger transaction

    Immutable after insert; transaction_hash is the idempotency key.
    """
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_address = Column(String(35), nullable=False, index=True)
    transaction_hash = Column(String(64), unique=True, nullable=False, index=True)

    amount = Column(Amount, nullable=False)
    currency = Column(String(40), nullable=False, default="XRP")
    transaction_type = Column(String(40), nullable=False)  # sent / received / raw XRPL type

    source_address = Column(String(35), nullable=True)
    destination_address = Column(String(35), nullable=True)
    destination_tag = Column(String(10), nullable=True)
    exchange_name = Column(String(100), nullable=True)

    ledger_index = Column(BigInteger, nullable=False)
    transaction_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_wallet_tx_wallet_ledger', 'wallet_address', 'ledger_index'),
    )

    def __repr__(self):
        return f"<WalletTransaction(hash={self.transaction_hash[:16]}..., amount={self.amount} {self.currency}, ledger={self.ledger_index})>"


class WhaleAlert(Base):
    """
    Whale alert for a qualifying transaction

    Exactly one row per transaction_hash. State machine:
    pending (is_sent=False) -> sent (is_sent=True), never reversed.
    """
    __tablename__ = "whale_alerts"

    id = Column(Integer, primary_key=True, index=True)
    wallet_address = Column(String(35), nullable=False, index=True)
    owner_name = Column(String(255), nullable=False)
    transaction_hash = Column(String(64), unique=True, nullable=False, index=True)

    amount = Column(Amount, nullable=False)
    transaction_type = Column(String(40), nullable=False)

    # Tier (routing) and classification
    alert_type = Column(String(30), nullable=False, index=True)
    alert_category = Column(String(30), nullable=False, default="direct_transfer")
    exchange_name = Column(String(100), nullable=True)
    destination_tag = Column(String(10), nullable=True)

    # Delivery state
    is_sent = Column(Boolean, default=False, nullable=False, index=True)
    sent_at = Column(DateTime, nullable=True)
    channel_used = Column(String(30), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    attempts = relationship("NotificationAttempt", back_populates="whale_alert")

    __table_args__ = (
        CheckConstraint(
            "alert_type IN ('critical_whales', 'exchange_deposits', 'whale_movements', 'system_alerts')",
            name='whale_alert_valid_type'
        ),
        CheckConstraint(
            "alert_category IN ('direct_transfer', 'exchange_deposit')",
            name='whale_alert_valid_category'
        ),
        CheckConstraint('amount > 0', name='whale_alert_positive_amount'),
        CheckConstraint('NOT is_sent OR sent_at IS NOT NULL', name='whale_alert_sent_has_timestamp'),
        # Dispatcher scans pending alerts oldest first
        Index('idx_whale_alerts_pending', 'is_sent', 'created_at'),
    )

    def __repr__(self):
        return f"<WhaleAlert(id={self.id}, hash={self.transaction_hash[:16]}..., amount={self.amount}, tier={self.alert_type}, sent={self.is_sent})>"

    @property
    def is_exchange_deposit(self) -> bool:
        return self.alert_category == "exchange_deposit"


class MonitoringHealth(Base):
    """
    Append-only health log

    One row per scan attempt and per dispatch attempt.
    """
    __tablename__ = "monitoring_health"

    id = Column(Integer, primary_key=True, index=True)
    service_name = Column(String(100), nullable=False, index=True)
    status = Column(String(10), nullable=False)
    last_check_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    error_message = Column(Text, nullable=True)
    response_time_ms = Column(Integer, nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('ok', 'error')", name='health_valid_status'),
        Index('idx_health_service_checked', 'service_name', 'last_check_at'),
    )

    def __repr__(self):
        return f"<MonitoringHealth(service={self.service_name}, status={self.status}, at={self.last_check_at})>"


class TelegramSubscription(Base):
    """
    Telegram bot subscriber

    Upserted on subscribe, soft-disabled (is_active=False) on unsubscribe.
    """
    __tablename__ = "telegram_subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(BigInteger, nullable=False, index=True)
    chat_id = Column(BigInteger, nullable=False)
    subscription_type = Column(String(30), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('user_id', 'subscription_type', name='uq_subscription_user_type'),
        CheckConstraint(
            "subscription_type IN ('critical_whales', 'exchange_deposits', 'whale_movements', 'system_alerts')",
            name='subscription_valid_type'
        ),
        Index('idx_subscription_type_active', 'subscription_type', 'is_active'),
    )

    def __repr__(self):
        return f"<TelegramSubscription(user_id={self.user_id}, type={self.subscription_type}, active={self.is_active})>"


class NotificationAttempt(Base):
    """
    One Telegram send (primary channel or subscriber)
    """
    __tablename__ = "notification_attempts"

    id = Column(Integer, primary_key=True, index=True)
    whale_alert_id = Column(Integer, ForeignKey("whale_alerts.id"), nullable=True, index=True)
    channel_type = Column(String(20), nullable=False, default="telegram")
    channel_id = Column(String(64), nullable=False)
    attempt_number = Column(Integer, nullable=False, default=1)
    status = Column(String(10), nullable=False)
    error_message = Column(Text, nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    whale_alert = relationship("WhaleAlert", back_populates="attempts")

    __table_args__ = (
        CheckConstraint("status IN ('success', 'failed')", name='attempt_valid_status'),
    )

    def __repr__(self):
        return f"<NotificationAttempt(alert={self.whale_alert_id}, channel={self.channel_id}, status={self.status})>"
