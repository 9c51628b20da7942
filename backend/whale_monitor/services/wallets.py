"""
Wallet Cursor Store

Durable per-address scan state. The cursor only moves forward: every
advance is a single conditional UPDATE, so two overlapping scans can never
move it backwards.

Functions here do NOT commit; the caller owns the transaction boundary.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from whale_monitor.db.models import MonitoredWallet
from whale_monitor.db.statements import insert_or_ignore
from whale_monitor.services.registry import AddressRegistry, default_registry
from whale_monitor.core.logging_config import get_logger

logger = get_logger(__name__)

# Health/last_error text is capped to keep rows small
MAX_ERROR_LENGTH = 1000


def _now() -> datetime:
    return datetime.now(timezone.utc)


def get_wallet(db: Session, address: str) -> Optional[MonitoredWallet]:
    return db.execute(
        select(MonitoredWallet).where(MonitoredWallet.address == address)
    ).scalar_one_or_none()


def list_wallets(db: Session, active_only: bool = False) -> List[MonitoredWallet]:
    query = select(MonitoredWallet).order_by(MonitoredWallet.owner_name, MonitoredWallet.address)
    if active_only:
        query = query.where(MonitoredWallet.is_active.is_(True))
    return list(db.execute(query).scalars())


def onboard_wallet(
    db: Session,
    address: str,
    owner_name: str,
    alert_threshold: Optional[Decimal] = None,
    is_active: bool = True,
) -> Tuple[MonitoredWallet, bool]:
    """
    Create a monitored wallet unless it already exists

    Returns:
        (wallet, created)
    """
    created = insert_or_ignore(
        db,
        MonitoredWallet,
        {
            "address": address,
            "owner_name": owner_name,
            "alert_threshold": alert_threshold,
            "is_active": is_active,
        },
        conflict_columns=["address"],
    )
    if created:
        logger.info("Onboarded wallet %s (%s)", address, owner_name)
    return get_wallet(db, address), created


def seed_wallets(db: Session, registry: AddressRegistry = default_registry) -> int:
    """Onboard every registry address; returns how many were new"""
    created_count = 0
    for address, owner in registry.monitored_wallets():
        _, created = onboard_wallet(db, address, owner)
        created_count += int(created)
    return created_count


def advance_cursor(db: Session, address: str, ledger_index: int) -> bool:
    """
    Move last_ledger_index forward to ledger_index

    Compare-and-set: the row is only touched when the stored cursor is
    unset or strictly lower. last_checked_at is refreshed and last_error
    cleared in the same statement.

    Returns:
        True if the cursor moved
    """
    result = db.execute(
        update(MonitoredWallet)
        .where(
            MonitoredWallet.address == address,
            or_(
                MonitoredWallet.last_ledger_index.is_(None),
                MonitoredWallet.last_ledger_index < ledger_index,
            ),
        )
        .values(last_ledger_index=ledger_index, last_checked_at=_now(), last_error=None)
        .execution_options(synchronize_session=False)
    )
    moved = result.rowcount == 1
    if not moved:
        # A concurrent scan already went further; still record the check
        mark_checked(db, address)
    return moved


def mark_checked(db: Session, address: str) -> None:
    """Record a successful scan that found nothing new"""
    db.execute(
        update(MonitoredWallet)
        .where(MonitoredWallet.address == address)
        .values(last_checked_at=_now(), last_error=None)
        .execution_options(synchronize_session=False)
    )


def record_error(db: Session, address: str, message: str) -> None:
    """Remember the last scan error for the admin UI (cursor untouched)"""
    db.execute(
        update(MonitoredWallet)
        .where(MonitoredWallet.address == address)
        .values(last_error=message[:MAX_ERROR_LENGTH])
        .execution_options(synchronize_session=False)
    )


def set_active(db: Session, wallet: MonitoredWallet, is_active: bool) -> MonitoredWallet:
    """Toggle monitoring; history (transactions, alerts) is kept"""
    wallet.is_active = is_active
    logger.info("Wallet %s %s", wallet.address, "activated" if is_active else "deactivated")
    return wallet


def set_threshold(db: Session, wallet: MonitoredWallet, threshold: Optional[Decimal]) -> MonitoredWallet:
    """Set or clear (None) the per-wallet alert threshold override"""
    wallet.alert_threshold = threshold
    logger.info("Wallet %s threshold set to %s", wallet.address, threshold if threshold is not None else "default")
    return wallet
