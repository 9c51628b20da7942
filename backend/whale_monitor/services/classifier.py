"""
Transaction Classifier

Pure labelling of normalized transactions: owner, direct transfer vs
exchange deposit, and the threshold the alert generator should apply.
No I/O, deterministic for the same inputs.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from whale_monitor.core.config import Settings, settings as app_settings
from whale_monitor.services.registry import AddressRegistry, default_registry
from whale_monitor.xrpl.scanner import NormalizedTransaction

DIRECT_TRANSFER = "direct_transfer"
EXCHANGE_DEPOSIT = "exchange_deposit"

UNKNOWN_OWNER = "Unknown"


@dataclass(frozen=True)
class Thresholds:
    """Alert thresholds in XRP"""
    default: Decimal
    exchange: Decimal
    critical: Decimal

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "Thresholds":
        settings = settings or app_settings
        return cls(
            default=Decimal(settings.DEFAULT_ALERT_THRESHOLD),
            exchange=Decimal(settings.EXCHANGE_ALERT_THRESHOLD),
            critical=Decimal(settings.CRITICAL_WHALE_THRESHOLD),
        )


@dataclass(frozen=True)
class ClassifiedTransaction:
    transaction: NormalizedTransaction
    owner_name: str
    classification: str
    exchange_name: Optional[str]
    threshold: Decimal

    @property
    def is_exchange_deposit(self) -> bool:
        return self.classification == EXCHANGE_DEPOSIT


def classify(
    tx: NormalizedTransaction,
    *,
    wallet_threshold: Optional[Decimal] = None,
    wallet_owner: Optional[str] = None,
    registry: AddressRegistry = default_registry,
    thresholds: Optional[Thresholds] = None,
) -> ClassifiedTransaction:
    """
    Classify one transaction

    Args:
        tx: Normalized transaction of a monitored wallet
        wallet_threshold: Per-wallet override (None = global default)
        wallet_owner: Owner stored on the wallet row, used when the
            registry does not know the address
        registry: Static owner/exchange lookup
        thresholds: Global thresholds (defaults from settings)

    Returns:
        ClassifiedTransaction with owner, classification, exchange and threshold
    """
    thresholds = thresholds or Thresholds.from_settings()

    owner = registry.owner_of(tx.wallet_address) or wallet_owner or UNKNOWN_OWNER

    exchange = registry.exchange_for(tx.counterparty_address, tx.destination_tag)

    if exchange is not None:
        return ClassifiedTransaction(
            transaction=tx,
            owner_name=owner,
            classification=EXCHANGE_DEPOSIT,
            exchange_name=exchange.exchange_name,
            threshold=thresholds.exchange,
        )

    threshold = Decimal(wallet_threshold) if wallet_threshold is not None else thresholds.default
    return ClassifiedTransaction(
        transaction=tx,
        owner_name=owner,
        classification=DIRECT_TRANSFER,
        exchange_name=None,
        threshold=threshold,
    )
