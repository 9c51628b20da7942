"""
Ledger Scanner

Scans one monitored wallet:
1. Fetches transactions with ledger index > cursor (ascending)
2. Records each one idempotently (unique transaction_hash)
3. Hands the batch to the on_batch callback (alert generation)
4. Advances the cursor only after the batch is committed and handled

An upstream failure leaves the cursor untouched, so the same range is read
again on the next cycle and the idempotent insert absorbs the overlap. The
same holds when on_batch raises: the cursor stays, and the rescan hands the
batch over again.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import StoreUnavailable, UpstreamUnavailable
from ..db.models import MonitoredWallet, WalletTransaction
from ..db.statements import insert_or_ignore
from ..services import wallets as wallet_store
from ..services.health import HealthReporter, Stopwatch, scan_service_name
from ..services.registry import AddressRegistry, default_registry
from .client import LedgerTransaction, XrplClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NormalizedTransaction:
    """Canonical transaction record of a monitored wallet"""
    wallet_address: str
    transaction_hash: str
    amount: Decimal
    currency: str
    transaction_type: str
    source_address: str | None
    destination_address: str | None
    destination_tag: str | None
    ledger_index: int
    transaction_date: datetime | None

    @classmethod
    def from_ledger(cls, wallet_address: str, tx: LedgerTransaction) -> "NormalizedTransaction":
        return cls(
            wallet_address=wallet_address,
            transaction_hash=tx.hash,
            amount=tx.amount,
            currency=tx.currency,
            transaction_type=tx.transaction_type,
            source_address=tx.source,
            destination_address=tx.destination,
            destination_tag=tx.destination_tag,
            ledger_index=tx.ledger_index,
            transaction_date=tx.date,
        )

    @property
    def counterparty_address(self) -> str | None:
        """The side of the transfer that is not the monitored wallet"""
        if self.transaction_type == "received":
            return self.source_address
        return self.destination_address


@dataclass
class ScanResult:
    address: str
    # Every transaction of the batch, ascending; includes ones recorded earlier
    transactions: list[NormalizedTransaction] = field(default_factory=list)
    recorded_count: int = 0
    last_ledger_index: int | None = None
    cursor_initialized: bool = False
    truncated: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _get_session_local():
    """Lazy import of SessionLocal to avoid circular imports"""
    from ..db.session import SessionLocal
    return SessionLocal


class LedgerScanner:
    """
    Per-wallet scan step of the pipeline

    Usage:
        scanner = LedgerScanner(client)
        result = await scanner.scan(wallet)
    """

    def __init__(
        self,
        client: XrplClient,
        session_factory: Callable[[], Session] | None = None,
        health: HealthReporter | None = None,
        registry: AddressRegistry = default_registry,
        backfill_on_first_scan: bool = False,
    ):
        self.client = client
        self._session_factory = session_factory
        self.health = health or HealthReporter(session_factory)
        self.registry = registry
        self.backfill_on_first_scan = backfill_on_first_scan

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = _get_session_local()
        return self._session_factory

    async def scan(
        self,
        wallet: MonitoredWallet,
        on_batch: Callable[[list[NormalizedTransaction]], None] | None = None,
    ) -> ScanResult:
        """
        Scan one wallet

        Args:
            wallet: Monitored wallet with its current cursor
            on_batch: Called with the recorded batch before the cursor moves

        Returns:
            ScanResult; result.error is set when the ledger source failed

        Raises:
            StoreUnavailable: the batch could not be recorded or on_batch
                could not store its results
        """
        address = wallet.address
        cursor = wallet.last_ledger_index
        service = scan_service_name(address)
        watch = Stopwatch()

        try:
            if cursor is None and not self.backfill_on_first_scan:
                result = await self._initialize_cursor(address)
            else:
                result = await self._scan_from(address, cursor, on_batch)

        except UpstreamUnavailable as e:
            message = str(e)
            logger.warning("Scan of %s failed upstream: %s", address, message)
            self._remember_error(address, message)
            self.health.error(service, message, watch.elapsed_ms)
            return ScanResult(address=address, last_ledger_index=cursor, error=message)

        except SQLAlchemyError as e:
            logger.error("Could not record scan of %s: %s", address, e)
            self.health.error(service, f"Store error: {e}", watch.elapsed_ms)
            raise StoreUnavailable(f"Could not record scan: {e}", address=address) from e

        except StoreUnavailable as e:
            logger.error("Batch of %s not handled: %s", address, e.message)
            self.health.error(service, e.message, watch.elapsed_ms)
            raise

        self.health.ok(service, watch.elapsed_ms)
        return result

    async def _initialize_cursor(self, address: str) -> ScanResult:
        """First scan: start at the current validated ledger (no backfill)"""
        ledger_index = await self.client.get_validated_ledger_index()
        with self.session_factory() as db:
            wallet_store.advance_cursor(db, address, ledger_index)
            db.commit()
        logger.info("Initialized cursor of %s at ledger %d", address, ledger_index)
        return ScanResult(address=address, last_ledger_index=ledger_index, cursor_initialized=True)

    async def _scan_from(self, address: str, cursor: int | None, on_batch=None) -> ScanResult:
        batch = await self.client.get_account_transactions(address, cursor)

        transactions = [
            NormalizedTransaction.from_ledger(address, tx)
            for tx in sorted(batch.transactions, key=lambda t: t.ledger_index)
        ]

        with self.session_factory() as db:
            recorded = 0
            for tx in transactions:
                recorded += int(self._record(db, tx))
            db.commit()

        if on_batch is not None and transactions:
            on_batch(transactions)

        with self.session_factory() as db:
            # Batch is durable and handled; only now may the cursor move past it
            if batch.max_ledger_index is not None:
                wallet_store.advance_cursor(db, address, batch.max_ledger_index)
            else:
                wallet_store.mark_checked(db, address)
            db.commit()

        new_cursor = cursor
        if batch.max_ledger_index is not None and (cursor is None or batch.max_ledger_index > cursor):
            new_cursor = batch.max_ledger_index

        if transactions:
            logger.info(
                "Scanned %s: %d transactions (%d new), cursor %s -> %s",
                address, len(transactions), recorded, cursor, new_cursor,
            )

        return ScanResult(
            address=address,
            transactions=transactions,
            recorded_count=recorded,
            last_ledger_index=new_cursor,
            truncated=batch.truncated,
        )

    def _record(self, db: Session, tx: NormalizedTransaction) -> bool:
        exchange = self.registry.exchange_for(tx.counterparty_address, tx.destination_tag)
        return insert_or_ignore(
            db,
            WalletTransaction,
            {
                "wallet_address": tx.wallet_address,
                "transaction_hash": tx.transaction_hash,
                "amount": tx.amount,
                "currency": tx.currency,
                "transaction_type": tx.transaction_type,
                "source_address": tx.source_address,
                "destination_address": tx.destination_address,
                "destination_tag": tx.destination_tag,
                "exchange_name": exchange.exchange_name if exchange else None,
                "ledger_index": tx.ledger_index,
                "transaction_date": tx.transaction_date,
            },
            conflict_columns=["transaction_hash"],
        )

    def _remember_error(self, address: str, message: str) -> None:
        try:
            with self.session_factory() as db:
                wallet_store.record_error(db, address, message)
                db.commit()
        except SQLAlchemyError as e:
            logger.warning("Could not store last_error for %s: %s", address, e)
